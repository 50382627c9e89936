"""Custom exceptions for quotebook."""


class QuotebookError(Exception):
    """Base exception for all quotebook errors."""

    pass


class ValidationError(QuotebookError):
    """Raised when a field holds a value outside its allowed domain."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {field}: {reason}")


class ConflictError(QuotebookError):
    """Raised when a write loses a race against a concurrent writer."""

    def __init__(self, message: str):
        super().__init__(message)


class NumberConflictError(ConflictError):
    """Raised when a number is already taken in its numbering space."""

    def __init__(self, number: str, parent_order_id: str | None = None):
        self.number = number
        self.parent_order_id = parent_order_id
        if parent_order_id:
            msg = f"Sub-number {number} already issued under order {parent_order_id}"
        else:
            msg = f"Order number {number} already issued"
        super().__init__(msg)


class StaleOrderError(ConflictError):
    """Raised when an update is based on an outdated version of an order."""

    def __init__(self, order_id: str, expected: int, found: int):
        self.order_id = order_id
        self.expected = expected
        self.found = found
        super().__init__(
            f"Order {order_id} changed concurrently (version {expected}, stored {found}). "
            "Reload and retry."
        )


class AlreadyNumberedError(QuotebookError):
    """Raised when numbering or deleting an order that already has a number."""

    def __init__(self, order_id: str, number: str | None = None):
        self.order_id = order_id
        self.number = number
        msg = f"Order {order_id} is already numbered"
        if number:
            msg = f"Order {order_id} is already numbered ({number})"
        super().__init__(msg)


class HierarchyError(QuotebookError):
    """Raised when a parent/sub-order relationship is invalid."""

    def __init__(self, reason: str, problems: list[str] | None = None):
        self.reason = reason
        self.problems = problems or []
        super().__init__(reason)


class OrderNotFoundError(QuotebookError):
    """Raised when an order ID doesn't exist."""

    def __init__(self, order_id: str):
        self.order_id = order_id
        super().__init__(f"Order not found: {order_id}")


class InvalidStateError(QuotebookError):
    """Raised when an operation is not allowed in the order's current state."""

    def __init__(self, order_id: str, state: str, action: str):
        self.order_id = order_id
        self.state = state
        self.action = action
        super().__init__(f"Cannot {action} order {order_id} in state '{state}'")


class InvalidSchemaVersionError(QuotebookError):
    """Raised when the order store has an unsupported schema version."""

    def __init__(self, found: int, supported: int):
        self.found = found
        self.supported = supported
        super().__init__(
            f"Unsupported schema version {found}. This tool supports version {supported}."
        )
