"""Command-line interface for quotebook."""

import argparse
import json
import os
import sys

from . import __version__
from .errors import QuotebookError
from .logging_config import setup_logging
from .models import Order
from .order_store import JsonOrderStore
from .pricing import format_amount
from .quotes import QuoteAggregate
from .settings import DEFAULT_LOG_LEVEL, Settings


def get_aggregate() -> tuple[QuoteAggregate, JsonOrderStore]:
    """Get the QuoteAggregate and its store for the configured data directory."""
    settings = Settings.from_env()
    store = JsonOrderStore(settings.data_dir)
    return QuoteAggregate(store, store, settings=settings), store


def format_order(order: Order, verbose: bool = False) -> str:
    """Format an order for one-line display (plus details when verbose)."""
    number = order.full_order_number or "(draft)"
    title = f"  {order.title}" if order.title else ""
    parts = [
        f"  {order.id[:8]}  {number:<9} [{order.state.value}]{title}",
        f"           customer {order.customer_id}, {format_amount(order.total)} excl. VAT",
    ]
    if verbose:
        if order.parent_order_id:
            parts.append(f"           extra work under {order.parent_order_id[:8]}")
        parts.append(f"           valid until {order.valid_until.isoformat()}")
    return "\n".join(parts)


def print_order_details(order: Order) -> None:
    print(f"Order {order.full_order_number or '(draft)'}  [{order.state.value}]")
    print(f"  ID: {order.id}")
    print(f"  Customer: {order.customer_id}")
    if order.contact_person_id:
        print(f"  Contact: {order.contact_person_id}")
    if order.parent_order_id:
        print(f"  Extra work under: {order.parent_order_id}")
    if order.title:
        print(f"  Title: {order.title}")
    if order.superseded_by:
        print(f"  Superseded by: {order.superseded_by}")
    print(f"  Valid until: {order.valid_until.isoformat()}")
    print()

    if not order.lines:
        print("  No lines.")
    for i, line in enumerate(order.lines, start=1):
        discount = f"  -{line.discount_percent}%" if line.discount_percent else ""
        print(
            f"  {i:>2}. {line.description}  {line.quantity} {line.unit.label} "
            f"x {format_amount(line.unit_price)}{discount}  = {format_amount(line.line_total)}"
        )
    print()
    print(f"  Total:      {format_amount(order.total)}")
    print(f"  VAT {order.vat_rate}%:   {format_amount(order.vat_amount)}")
    print(f"  Incl. VAT:  {format_amount(order.total_incl_vat)}")


def cmd_create(args: argparse.Namespace) -> int:
    """Create a draft order."""
    try:
        aggregate, store = get_aggregate()
        parent_id = store.resolve_order_id(args.parent) if args.parent else None

        order = aggregate.create_draft(
            args.customer_id,
            args.contact,
            title=args.title,
            notes=args.notes,
            valid_until=args.valid_until,
            parent_order_id=parent_id,
        )

        print(f"Created draft: {order.id[:8]}")
        if parent_id:
            print(f"  Extra work under: {parent_id[:8]}")
        print(f"  Valid until: {order.valid_until.isoformat()}")
        return 0

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_add_line(args: argparse.Namespace) -> int:
    """Add a line to an order."""
    try:
        aggregate, store = get_aggregate()
        order = aggregate.get(store.resolve_order_id(args.order_id))

        line = aggregate.add_line(
            order,
            {
                "description": args.description,
                "quantity": args.qty,
                "unit": args.unit,
                "unit_price": args.price,
                "discount_percent": args.discount,
            },
        )
        aggregate.save(order)

        print(f"Added line {len(order.lines)}: {line.description} = {format_amount(line.line_total)}")
        print(f"  Order total: {format_amount(order.total)}")
        return 0

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_remove_line(args: argparse.Namespace) -> int:
    """Remove a line (1-based, as shown by 'show')."""
    try:
        aggregate, store = get_aggregate()
        order = aggregate.get(store.resolve_order_id(args.order_id))

        line = aggregate.remove_line(order, args.line - 1)
        aggregate.save(order)

        print(f"Removed line {args.line}: {line.description}")
        print(f"  Order total: {format_amount(order.total)}")
        return 0

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_confirm(args: argparse.Namespace) -> int:
    """Confirm a draft, assigning its order number."""
    try:
        aggregate, store = get_aggregate()
        order = aggregate.confirm(aggregate.get(store.resolve_order_id(args.order_id)))

        print(f"Confirmed order {order.full_order_number}")
        print(f"  Total: {format_amount(order.total)} excl. VAT")
        return 0

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_show(args: argparse.Namespace) -> int:
    """Show one order."""
    try:
        aggregate, store = get_aggregate()
        order = aggregate.get(store.resolve_order_id(args.order_id))

        if args.json:
            print(json.dumps(aggregate.to_record(order), indent=2, ensure_ascii=False))
        else:
            print_order_details(order)
        return 0

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_list(args: argparse.Namespace) -> int:
    """List orders."""
    try:
        aggregate, _ = get_aggregate()
        orders = aggregate.list_orders(args.customer)

        if not orders:
            print("No orders found.")
            return 0

        if args.json:
            data = [aggregate.to_record(o) for o in orders]
            print(json.dumps(data, indent=2, ensure_ascii=False))
        else:
            print(f"Orders ({len(orders)}):")
            print()
            for order in orders:
                print(format_order(order, verbose=args.verbose))

        return 0

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_summary(args: argparse.Namespace) -> int:
    """Show the revenue of an order and its extra work."""
    try:
        aggregate, store = get_aggregate()
        summary = aggregate.summary(store.resolve_order_id(args.order_id))

        if args.json:
            print(json.dumps(summary.to_dict(), indent=2))
            return 0

        print(f"Order {summary.full_order_number or '(draft)'}")
        print(f"  Main order:  {format_amount(summary.revenue_main)}")
        print(f"  Extra work:  {format_amount(summary.revenue_extra)} ({summary.extra_work_count})")
        if summary.extra_work_numbers:
            print(f"               {', '.join(summary.extra_work_numbers)}")
        print(f"  Revenue:     {format_amount(summary.revenue)}")
        return 0

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_extra_work(args: argparse.Namespace) -> int:
    """Create draft extra work under an order."""
    try:
        aggregate, store = get_aggregate()
        parent_id = store.resolve_order_id(args.parent_id)
        order = aggregate.create_extra_work(parent_id, title=args.title, notes=args.notes)

        print(f"Created extra work draft: {order.id[:8]}")
        print(f"  Under order: {parent_id[:8]}")
        return 0

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_supersede(args: argparse.Namespace) -> int:
    """Supersede a numbered order with a new draft."""
    try:
        aggregate, store = get_aggregate()
        order = aggregate.get(store.resolve_order_id(args.order_id))
        replacement = aggregate.supersede(order)

        print(f"Superseded order {order.full_order_number}")
        print(f"  Replacement draft: {replacement.id[:8]}")
        return 0

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_cancel(args: argparse.Namespace) -> int:
    """Cancel a numbered order."""
    try:
        aggregate, store = get_aggregate()
        order = aggregate.cancel(aggregate.get(store.resolve_order_id(args.order_id)))

        print(f"Cancelled order {order.full_order_number}")
        return 0

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_delete(args: argparse.Namespace) -> int:
    """Delete a draft."""
    try:
        aggregate, store = get_aggregate()
        order = aggregate.delete(store.resolve_order_id(args.order_id))

        print(f"Deleted draft: {order.id[:8]}")
        return 0

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_backfill(args: argparse.Namespace) -> int:
    """Number stored orders that lack an order number."""
    try:
        aggregate, _ = get_aggregate()
        changed = aggregate.backfill(skip_drafts=args.skip_drafts)

        if not changed:
            print("All orders are numbered.")
            return 0

        print(f"Numbered {len(changed)} order(s):")
        for order in changed:
            print(f"  {order.id[:8]}  {order.full_order_number}")
        return 0

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_check(args: argparse.Namespace) -> int:
    """Check the stored order hierarchy for inconsistencies."""
    try:
        aggregate, _ = get_aggregate()
        problems = aggregate.check_hierarchy()

        if not problems:
            print("Hierarchy OK.")
            return 0

        print(f"Found {len(problems)} problem(s):")
        for problem in problems:
            print(f"  - {problem}")
        return 2

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_contacts_add(args: argparse.Namespace) -> int:
    """Register a contact person."""
    try:
        aggregate, _ = get_aggregate()
        contact = aggregate.add_contact(args.customer_id, args.name, args.email)

        print(f"Added contact: {contact.id[:8]}")
        print(f"  ID: {contact.id}")
        print(f"  Name: {contact.name}")
        return 0

    except QuotebookError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_serve(args: argparse.Namespace) -> int:
    """Start the API server."""
    try:
        import uvicorn

        settings = Settings.from_env()

        print("Starting quotebook API server...")
        print(f"Data directory: {settings.data_dir}")
        print(f"API docs: http://{args.host}:{args.port}/docs")
        print()

        # When reload is enabled, uvicorn requires the app as an import string
        app_target = "quotebook.api:app" if args.reload else None
        if app_target is None:
            from .api import app
            app_target = app

        uvicorn.run(
            app_target,
            host=args.host,
            port=args.port,
            reload=args.reload,
            workers=1,  # Numbering locks live in this process
        )
        return 0

    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog="quotebook",
        description="Manage quotes, order numbers and extra work.",
    )
    parser.add_argument(
        "--version", action="version", version=f"%(prog)s {__version__}"
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # create
    new_order_parser = subparsers.add_parser("create", help="Create a draft order")
    new_order_parser.add_argument("customer_id", help="Customer ID")
    new_order_parser.add_argument("--contact", "-c", help="Contact person ID")
    new_order_parser.add_argument("--title", "-t", help="Title")
    new_order_parser.add_argument("--notes", help="Notes")
    new_order_parser.add_argument("--valid-until", help="Expiry date (YYYY-MM-DD)")
    new_order_parser.add_argument("--parent", help="Create as extra work under this order")

    # add-line
    add_line_parser = subparsers.add_parser("add-line", help="Add a line to an order")
    add_line_parser.add_argument("order_id", help="Order ID (or unique prefix)")
    add_line_parser.add_argument("description", help="Line description")
    add_line_parser.add_argument("--qty", "-q", default="1", help="Quantity (default: 1)")
    add_line_parser.add_argument("--unit", "-u", help="Unit, e.g. pieces or kvm (default: pieces)")
    add_line_parser.add_argument("--price", "-p", default="0", help="Unit price")
    add_line_parser.add_argument("--discount", "-d", default="0", help="Discount percent")

    # remove-line
    remove_line_parser = subparsers.add_parser("remove-line", help="Remove a line from an order")
    remove_line_parser.add_argument("order_id", help="Order ID (or unique prefix)")
    remove_line_parser.add_argument("line", type=int, help="Line number as shown by 'show'")

    # confirm
    confirm_parser = subparsers.add_parser("confirm", help="Confirm a draft and assign its number")
    confirm_parser.add_argument("order_id", help="Order ID (or unique prefix)")

    # show
    show_parser = subparsers.add_parser("show", help="Show an order")
    show_parser.add_argument("order_id", help="Order ID (or unique prefix)")
    show_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # list
    list_parser = subparsers.add_parser("list", help="List orders")
    list_parser.add_argument("--customer", help="Only orders of this customer")
    list_parser.add_argument("--json", action="store_true", help="Output as JSON")
    list_parser.add_argument("--verbose", "-v", action="store_true", help="Show details")

    # summary
    summary_parser = subparsers.add_parser("summary", help="Revenue of an order and its extra work")
    summary_parser.add_argument("order_id", help="Order ID (or unique prefix)")
    summary_parser.add_argument("--json", action="store_true", help="Output as JSON")

    # extra-work
    extra_parser = subparsers.add_parser("extra-work", help="Create extra work under an order")
    extra_parser.add_argument("parent_id", help="Parent order ID (or unique prefix)")
    extra_parser.add_argument("--title", "-t", help="Title")
    extra_parser.add_argument("--notes", help="Notes")

    # supersede
    supersede_parser = subparsers.add_parser("supersede", help="Replace a numbered order with a new draft")
    supersede_parser.add_argument("order_id", help="Order ID (or unique prefix)")

    # cancel
    cancel_parser = subparsers.add_parser("cancel", help="Cancel a numbered order")
    cancel_parser.add_argument("order_id", help="Order ID (or unique prefix)")

    # delete
    delete_parser = subparsers.add_parser("delete", help="Delete a draft")
    delete_parser.add_argument("order_id", help="Order ID (or unique prefix)")

    # backfill
    backfill_parser = subparsers.add_parser("backfill", help="Number orders that lack a number")
    backfill_parser.add_argument(
        "--skip-drafts", action="store_true", help="Leave drafts unnumbered"
    )

    # check
    subparsers.add_parser("check", help="Check the order hierarchy (exit 2 on problems)")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Start the API server")
    serve_parser.add_argument(
        "--host", default="127.0.0.1", help="Host to bind to (default: 127.0.0.1)"
    )
    serve_parser.add_argument(
        "--port", "-p", type=int, default=8000, help="Port to bind to (default: 8000)"
    )
    serve_parser.add_argument(
        "--reload", action="store_true", help="Enable auto-reload for development"
    )

    # contacts (subcommand group)
    contacts_parser = subparsers.add_parser("contacts", help="Manage contact persons")
    contacts_subparsers = contacts_parser.add_subparsers(dest="contacts_command")

    # contacts add
    contacts_add_parser = contacts_subparsers.add_parser("add", help="Add a contact person")
    contacts_add_parser.add_argument("customer_id", help="Customer ID")
    contacts_add_parser.add_argument("name", help="Name")
    contacts_add_parser.add_argument("--email", "-e", help="Email address")

    return parser


def main() -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args()

    setup_logging(os.environ.get("QUOTEBOOK_LOG_LEVEL", DEFAULT_LOG_LEVEL), stream=sys.stderr)

    if not args.command:
        parser.print_help()
        return 0

    # Handle contacts subcommands
    if args.command == "contacts":
        if not hasattr(args, "contacts_command") or not args.contacts_command:
            parser.parse_args(["contacts", "--help"])
            return 0
        if args.contacts_command == "add":
            return cmd_contacts_add(args)

    commands = {
        "create": cmd_create,
        "add-line": cmd_add_line,
        "remove-line": cmd_remove_line,
        "confirm": cmd_confirm,
        "show": cmd_show,
        "list": cmd_list,
        "summary": cmd_summary,
        "extra-work": cmd_extra_work,
        "supersede": cmd_supersede,
        "cancel": cmd_cancel,
        "delete": cmd_delete,
        "backfill": cmd_backfill,
        "check": cmd_check,
        "serve": cmd_serve,
    }

    cmd_func = commands.get(args.command)
    if cmd_func:
        return cmd_func(args)

    parser.print_help()
    return 0


if __name__ == "__main__":
    sys.exit(main())
