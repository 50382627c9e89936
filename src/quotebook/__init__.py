"""quotebook - order hierarchy, numbering and pricing for quotes."""

__version__ = "0.1.0"
