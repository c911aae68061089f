"""deploywatch: deployment progress streaming, log relay and reconciliation."""

__version__ = "0.1.0"
