"""Google Sheets -> PostgreSQL reconciliation sync for procurement transactions."""

__version__ = "0.1.0"
