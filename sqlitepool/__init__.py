"""SQLite client with separate read and write pools, WAL defaults, migrations and the mig8 command."""

__version__ = "0.1.0"
__all__ = ["db", "mig8"]