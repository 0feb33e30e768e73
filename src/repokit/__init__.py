"""Generic async repository layer for SQLAlchemy models."""

__version__ = "0.1.0"
