"""Base model classes and mixins for SQLAlchemy models."""

from sqlalchemy import Integer
from sqlalchemy.orm import DeclarativeBase, Mapped, declared_attr, mapped_column

TOMBSTONE_LIVE = 0
TOMBSTONE_DELETED = 1


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class TombstoneMixin:
    """Mixin that adds an is_deleted flag for logical deletes.

    0 marks a live record, 1 a deleted one. Pass tombstone_field="is_deleted"
    to the repository to have it honoured.
    """

    @declared_attr
    def is_deleted(cls) -> Mapped[int]:
        """Tombstone flag; TOMBSTONE_DELETED once logically deleted."""
        return mapped_column(
            Integer,
            nullable=False,
            default=TOMBSTONE_LIVE,
            server_default=str(TOMBSTONE_LIVE),
        )
