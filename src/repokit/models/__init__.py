"""Declarative base and mixins for models served by repositories."""

from repokit.models.base import TOMBSTONE_DELETED, TOMBSTONE_LIVE, Base, TombstoneMixin

__all__ = [
    "TOMBSTONE_DELETED",
    "TOMBSTONE_LIVE",
    "Base",
    "TombstoneMixin",
]
