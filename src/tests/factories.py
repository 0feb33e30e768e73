"""Test models and factory functions.

Three models cover the repository's configurations:

- Author: integer primary key, tombstone column, unique email
- Tag: UUID primary key, timestamps, no tombstone column
- Book: integer primary key with a foreign key to authors

Example:
    authors = await create_authors(author_repo, "John", "Amy", "Joanna")
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from sqlalchemy import DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from repokit.models.base import Base, TombstoneMixin
from repokit.repositories.base import EntityRepository


class Author(Base, TombstoneMixin):
    """Author with a tombstone column."""

    __tablename__ = "authors"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255), unique=True, nullable=True)
    score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class Tag(Base):
    """Tag without tombstone support."""

    __tablename__ = "tags"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    label: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    weight: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now()
    )


class Book(Base):
    """Book referencing an author."""

    __tablename__ = "books"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    author_id: Mapped[int] = mapped_column(ForeignKey("authors.id"), nullable=False)


async def create_authors(repo: EntityRepository[Author], *names: str, **kwargs: Any) -> list[Author]:
    """Create one author per name through the repository."""
    return await repo.create_many([{"name": name, **kwargs} for name in names])


async def create_numbered_authors(repo: EntityRepository[Author], count: int) -> list[Author]:
    """Create authors "author-01".."author-NN" with score equal to their number."""
    return await repo.create_many(
        [{"name": f"author-{i:02d}", "score": i} for i in range(1, count + 1)]
    )
