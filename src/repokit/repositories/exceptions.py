"""Exception hierarchy for repository operations.

Applications catch these to pick a response: NotFoundError for a missing
write target, ConstraintError for a rejected write, InvalidQueryError and
InvalidPageError for bad caller input. Every other store failure is raised
as the original SQLAlchemy exception, exported here as StoreError.
"""

from sqlalchemy.exc import SQLAlchemyError

StoreError = SQLAlchemyError


class RepositoryError(Exception):
    """Base exception for all repository operations.

    Example:
        try:
            await repo.update_by_id(user_id, {"name": "Ada"})
        except RepositoryError as e:
            logger.error("Repository operation failed", error=str(e))
    """
    pass


class NotFoundError(RepositoryError):
    """Raised when the target of an identity-scoped write does not exist.

    Reads report absence by returning None; update_by_id and delete_by_id
    raise this instead because the caller expected a target.
    """
    pass


class ConstraintError(RepositoryError):
    """Raised when the store rejects a write on a uniqueness or foreign-key rule.

    The message comes from the repository's message catalog; the original
    IntegrityError is chained as __cause__.
    """
    pass


class InvalidQueryError(RepositoryError, ValueError):
    """Raised for conditions, projections, orderings or patches the model cannot satisfy."""
    pass


class InvalidPageError(InvalidQueryError):
    """Raised when a page number or page size is not a positive integer in range."""
    pass
