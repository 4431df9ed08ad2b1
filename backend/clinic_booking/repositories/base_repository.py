# backend/clinic_booking/repositories/base_repository.py
"""
Base Repository Pattern for the clinic booking core.

Provides the foundation for all repository classes with:
- Common read/create operations
- Type safety with generics
- Translation of store failures into domain exceptions

Repositories never commit; transaction boundaries belong to services.
"""

from contextlib import contextmanager
import logging
from typing import Generic, Iterator, Optional, Type, TypeVar

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from ..core.exceptions import InfrastructureException, RepositoryException
from ..database import is_transient_db_error

# Type variable for generic model support
T = TypeVar("T")

logger = logging.getLogger(__name__)


class BaseRepository(Generic[T]):
    """
    Concrete base repository implementation with common data access patterns.

    Attributes:
        db: SQLAlchemy session
        model: SQLAlchemy model class
    """

    def __init__(self, db: Session, model: Type[T]):
        """
        Initialize repository with database session and model.

        Args:
            db: SQLAlchemy session (managed by service layer)
            model: SQLAlchemy model class
        """
        self.db = db
        self.model = model
        self.logger = logging.getLogger(f"{__name__}.{model.__name__}")

    @contextmanager
    def guarded(self, operation: str) -> Iterator[None]:
        """
        Translate SQLAlchemy failures raised inside the block.

        Transient outages become InfrastructureException (retriable); anything
        else becomes RepositoryException.
        """
        try:
            yield
        except SQLAlchemyError as exc:
            if is_transient_db_error(exc):
                self.logger.warning(
                    "Store unavailable during %s on %s: %s",
                    operation,
                    self.model.__name__,
                    exc,
                )
                raise InfrastructureException(
                    "Booking store is temporarily unavailable",
                    code="INFRASTRUCTURE_UNAVAILABLE",
                    details={"operation": operation},
                ) from exc
            self.logger.error(f"Error during {operation} on {self.model.__name__}: {str(exc)}")
            raise RepositoryException(f"Failed to {operation} {self.model.__name__}: {exc}") from exc

    def get_by_id(self, id: str) -> Optional[T]:
        """Retrieve an entity by its primary key, bypassing stale identity-map state."""
        with self.guarded("get"):
            return (
                self.db.query(self.model)
                .filter(self.model.id == id)  # type: ignore[attr-defined]
                .populate_existing()
                .first()
            )

    def add(self, entity: T) -> T:
        """
        Stage a new entity and flush it.

        Note: Does NOT commit - transaction management is handled by service layer.
        Integrity errors propagate unchanged so callers can map them to
        business outcomes.
        """
        self.db.add(entity)
        self.db.flush()
        return entity

    def _build_query(self) -> Query:
        """Get base query for the model."""
        return self.db.query(self.model)
