# backend/clinic_booking/services/base.py
"""
Base Service Pattern for the clinic booking core.

Provides common functionality for all service classes including:
- Transaction management
- Logging
- Error translation
- Performance monitoring
"""

from contextlib import contextmanager
from functools import wraps
import logging
import time
from typing import Any, Callable, Iterator, Optional, TypeVar, cast

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..core.exceptions import InfrastructureException, ServiceException
from ..core.timezone_utils import Clock, utc_now
from ..database import is_transient_db_error
from ..monitoring.prometheus_metrics import prometheus_metrics

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])


class BaseService:
    """
    Base class for all service layer components.

    Provides common patterns for:
    - Database session management
    - Logging
    - Transaction handling
    - Performance monitoring
    - An injectable clock, so lifecycle rules can be exercised at any instant
    """

    def __init__(self, db: Session, now_fn: Optional[Clock] = None):
        """
        Initialize base service.

        Args:
            db: Database session
            now_fn: Optional clock returning aware UTC datetimes
        """
        self.db = db
        self.now_fn: Clock = now_fn or utc_now
        self.logger = logging.getLogger(self.__class__.__name__)

    def now(self):
        return self.now_fn()

    @contextmanager
    def transaction(self) -> Iterator[Session]:
        """
        Context manager for database transactions.

        Usage:
            with self.transaction():
                # Do multiple operations
                self.db.add(entity)
                # Note: commit is handled automatically

        A failure anywhere in the block rolls the whole unit back, so no
        half-written booking is ever left behind.
        """
        try:
            yield self.db
            self.db.commit()
            self.logger.debug("Transaction committed successfully")
        except SQLAlchemyError as e:
            self.db.rollback()
            if is_transient_db_error(e):
                self.logger.warning(f"Transaction failed on unavailable store: {str(e)}")
                raise InfrastructureException(
                    "Booking store is temporarily unavailable",
                    code="INFRASTRUCTURE_UNAVAILABLE",
                ) from e
            self.logger.error(f"Transaction failed: {str(e)}")
            raise ServiceException(f"Database operation failed: {str(e)}") from e
        except Exception:
            self.db.rollback()
            raise

    @staticmethod
    def measure_operation(operation_name: str) -> Callable[[F], F]:
        """
        Decorator to measure operation performance.

        Usage:
            @BaseService.measure_operation("create_booking")
            def create_booking(self, data):
                # Method implementation

        Args:
            operation_name: Name of the operation for metrics

        Returns:
            Decorator function
        """

        def decorator(func: F) -> F:
            @wraps(func)
            def wrapper(self: Any, *args: Any, **kwargs: Any) -> Any:
                start_time = time.time()
                success = False
                error_type = None

                try:
                    result = func(self, *args, **kwargs)
                    success = True
                    return result
                except Exception as e:
                    error_type = type(e).__name__
                    raise
                finally:
                    elapsed = time.time() - start_time

                    # Only log if it's actually slow
                    if elapsed > 1.0 and hasattr(self, "logger"):
                        self.logger.warning(
                            f"Slow operation detected: {operation_name} took {elapsed:.2f}s"
                        )

                    try:
                        prometheus_metrics.record_service_operation(
                            service=self.__class__.__name__,
                            operation=operation_name,
                            duration=elapsed,
                            status="success" if success else "error",
                            error_type=error_type,
                        )
                    except Exception:
                        # Don't let metrics collection break the operation
                        pass

            return cast(F, wrapper)

        return decorator
