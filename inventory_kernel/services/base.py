"""
BaseService -- abstract base for all kernel services.

Services receive a SQLAlchemy ``Session`` from the caller and persist with
``session.flush()`` only.  The caller (TenantContext.session_scope, the
operations facade, or a test) owns commit and rollback, so a multi-step
operation such as a consignment of several lots is atomic.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from inventory_kernel.db.base import Base
from inventory_kernel.domain.clock import Clock, SystemClock

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Guarantees:
        - Never calls ``session.commit()`` or ``session.rollback()``.

    Non-goals:
        - Read-only queries belong in ``inventory_kernel/selectors/``.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
