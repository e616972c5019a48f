"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every service in the kernel layer.  All concrete services receive a
    SQLAlchemy ``Session`` that they use via ``session.flush()`` -- never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    - Transaction boundaries: services flush within the caller's
      transaction and never commit or rollback themselves.  The billing
      facade (TuitionBillingService) or the test harness owns
      commit/rollback, so every multi-entity operation is atomic.

Failure modes:
    - If a subclass calls ``session.commit()``, a failure in a later step
      would leave the four balances partially updated.
"""

from abc import ABC
from typing import Generic, TypeVar

from sqlalchemy.orm import Session

from tuition_kernel.db.base import Base

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all kernel services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide report queries -- those belong in
          ``tuition_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
