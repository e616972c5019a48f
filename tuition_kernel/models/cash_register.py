"""
Module: tuition_kernel.models.cash_register
Responsibility: ORM persistence for cash registers (money physically held).
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - balance is only ever changed by increments (+= payment, -= expense,
      -= refund, += reversed expense).  It is never recomputed.
"""

from decimal import Decimal

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from tuition_kernel.db.base import TrackedBase
from tuition_kernel.domain.money import ZERO


class CashRegister(TrackedBase):
    """A till, bank account or card terminal that receives money."""

    __tablename__ = "cash_registers"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    balance: Mapped[Decimal] = mapped_column(default=ZERO, nullable=False)
    is_active: Mapped[bool] = mapped_column(default=True, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<CashRegister(id={self.id!r}, name={self.name!r}, "
            f"balance={self.balance})>"
        )
