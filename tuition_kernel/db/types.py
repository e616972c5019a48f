"""
Module: tuition_kernel.db.types
Responsibility: Column type factories and precision constants for ledger
    columns.  Centralizes precision so that every model uses identical
    column definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/, and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - Money columns hold exactly MONEY_DECIMAL_PLACES places (cents).
    - Rate columns (percentages such as 24.51) hold RATE_DECIMAL_PLACES.
    - CRITICAL: No floats anywhere in the tuition kernel.

Audit relevance:
    Every balance and amount in every model is stored in cents, so payment
    totals and installment totals are directly comparable without tolerance.
"""

from enum import Enum

from sqlalchemy import Enum as SAEnum, String

from tuition_kernel.db.base import FixedPoint

MONEY_DECIMAL_PLACES = 2
RATE_DECIMAL_PLACES = 4

# Lengths for string columns
REF_LENGTH = 64
CODE_LENGTH = 32
TEXT_LENGTH = 4000


def money_type() -> FixedPoint:
    """Column type for monetary amounts, stored as integer cents."""
    return FixedPoint(MONEY_DECIMAL_PLACES)


def rate_type() -> FixedPoint:
    """Column type for percentage rates, stored as integer ten-thousandths."""
    return FixedPoint(RATE_DECIMAL_PLACES)


def ref_type() -> String:
    """External reference (enrollment, course, season, institution)."""
    return String(REF_LENGTH)


def code_type() -> String:
    return String(CODE_LENGTH)


def text_type() -> String:
    return String(TEXT_LENGTH)


def enum_type(enum_cls: type[Enum]) -> SAEnum:
    """
    String-valued enum column.

    Stored as the enum *value* in a VARCHAR (no native database enum), and
    loaded back as the enum member.
    """
    return SAEnum(
        enum_cls,
        native_enum=False,
        length=CODE_LENGTH,
        values_callable=lambda members: [m.value for m in members],
        validate_strings=True,
    )
