"""
Typed Exception Hierarchy for the Tuition Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Billing operations move money between a student's debt, a cash register
and a payment plan.  Callers (request handlers, the audit CLI) must react
to failures precisely, so every error:

  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE attribute (machine-readable, API-safe)
  3. Carries structured DATA (not just a message string)

Example - WRONG way to handle errors:
    try:
        billing.refund_installment(plan_id, 2)
    except Exception as e:
        if "not paid" in str(e):  # FRAGILE - message might change
            ...

Example - RIGHT way:
    try:
        billing.refund_installment(plan_id, 2)
    except InstallmentNotPaidError as e:
        api_response(status=409, code=e.code, installment=e.installment_number)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from BillingKernelError:

    BillingKernelError (base)
    |
    +-- NotFoundError
    |   +-- StudentNotFoundError
    |   +-- CashRegisterNotFoundError
    |   +-- PlanNotFoundError
    |   +-- InstallmentNotFoundError
    |
    +-- InvalidStateError
    |   +-- PlanAlreadyCompletedError
    |   +-- InstallmentAlreadyPaidError
    |   +-- InstallmentNotPaidError
    |   +-- PaymentRecordMissingError
    |   +-- PlanNotPendingError
    |   +-- ChargeDateNotReachedError
    |   +-- CashRegisterInactiveError
    |
    +-- ValidationError
    |   +-- NonPositiveAmountError
    |   +-- InvalidDiscountError
    |   +-- InvalidScheduleError
    |   +-- InvalidOverpaymentHandlingError
    |   +-- InvalidPaymentSplitError
    |   +-- MissingCashRegisterError
    |   +-- PriceUnavailableError
    |
    +-- ConcurrencyError
    |   +-- PlanLockTimeoutError
    |
    +-- InternalError
        +-- LedgerStorageError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                          | When Raised
----------------|-------------------------------|---------------------------------------
Not found       | STUDENT_NOT_FOUND             | Student ID doesn't exist
                | CASH_REGISTER_NOT_FOUND       | Cash register ID doesn't exist
                | PLAN_NOT_FOUND                | Payment plan ID doesn't exist
                | INSTALLMENT_NOT_FOUND         | No installment with that number
----------------|-------------------------------|---------------------------------------
Invalid state   | PLAN_ALREADY_COMPLETED        | Settling a completed plan
                | INSTALLMENT_ALREADY_PAID      | Settling a paid installment
                | INSTALLMENT_NOT_PAID          | Refunding an unpaid installment
                | PAYMENT_RECORD_MISSING        | Paid installment has no live Payment
                | PLAN_NOT_PENDING              | Not a pending credit-card plan
                | CHARGE_DATE_NOT_REACHED       | Card charge date is in the future
                | CASH_REGISTER_INACTIVE        | Register is closed for postings
----------------|-------------------------------|---------------------------------------
Validation      | NON_POSITIVE_AMOUNT           | amount <= 0
                | INVALID_DISCOUNT              | Discount exceeds price / bad value
                | INVALID_SCHEDULE              | Installments don't add up
                | INVALID_OVERPAYMENT_HANDLING  | Mode is not "next" / "distribute"
                | INVALID_PAYMENT_SPLIT         | Mixed card portion out of range
                | MISSING_CASH_REGISTER         | Settlement without a register
                | PRICE_UNAVAILABLE             | No total and no enrollment price
----------------|-------------------------------|---------------------------------------
Concurrency     | PLAN_LOCK_TIMEOUT             | Per-plan lock not acquired in time
----------------|-------------------------------|---------------------------------------
Internal        | LEDGER_STORAGE_ERROR          | Database failure (rolled back)

===============================================================================
HANDLING PATTERNS
===============================================================================

1. NOT FOUND / VALIDATION errors are raised before any mutation.  Nothing
   needs to be undone by the caller.

2. INVALID STATE errors describe a conflict with current ledger state
   (HTTP 409 territory).

3. LedgerStorageError means the transaction was rolled back as a whole.
   The ledger is unchanged; the caller may retry.

4. PlanLockTimeoutError means another operation on the same plan is still
   running.  Retrying later is safe.
"""


class BillingKernelError(Exception):
    """
    Base exception for all tuition kernel errors.

    All subclasses must have a `code` class attribute
    for machine-readable error identification.
    """

    code: str = "BILLING_KERNEL_ERROR"


# Not-found exceptions


class NotFoundError(BillingKernelError):
    """Base exception for missing entities."""

    code: str = "NOT_FOUND"


class StudentNotFoundError(NotFoundError):
    """Student with given ID was not found."""

    code: str = "STUDENT_NOT_FOUND"

    def __init__(self, student_id: str):
        self.student_id = student_id
        super().__init__(f"Student not found: {student_id}")


class CashRegisterNotFoundError(NotFoundError):
    """Cash register with given ID was not found."""

    code: str = "CASH_REGISTER_NOT_FOUND"

    def __init__(self, cash_register_id: str):
        self.cash_register_id = cash_register_id
        super().__init__(f"Cash register not found: {cash_register_id}")


class PlanNotFoundError(NotFoundError):
    """Payment plan with given ID was not found."""

    code: str = "PLAN_NOT_FOUND"

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Payment plan not found: {plan_id}")


class InstallmentNotFoundError(NotFoundError):
    """Plan has no installment with the given number."""

    code: str = "INSTALLMENT_NOT_FOUND"

    def __init__(self, plan_id: str, installment_number: int):
        self.plan_id = plan_id
        self.installment_number = installment_number
        super().__init__(
            f"Installment {installment_number} not found on plan {plan_id}"
        )


# Invalid-state exceptions


class InvalidStateError(BillingKernelError):
    """Base exception for operations that conflict with current ledger state."""

    code: str = "INVALID_STATE"


class PlanAlreadyCompletedError(InvalidStateError):
    """Plan is already fully settled."""

    code: str = "PLAN_ALREADY_COMPLETED"

    def __init__(self, plan_id: str):
        self.plan_id = plan_id
        super().__init__(f"Payment plan {plan_id} is already completed")


class InstallmentAlreadyPaidError(InvalidStateError):
    """Installment has already been settled."""

    code: str = "INSTALLMENT_ALREADY_PAID"

    def __init__(self, plan_id: str, installment_number: int):
        self.plan_id = plan_id
        self.installment_number = installment_number
        super().__init__(
            f"Installment {installment_number} of plan {plan_id} is already paid"
        )


class InstallmentNotPaidError(InvalidStateError):
    """Refund requested for an installment that is not paid."""

    code: str = "INSTALLMENT_NOT_PAID"

    def __init__(self, plan_id: str, installment_number: int):
        self.plan_id = plan_id
        self.installment_number = installment_number
        super().__init__(
            f"Installment {installment_number} of plan {plan_id} is not paid"
        )


class PaymentRecordMissingError(InvalidStateError):
    """
    Installment is marked paid but no live Payment backs it.

    The ledger is already inconsistent for this plan.  Refunding on
    balances alone would hide the corruption, so the refund is refused.
    """

    code: str = "PAYMENT_RECORD_MISSING"

    def __init__(self, plan_id: str, installment_number: int):
        self.plan_id = plan_id
        self.installment_number = installment_number
        super().__init__(
            f"No unrefunded payment found for installment {installment_number} "
            f"of plan {plan_id}"
        )


class PlanNotPendingError(InvalidStateError):
    """Plan is not a pending credit-card plan."""

    code: str = "PLAN_NOT_PENDING"

    def __init__(self, plan_id: str, reason: str):
        self.plan_id = plan_id
        self.reason = reason
        super().__init__(f"Payment plan {plan_id} is not pending: {reason}")


class ChargeDateNotReachedError(InvalidStateError):
    """Credit-card charge date is still in the future."""

    code: str = "CHARGE_DATE_NOT_REACHED"

    def __init__(self, plan_id: str, charge_date: str, as_of: str):
        self.plan_id = plan_id
        self.charge_date = charge_date
        self.as_of = as_of
        super().__init__(
            f"Charge date {charge_date} of plan {plan_id} is after {as_of}"
        )


class CashRegisterInactiveError(InvalidStateError):
    """Cash register is deactivated and cannot take postings."""

    code: str = "CASH_REGISTER_INACTIVE"

    def __init__(self, cash_register_id: str):
        self.cash_register_id = cash_register_id
        super().__init__(f"Cash register {cash_register_id} is inactive")


# Validation exceptions


class ValidationError(BillingKernelError):
    """Base exception for rejected input."""

    code: str = "VALIDATION_ERROR"


class NonPositiveAmountError(ValidationError):
    """Amount must be greater than zero."""

    code: str = "NON_POSITIVE_AMOUNT"

    def __init__(self, field: str, amount: str):
        self.field = field
        self.amount = amount
        super().__init__(f"{field} must be positive, got {amount}")


class InvalidDiscountError(ValidationError):
    """Discount configuration cannot be applied to the price."""

    code: str = "INVALID_DISCOUNT"

    def __init__(self, kind: str, value: str, reason: str):
        self.kind = kind
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid {kind} discount {value}: {reason}")


class InvalidScheduleError(ValidationError):
    """Installment schedule does not match the amount owed."""

    code: str = "INVALID_SCHEDULE"

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Invalid installment schedule: {reason}")


class InvalidOverpaymentHandlingError(ValidationError):
    """Overpayment handling mode is not recognised."""

    code: str = "INVALID_OVERPAYMENT_HANDLING"

    def __init__(self, mode: str):
        self.mode = mode
        super().__init__(
            f"Unknown overpayment handling '{mode}', expected 'next' or 'distribute'"
        )


class InvalidPaymentSplitError(ValidationError):
    """Card portion of a mixed payment is out of range."""

    code: str = "INVALID_PAYMENT_SPLIT"

    def __init__(self, card_portion: str, subtotal: str):
        self.card_portion = card_portion
        self.subtotal = subtotal
        super().__init__(
            f"Card portion {card_portion} must be between 0 and {subtotal} (exclusive)"
        )


class PriceUnavailableError(ValidationError):
    """No total amount given and no enrollment directory to price it."""

    code: str = "PRICE_UNAVAILABLE"

    def __init__(self, student_id: str, enrollment_ref: str | None):
        self.student_id = student_id
        self.enrollment_ref = enrollment_ref
        super().__init__(
            f"Cannot price enrollment {enrollment_ref} for student {student_id}"
        )


class MissingCashRegisterError(ValidationError):
    """Settlement requested without a cash register to receive the money."""

    code: str = "MISSING_CASH_REGISTER"

    def __init__(self, operation: str):
        self.operation = operation
        super().__init__(f"{operation} requires a cash register")


# Concurrency exceptions


class ConcurrencyError(BillingKernelError):
    """Base exception for concurrency-related errors."""

    code: str = "CONCURRENCY_ERROR"


class PlanLockTimeoutError(ConcurrencyError):
    """Another operation holds the plan for longer than the timeout."""

    code: str = "PLAN_LOCK_TIMEOUT"

    def __init__(self, plan_id: str, timeout_seconds: float):
        self.plan_id = plan_id
        self.timeout_seconds = timeout_seconds
        super().__init__(
            f"Could not lock payment plan {plan_id} within {timeout_seconds}s"
        )


# Internal exceptions


class InternalError(BillingKernelError):
    """Base exception for infrastructure failures."""

    code: str = "INTERNAL_ERROR"


class LedgerStorageError(InternalError):
    """Storage failed mid-operation; the transaction was rolled back."""

    code: str = "LEDGER_STORAGE_ERROR"

    def __init__(self, operation: str, detail: str):
        self.operation = operation
        self.detail = detail
        super().__init__(f"{operation} failed and was rolled back: {detail}")
