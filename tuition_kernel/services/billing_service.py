"""
TuitionBillingService -- the billing surface used by request handlers.

Responsibility:
    Runs each billing operation (CreatePlan, PayInstallment,
    RefundInstallment, DeletePlan, ProcessPendingCreditCardPayment,
    AnalyzeDiscrepancies, RepairInstallmentSync, RecalculateStudentBalance)
    as one database transaction, under a per-plan lock where one plan is
    touched, and reports committed operations to the activity sink.

Architecture position:
    Kernel > Services -- the only component that commits.  Composes
    PlanBuilder, SettlementService, RefundService, DeletionService,
    InstallmentSyncService, StudentBalanceService and DiscrepancySelector
    over a fresh session per call.

Invariants enforced:
    - Atomicity: every operation commits on success and rolls back on any
      failure, so a failing step (say, booking the VAT expense) never
      leaves the student or register partially updated.
    - Mutual exclusion: settlement, refund, deletion, pending-card
      processing and repair hold the plan's lock from load to commit.
    - The activity sink runs after commit and can never fail an operation.

Failure modes:
    - Typed BillingKernelError subclasses from the kernel services.
    - PlanLockTimeoutError when the plan is busy.
    - LedgerStorageError wrapping any SQLAlchemyError (after rollback).

Audit relevance:
    Each operation runs inside LogContext.bind(operation=..., plan_id=...),
    so every log record it emits carries the operation and plan.

Usage::

    billing = TuitionBillingService(get_session_factory(), policy=policy)
    plan = billing.create_plan(CreatePlanRequest(student_id=..., total_amount=Decimal("1000")))
    plan = billing.pay_installment(plan.id, 1, Decimal("500.00"), register_id)
"""

from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from tuition_kernel.domain.clock import Clock, SystemClock
from tuition_kernel.domain.dtos import (
    CreatePlanRequest,
    DeletionResult,
    DiscrepancyReport,
    PayInstallmentRequest,
    PlanView,
    RefundResult,
    RepairReport,
    StudentBalanceReport,
)
from tuition_kernel.domain.policy import BillingPolicy
from tuition_kernel.domain.values import OverpaymentHandling, PaymentMethod
from tuition_kernel.exceptions import BillingKernelError, LedgerStorageError
from tuition_kernel.logging_config import LogContext, get_logger
from tuition_kernel.selectors.discrepancy_selector import DiscrepancySelector
from tuition_kernel.services.activity import (
    ActivitySink,
    EnrollmentDirectory,
    LoggingActivitySink,
    publish_activity,
)
from tuition_kernel.services.deletion_service import DeletionService
from tuition_kernel.services.installment_sync_service import InstallmentSyncService, PlanRepair
from tuition_kernel.services.ledger_store import LedgerStore
from tuition_kernel.services.plan_builder import PlanBuilder
from tuition_kernel.services.plan_lock import PlanLockRegistry
from tuition_kernel.services.refund_service import RefundService
from tuition_kernel.services.settlement_service import SettlementService
from tuition_kernel.services.student_balance_service import StudentBalanceService

logger = get_logger("services.billing")


class TuitionBillingService:
    """
    Transactional facade over the billing kernel.

    Contract:
        Each public method opens a session, performs one operation, and
        either commits and returns a frozen snapshot, or rolls back and
        raises.  No method leaves a session open or uncommitted.

    Guarantees:
        - Returned values are DTOs, safe to use after the session closes.
        - Concurrent calls for the same plan are serialized.

    Non-goals:
        - Authentication, authorization, HTTP mapping.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        policy: BillingPolicy | None = None,
        clock: Clock | None = None,
        activity_sink: ActivitySink | None = None,
        enrollments: EnrollmentDirectory | None = None,
        plan_locks: PlanLockRegistry | None = None,
    ):
        self._session_factory = session_factory
        self._policy = policy or BillingPolicy()
        self._clock = clock or SystemClock()
        self._activity = activity_sink if activity_sink is not None else LoggingActivitySink()
        self._enrollments = enrollments
        self._locks = plan_locks or PlanLockRegistry(self._policy.lock_timeout_seconds)

    # =========================================================================
    # Operations
    # =========================================================================

    def create_plan(self, request: CreatePlanRequest) -> PlanView:
        with LogContext.bind(operation="create_plan", student_id=request.student_id, actor_id=request.actor_id):
            with self._transaction("create_plan") as session:
                store = LedgerStore(session)
                builder = PlanBuilder(
                    session,
                    policy=self._policy,
                    clock=self._clock,
                    store=store,
                    settlement=self._settlement(session, store),
                    enrollments=self._enrollments,
                )
                plan = builder.create_plan(request)
                view = plan.to_dto()
                context = (plan.institution_ref, plan.season_ref)

        self._publish(
            request.actor_id, "create", view.id,
            f"Payment plan created for {view.discounted_amount}", context,
        )
        return view

    def pay_installment(
        self,
        plan_id: UUID,
        installment_number: int,
        amount: Decimal,
        cash_register_id: UUID,
        is_invoiced: bool = False,
        overpayment_handling: OverpaymentHandling | str | None = None,
        payment_method: PaymentMethod | None = None,
        actor_id: UUID | None = None,
    ) -> PlanView:
        request = PayInstallmentRequest(
            plan_id=plan_id,
            installment_number=installment_number,
            amount=amount,
            cash_register_id=cash_register_id,
            is_invoiced=is_invoiced,
            overpayment_handling=overpayment_handling,
            payment_method=payment_method,
            actor_id=actor_id,
        )
        with self._plan_scope("pay_installment", plan_id, actor_id) as session:
            plan = self._settlement(session).pay_installment(request)
            view = plan.to_dto()
            context = (plan.institution_ref, plan.season_ref)

        self._publish(
            actor_id, "payment", plan_id,
            f"Installment {installment_number} paid: {amount}", context,
        )
        return view

    def refund_installment(
        self,
        plan_id: UUID,
        installment_number: int,
        reason: str | None = None,
        refund_cash_register_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> RefundResult:
        with self._plan_scope("refund_installment", plan_id, actor_id) as session:
            result = RefundService(session, clock=self._clock).refund_installment(
                plan_id,
                installment_number,
                reason=reason,
                refund_cash_register_id=refund_cash_register_id,
                actor_id=actor_id,
            )
            context = self._plan_context(session, plan_id)

        self._publish(
            actor_id, "refund", plan_id,
            f"Installment {installment_number} refunded: {result.refunded_amount}", context,
        )
        return result

    def delete_plan(self, plan_id: UUID, actor_id: UUID | None = None) -> DeletionResult:
        with self._plan_scope("delete_plan", plan_id, actor_id) as session:
            context = self._plan_context(session, plan_id)
            result = DeletionService(session).delete_plan(plan_id)

        self._publish(
            actor_id, "delete", plan_id,
            f"Payment plan deleted, {result.reversed_payment_count} payments reversed", context,
        )
        return result

    def process_pending_credit_card(
        self,
        plan_id: UUID,
        as_of: date | None = None,
        cash_register_id: UUID | None = None,
        actor_id: UUID | None = None,
    ) -> PlanView:
        with self._plan_scope("process_pending_credit_card", plan_id, actor_id) as session:
            plan = self._settlement(session).process_pending_credit_card(
                plan_id, as_of=as_of, cash_register_id=cash_register_id, actor_id=actor_id,
            )
            view = plan.to_dto()
            context = (plan.institution_ref, plan.season_ref)

        self._publish(
            actor_id, "payment", plan_id,
            f"Pending credit card charge settled: {view.discounted_amount}", context,
        )
        return view

    def analyze_discrepancies(self, plan_ids: list[UUID] | None = None) -> DiscrepancyReport:
        with LogContext.bind(operation="analyze_discrepancies"):
            with self._transaction("analyze_discrepancies") as session:
                report = DiscrepancySelector(session).analyze(plan_ids)
            logger.info(
                "discrepancy_analysis_completed",
                extra={
                    "plans_checked": report.plans_checked,
                    "discrepancy_count": len(report.discrepancies),
                },
            )
            return report

    def repair_installment_sync(self) -> RepairReport:
        """
        Repair every plan, one transaction and one plan lock at a time.

        A plan that fails to repair is rolled back on its own; the error is
        raised after the plans before it have been committed.
        """
        with LogContext.bind(operation="repair_installment_sync"):
            with self._transaction("repair_installment_sync") as session:
                plan_ids = InstallmentSyncService(session).plan_ids()

            repairs: list[PlanRepair] = []
            for plan_id in plan_ids:
                with self._plan_scope("repair_installment_sync", plan_id, None) as session:
                    service = InstallmentSyncService(
                        session, epsilon=self._policy.rounding_epsilon, clock=self._clock,
                    )
                    repairs.append(service.repair_plan(plan_id))

            report = RepairReport(
                plans_checked=len(repairs),
                plans_updated=sum(1 for r in repairs if r.changed),
                installments_force_paid=tuple(i for r in repairs for i in r.force_paid),
                amounts_rounded=sum(r.amounts_rounded for r in repairs),
            )
            logger.info(
                "installment_sync_completed",
                extra={
                    "plans_checked": report.plans_checked,
                    "plans_updated": report.plans_updated,
                    "installments_force_paid": len(report.installments_force_paid),
                    "amounts_rounded": report.amounts_rounded,
                },
            )
            return report

    def recalculate_student_balance(
        self, student_id: UUID, actor_id: UUID | None = None,
    ) -> StudentBalanceReport:
        """Rebuild the student's balance from the outstanding debt on their plans."""
        with LogContext.bind(
            operation="recalculate_student_balance", student_id=student_id, actor_id=actor_id,
        ):
            with self._transaction("recalculate_student_balance") as session:
                report = StudentBalanceService(session).recalculate(student_id)

        publish_activity(
            self._activity,
            user=str(actor_id) if actor_id else None,
            action="recalculate",
            entity="student",
            entity_id=str(student_id),
            description=(
                f"Balance recalculated: {report.old_balance} -> {report.new_balance} "
                f"({len(report.plans)} payment plans scanned)"
            ),
            institution=None,
            season=None,
        )
        return report

    def get_plan(self, plan_id: UUID) -> PlanView:
        with self._transaction("get_plan") as session:
            return LedgerStore(session).load_plan(plan_id).to_dto()

    # =========================================================================
    # Internal Implementation
    # =========================================================================

    def _settlement(self, session: Session, store: LedgerStore | None = None) -> SettlementService:
        return SettlementService(session, policy=self._policy, clock=self._clock, store=store)

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[Session]:
        """Commit on success, roll back on any failure, always close."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except BillingKernelError as exc:
            session.rollback()
            logger.info(
                "operation_rejected",
                extra={"rejected_operation": operation, "error_code": exc.code, "error": str(exc)},
            )
            raise
        except SQLAlchemyError as exc:
            session.rollback()
            logger.error(
                "operation_rolled_back",
                extra={"rolled_back_operation": operation},
                exc_info=True,
            )
            raise LedgerStorageError(operation, str(exc)) from exc
        except Exception:
            session.rollback()
            logger.error(
                "operation_rolled_back",
                extra={"rolled_back_operation": operation},
                exc_info=True,
            )
            raise
        finally:
            session.close()

    @contextmanager
    def _plan_scope(self, operation: str, plan_id: UUID, actor_id: UUID | None) -> Iterator[Session]:
        """Plan lock held around the whole transaction, commit included."""
        with LogContext.bind(operation=operation, plan_id=plan_id, actor_id=actor_id):
            with self._locks.hold(plan_id):
                with self._transaction(operation) as session:
                    yield session

    @staticmethod
    def _plan_context(session: Session, plan_id: UUID) -> tuple[str | None, str | None]:
        plan = LedgerStore(session).load_plan(plan_id)
        return plan.institution_ref, plan.season_ref

    def _publish(
        self,
        actor_id: UUID | None,
        action: str,
        plan_id: UUID,
        description: str,
        context: tuple[str | None, str | None],
    ) -> None:
        institution, season = context
        publish_activity(
            self._activity,
            user=str(actor_id) if actor_id else None,
            action=action,
            entity="payment_plan",
            entity_id=str(plan_id),
            description=description,
            institution=institution,
            season=season,
        )
