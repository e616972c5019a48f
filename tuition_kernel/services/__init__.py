"""Services for the tuition kernel (write side)."""

from tuition_kernel.services.activity import (
    ActivitySink,
    EnrollmentDirectory,
    LoggingActivitySink,
    publish_activity,
)
from tuition_kernel.services.billing_service import TuitionBillingService
from tuition_kernel.services.deletion_service import DeletionService
from tuition_kernel.services.installment_sync_service import InstallmentSyncService, PlanRepair
from tuition_kernel.services.ledger_store import LedgerStore
from tuition_kernel.services.plan_builder import PlanBuilder
from tuition_kernel.services.plan_lock import PlanLockRegistry
from tuition_kernel.services.refund_service import RefundService
from tuition_kernel.services.settlement_service import SettlementService, parse_overpayment_handling
from tuition_kernel.services.student_balance_service import StudentBalanceService

__all__ = [
    "ActivitySink",
    "DeletionService",
    "EnrollmentDirectory",
    "InstallmentSyncService",
    "LedgerStore",
    "LoggingActivitySink",
    "PlanBuilder",
    "PlanLockRegistry",
    "PlanRepair",
    "RefundService",
    "SettlementService",
    "StudentBalanceService",
    "TuitionBillingService",
    "parse_overpayment_handling",
    "publish_activity",
]
