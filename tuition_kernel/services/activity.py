"""
Activity sink -- fire-and-forget audit trail of billing actions.

The billing facade reports each committed operation here.  A sink failure
is logged and swallowed; it never fails or rolls back the financial
operation that triggered it.
"""

from typing import Any, Protocol

from tuition_kernel.domain.dtos import EnrollmentTerms
from tuition_kernel.logging_config import get_logger

logger = get_logger("services.activity")


class ActivitySink(Protocol):
    def record(
        self,
        user: str | None,
        action: str,
        entity: str,
        entity_id: str,
        description: str,
        institution: str | None = None,
        season: str | None = None,
    ) -> None: ...


class EnrollmentDirectory(Protocol):
    """Looks up the price and references of a student's enrollment."""

    def get_enrollment(self, student_id: Any, enrollment_ref: str) -> EnrollmentTerms: ...


class LoggingActivitySink:
    """Default sink: one structured log record per activity."""

    def record(
        self,
        user: str | None,
        action: str,
        entity: str,
        entity_id: str,
        description: str,
        institution: str | None = None,
        season: str | None = None,
    ) -> None:
        logger.info(
            "activity_recorded",
            extra={
                "activity_user": user,
                "activity_action": action,
                "activity_entity": entity,
                "activity_entity_id": entity_id,
                "activity_description": description,
                "activity_institution": institution,
                "activity_season": season,
            },
        )


def publish_activity(sink: ActivitySink | None, **fields: Any) -> None:
    """Hand one activity to ``sink``; failures are logged, never raised."""
    if sink is None:
        return
    try:
        sink.record(**fields)
    except Exception:
        logger.warning(
            "activity_sink_failed",
            extra={
                "activity_action": fields.get("action"),
                "activity_entity_id": fields.get("entity_id"),
            },
            exc_info=True,
        )
