"""Transaction events, session markers and the session summary fold."""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime, timedelta
from typing import Any

from converge.health import HealthCheckResult, HealthCheckStatus, worst_health_result
from converge.model.state import ResourceState

TRANSACTION_EVENT_PROTOCOL = "converge.v1.transaction.event"
SESSION_START_PROTOCOL = "converge.v1.session.start"
SESSION_END_PROTOCOL = "converge.v1.session.end"


def _new_event_id() -> str:
    return uuid.uuid4().hex


def _utcnow() -> datetime:
    return datetime.now(UTC)


@dataclass(frozen=True, slots=True)
class TransactionEvent:
    """Immutable record of a single resource apply."""

    resource_type: str
    name: str
    event_id: str = field(default_factory=_new_event_id)
    timestamp: datetime = field(default_factory=_utcnow)
    protocol: str = TRANSACTION_EVENT_PROTOCOL
    alias: str = ""
    provider: str = ""
    requested_ensure: str = ""
    final_ensure: str = ""
    duration: timedelta = timedelta(0)
    properties: Mapping[str, Any] = field(default_factory=dict)
    status: ResourceState[Any] | None = None
    health_checks: tuple[HealthCheckResult, ...] = ()
    errors: tuple[str, ...] = ()
    changed: bool = False
    refreshed: bool = False
    failed: bool = False
    skipped: bool = False
    noop: bool = False
    noop_message: str = ""

    @property
    def resource_id(self) -> str:
        return f"{self.resource_type}#{self.name}"

    @property
    def health_check(self) -> HealthCheckResult | None:
        return worst_health_result(self.health_checks)

    @property
    def stable(self) -> bool:
        return not (self.failed or self.skipped or self.changed)

    def finalize(self, **changes: Any) -> TransactionEvent:
        """Return a completed copy of this event."""
        return replace(self, **changes)

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable representation."""
        payload: dict[str, Any] = {
            "protocol": self.protocol,
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.resource_type,
            "name": self.name,
            "provider": self.provider,
            "requested_ensure": self.requested_ensure,
            "final_ensure": self.final_ensure,
            "duration_seconds": self.duration.total_seconds(),
            "properties": dict(self.properties),
            "changed": self.changed,
            "refreshed": self.refreshed,
            "failed": self.failed,
            "skipped": self.skipped,
            "noop": self.noop,
            "errors": list(self.errors),
        }
        if self.alias:
            payload["alias"] = self.alias
        if self.noop_message:
            payload["noop_message"] = self.noop_message
        if self.status is not None:
            payload["status"] = self.status.to_dict()
        if self.health_checks:
            payload["health_checks"] = [result.to_dict() for result in self.health_checks]
        return payload

    def __str__(self) -> str:
        label = self.resource_id if not self.alias else f"{self.resource_id} ({self.alias})"
        return (
            f"{label} ensure={self.final_ensure or '-'} changed={self.changed} "
            f"refreshed={self.refreshed} failed={self.failed} skipped={self.skipped} "
            f"noop={self.noop} duration={self.duration.total_seconds():.3f}s"
        )

    def log_status(self, logger: logging.Logger | logging.LoggerAdapter) -> None:
        """Log a single line describing the outcome of this event."""
        extra = {
            "resource_type": self.resource_type,
            "resource_name": self.name,
            "ensure": self.final_ensure,
            "duration_seconds": self.duration.total_seconds(),
        }
        if self.failed:
            logger.error("Resource failed: %s", "; ".join(self.errors), extra=extra)
        elif self.skipped:
            logger.warning("Resource skipped", extra=extra)
        elif self.noop and self.changed:
            logger.warning("Resource would change: %s", self.noop_message, extra=extra)
        elif self.refreshed:
            logger.warning("Resource refreshed", extra=extra)
        elif self.changed:
            logger.warning("Resource changed", extra=extra)
        else:
            logger.info("Resource stable", extra=extra)

        check = self.health_check
        if check is not None and check.status is not HealthCheckStatus.OK:
            logger.warning(
                "Health check %s: %s",
                check.status,
                check.output,
                extra={**extra, "check": check.name},
            )


@dataclass(frozen=True, slots=True)
class SessionStartEvent:
    event_id: str = field(default_factory=_new_event_id)
    timestamp: datetime = field(default_factory=_utcnow)
    protocol: str = SESSION_START_PROTOCOL

    def to_dict(self) -> dict[str, Any]:
        return {
            "protocol": self.protocol,
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class SessionEndEvent:
    event_id: str = field(default_factory=_new_event_id)
    timestamp: datetime = field(default_factory=_utcnow)
    protocol: str = SESSION_END_PROTOCOL

    def to_dict(self) -> dict[str, Any]:
        return {
            "protocol": self.protocol,
            "event_id": self.event_id,
            "timestamp": self.timestamp.isoformat(),
        }


SessionEvent = TransactionEvent | SessionStartEvent | SessionEndEvent


@dataclass(frozen=True, slots=True)
class SessionSummary:
    """Aggregate counters over a session's events."""

    start_time: datetime | None = None
    end_time: datetime | None = None
    total_duration: timedelta = timedelta(0)
    total_resources: int = 0
    unique_resources: int = 0
    changed_resources: int = 0
    failed_resources: int = 0
    skipped_resources: int = 0
    stable_resources: int = 0
    refreshed_count: int = 0
    total_errors: int = 0
    health_checked_resources: int = 0
    health_check_ok_count: int = 0
    health_check_warning_count: int = 0
    health_check_critical_count: int = 0
    health_check_unknown_count: int = 0

    @property
    def successful(self) -> bool:
        return self.failed_resources == 0 and self.total_errors == 0

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-serializable representation."""
        return {
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "total_duration_seconds": self.total_duration.total_seconds(),
            "total_resources": self.total_resources,
            "unique_resources": self.unique_resources,
            "changed_resources": self.changed_resources,
            "failed_resources": self.failed_resources,
            "skipped_resources": self.skipped_resources,
            "stable_resources": self.stable_resources,
            "refreshed_count": self.refreshed_count,
            "total_errors": self.total_errors,
            "health_checked_resources": self.health_checked_resources,
            "health_check_ok_count": self.health_check_ok_count,
            "health_check_warning_count": self.health_check_warning_count,
            "health_check_critical_count": self.health_check_critical_count,
            "health_check_unknown_count": self.health_check_unknown_count,
        }

    def log_summary(self, logger: logging.Logger | logging.LoggerAdapter) -> None:
        level = logging.INFO if self.successful else logging.ERROR
        logger.log(
            level,
            "Session completed: %d resources, %d changed, %d failed, %d skipped, %d stable",
            self.total_resources,
            self.changed_resources,
            self.failed_resources,
            self.skipped_resources,
            self.stable_resources,
            extra={"summary": self.to_dict()},
        )


def build_session_summary(events: Iterable[SessionEvent]) -> SessionSummary:
    """Fold session events into a summary.

    Each transaction event falls into exactly one of failed, skipped, changed
    or stable, checked in that order. Refreshed is counted on its own.
    Without an end marker the end of the latest event closes the session;
    without a start marker the duration is the sum of event durations.
    """
    start_time: datetime | None = None
    end_time: datetime | None = None
    last_event_end: datetime | None = None
    summed = timedelta(0)
    counts = {
        "total": 0,
        "changed": 0,
        "failed": 0,
        "skipped": 0,
        "stable": 0,
        "refreshed": 0,
        "errors": 0,
        "health_checked": 0,
    }
    health_counts = dict.fromkeys(HealthCheckStatus, 0)
    unique: set[tuple[str, str]] = set()

    for event in events:
        if isinstance(event, SessionStartEvent):
            start_time = event.timestamp
            continue
        if isinstance(event, SessionEndEvent):
            end_time = event.timestamp
            continue

        counts["total"] += 1
        unique.add((event.resource_type, event.name))
        summed += event.duration
        event_end = event.timestamp + event.duration
        if last_event_end is None or event_end > last_event_end:
            last_event_end = event_end

        if event.failed:
            counts["failed"] += 1
        elif event.skipped:
            counts["skipped"] += 1
        elif event.changed:
            counts["changed"] += 1
        else:
            counts["stable"] += 1

        if event.refreshed:
            counts["refreshed"] += 1
        counts["errors"] += len(event.errors)

        worst = event.health_check
        if worst is not None:
            counts["health_checked"] += 1
            health_counts[worst.status] += 1

    if start_time is not None and end_time is not None:
        total_duration = end_time - start_time
    elif start_time is not None and last_event_end is not None:
        total_duration = last_event_end - start_time
    else:
        total_duration = summed

    return SessionSummary(
        start_time=start_time,
        end_time=end_time,
        total_duration=max(total_duration, timedelta(0)),
        total_resources=counts["total"],
        unique_resources=len(unique),
        changed_resources=counts["changed"],
        failed_resources=counts["failed"],
        skipped_resources=counts["skipped"],
        stable_resources=counts["stable"],
        refreshed_count=counts["refreshed"],
        total_errors=counts["errors"],
        health_checked_resources=counts["health_checked"],
        health_check_ok_count=health_counts[HealthCheckStatus.OK],
        health_check_warning_count=health_counts[HealthCheckStatus.WARNING],
        health_check_critical_count=health_counts[HealthCheckStatus.CRITICAL],
        health_check_unknown_count=health_counts[HealthCheckStatus.UNKNOWN],
    )
