"""Session stores: the append-only event log of a manifest run."""

from __future__ import annotations

import logging
from typing import Protocol

from converge.errors import SessionError
from converge.model.transaction import (
    SessionEndEvent,
    SessionEvent,
    SessionStartEvent,
    SessionSummary,
    TransactionEvent,
    build_session_summary,
)

_LOGGER = logging.getLogger(__name__)


class SessionStore(Protocol):
    """Persistence contract for session events."""

    def start_session(self) -> SessionStartEvent:
        ...

    def stop_session(self, *, destroy: bool = False) -> SessionSummary:
        ...

    def record_event(self, event: SessionEvent) -> None:
        ...

    def all_events(self) -> list[SessionEvent]:
        ...

    def events_for_resource(self, resource_type: str, name: str) -> list[TransactionEvent]:
        ...

    def should_refresh(self, resource_type: str, name: str) -> bool:
        ...

    def summary(self) -> SessionSummary:
        ...


class MemorySessionStore:
    """In-memory session store.

    Besides the ordered event log it keeps the latest Changed flag of every
    resource, which answers refresh notifications.
    """

    def __init__(self, *, logger: logging.Logger | logging.LoggerAdapter | None = None) -> None:
        self._logger = logger or _LOGGER
        self._events: list[SessionEvent] = []
        self._changed: dict[tuple[str, str], bool] = {}
        self._active = False

    @property
    def active(self) -> bool:
        return self._active

    def start_session(self) -> SessionStartEvent:
        """Reset the log and record a start marker."""
        self._events = []
        self._changed = {}
        marker = SessionStartEvent()
        self._events.append(marker)
        self._active = True
        return marker

    def stop_session(self, *, destroy: bool = False) -> SessionSummary:
        """Record an end marker and return the summary of the session."""
        if not self._active:
            raise SessionError("no active session to stop")
        self._events.append(SessionEndEvent())
        self._active = False
        summary = build_session_summary(self._events)
        if destroy:
            self._events = []
            self._changed = {}
        return summary

    def record_event(self, event: SessionEvent) -> None:
        if isinstance(event, TransactionEvent):
            self._changed[(event.resource_type, event.name)] = event.changed
        self._events.append(event)

    def all_events(self) -> list[SessionEvent]:
        return list(self._events)

    def events_for_resource(self, resource_type: str, name: str) -> list[TransactionEvent]:
        return [
            event
            for event in self._events
            if isinstance(event, TransactionEvent)
            and event.resource_type == resource_type
            and event.name == name
        ]

    def should_refresh(self, resource_type: str, name: str) -> bool:
        """Whether ``type#name`` changed in this session.

        A resource that has not been applied yet cannot have changed, so it
        never triggers a refresh.
        """
        key = (resource_type, name)
        if key not in self._changed:
            self._logger.warning(
                "Subscribed resource has not been applied in this session",
                extra={"subscription": f"{resource_type}#{name}"},
            )
            return False
        return self._changed[key]

    def summary(self) -> SessionSummary:
        return build_session_summary(self._events)
