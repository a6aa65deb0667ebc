"""
Acknowledgement token registry.

Tokens map to the TargetState or HookState they acknowledge. A target
token is valid only while it is the state's ``current_ack_token``; tokens
revoked on recovery are remembered for a while so late clicks are told the
incident is over instead of being rejected as unknown. Hook tokens are
never revoked by a recovery, so only the newest ``max_hook_tokens`` stay
live.

Lock order: a TargetState lock may be held while calling into the
registry, never the other way round.
"""

from __future__ import annotations

import secrets
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Union

import structlog

from quick_watch.exceptions import InvalidTokenError, NoActiveIncidentError
from quick_watch.state import HookState, TargetState

if TYPE_CHECKING:
    from collections.abc import Callable

logger = structlog.get_logger(__name__)

ANONYMOUS = "Anonymous"
MAX_RETIRED_TOKENS = 1000
MAX_HOOK_TOKENS = 1000

AckSubject = Union[TargetState, HookState]


@dataclass(frozen=True)
class AcknowledgementOutcome:
    """
    Result of an acknowledgement request.

    Attributes:
        subject: The acknowledged target or hook state.
        already_acknowledged: True if the request replayed an earlier one.
        acknowledged_by: Who acknowledged (the original acknowledger on replay).
        acknowledged_at: When it was acknowledged.
        note: Note left with the acknowledgement.
        contact: How to reach the acknowledger, if given.
    """

    subject: AckSubject
    already_acknowledged: bool
    acknowledged_by: str
    acknowledged_at: datetime
    note: str = ""
    contact: str = ""

    @property
    def subject_name(self) -> str:
        if isinstance(self.subject, HookState):
            return self.subject.hook_name
        return self.subject.name


class AcknowledgementRegistry:
    """Issues, resolves and revokes acknowledgement tokens."""

    def __init__(
        self,
        clock: Callable[[], datetime] | None = None,
        max_hook_tokens: int = MAX_HOOK_TOKENS,
    ) -> None:
        """
        Initialize the registry.

        Args:
            clock: Source of acknowledgement times.
            max_hook_tokens: Live hook tokens kept; the oldest is retired
                when a new one would exceed this.
        """
        self._lock = threading.Lock()
        self._tokens: dict[str, AckSubject] = {}
        self._hook_tokens: OrderedDict[str, None] = OrderedDict()
        self._retired: OrderedDict[str, tuple[bool, str]] = OrderedDict()
        self._max_hook_tokens = max_hook_tokens
        self._clock = clock or (lambda: datetime.now(tz=timezone.utc))
        self._logger = logger.bind(component="ack-registry")

    def __len__(self) -> int:
        with self._lock:
            return len(self._tokens)

    def __contains__(self, token: object) -> bool:
        with self._lock:
            return token in self._tokens

    def issue_token(self, subject: AckSubject) -> str:
        """Create a new token for a target incident or hook notification."""
        token = secrets.token_urlsafe(16)
        if isinstance(subject, HookState):
            subject.ack_token = token

        with self._lock:
            self._tokens[token] = subject
            if isinstance(subject, HookState):
                self._hook_tokens[token] = None
                while len(self._hook_tokens) > self._max_hook_tokens:
                    oldest, _ = self._hook_tokens.popitem(last=False)
                    self._retire(oldest)

        self._logger.debug("ack_token_issued", subject=_subject_name(subject))
        return token

    def lookup(self, token: str) -> AckSubject | None:
        with self._lock:
            return self._tokens.get(token)

    def revoke(self, token: str | None) -> None:
        """Forget a token; later acknowledgements report no active incident."""
        if not token:
            return
        with self._lock:
            self._hook_tokens.pop(token, None)
            self._retire(token)

    def _retire(self, token: str) -> None:
        # Caller holds self._lock
        subject = self._tokens.pop(token, None)
        if subject is None:
            return
        self._retired[token] = (isinstance(subject, HookState), _subject_name(subject))
        while len(self._retired) > MAX_RETIRED_TOKENS:
            self._retired.popitem(last=False)

    def acknowledge(
        self,
        token: str,
        acknowledged_by: str | None = None,
        note: str = "",
        contact: str = "",
    ) -> AcknowledgementOutcome:
        """
        Acknowledge the incident or notification behind a token.

        Args:
            token: Token from an acknowledgement link.
            acknowledged_by: Who is acknowledging (defaults to "Anonymous").
            note: Optional note.
            contact: Optional way to reach the acknowledger.

        Returns:
            The outcome. Repeated requests return ``already_acknowledged``
            without changing anything.

        Raises:
            InvalidTokenError: If the token was never issued.
            NoActiveIncidentError: If the token's incident is over.
        """
        acknowledged_by = acknowledged_by or ANONYMOUS

        with self._lock:
            subject = self._tokens.get(token)
            retired = self._retired.get(token)

        if subject is None:
            if retired is not None:
                was_hook, name = retired
                if was_hook:
                    raise NoActiveIncidentError.for_hook(name)
                raise NoActiveIncidentError.for_target(name)
            raise InvalidTokenError.for_token(token)

        if isinstance(subject, HookState):
            return self._acknowledge_hook(subject, acknowledged_by, note, contact)
        return self._acknowledge_target(subject, token, acknowledged_by, note, contact)

    def _acknowledge_target(
        self, state: TargetState, token: str, acknowledged_by: str, note: str, contact: str
    ) -> AcknowledgementOutcome:
        with state.lock:
            if not state.is_down or state.current_ack_token != token:
                raise NoActiveIncidentError.for_target(state.name)

            if state.acknowledged_at is not None:
                return AcknowledgementOutcome(
                    subject=state,
                    already_acknowledged=True,
                    acknowledged_by=state.acknowledged_by or ANONYMOUS,
                    acknowledged_at=state.acknowledged_at,
                    note=state.acknowledgement_note or "",
                    contact=state.acknowledgement_contact or "",
                )

            now = self._clock()
            state.acknowledged_at = now
            state.acknowledged_by = acknowledged_by
            state.acknowledgement_note = note
            state.acknowledgement_contact = contact or None

        self._logger.info("incident_acknowledged", target=state.name, acknowledged_by=acknowledged_by)
        return AcknowledgementOutcome(
            subject=state,
            already_acknowledged=False,
            acknowledged_by=acknowledged_by,
            acknowledged_at=now,
            note=note,
            contact=contact,
        )

    def _acknowledge_hook(
        self, hook: HookState, acknowledged_by: str, note: str, contact: str
    ) -> AcknowledgementOutcome:
        with self._lock:
            if hook.acknowledged_at is not None:
                return AcknowledgementOutcome(
                    subject=hook,
                    already_acknowledged=True,
                    acknowledged_by=hook.acknowledged_by or ANONYMOUS,
                    acknowledged_at=hook.acknowledged_at,
                    note=hook.acknowledgement_note or "",
                    contact=hook.acknowledgement_contact or "",
                )
            now = self._clock()
            hook.acknowledged_at = now
            hook.acknowledged_by = acknowledged_by
            hook.acknowledgement_note = note
            hook.acknowledgement_contact = contact or None

        self._logger.info("hook_acknowledged", hook=hook.hook_name, acknowledged_by=acknowledged_by)
        return AcknowledgementOutcome(
            subject=hook,
            already_acknowledged=False,
            acknowledged_by=acknowledged_by,
            acknowledged_at=now,
            note=note,
            contact=contact,
        )


def _subject_name(subject: AckSubject) -> str:
    if isinstance(subject, HookState):
        return subject.hook_name
    return subject.name
