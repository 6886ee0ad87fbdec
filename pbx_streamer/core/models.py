"""
Core data models for the PBX audio streamer.

Typed structures passed between the token manager, the call-control
services, the upload streamer and the event subscription loop.
"""

import json
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Optional, TYPE_CHECKING

from ..errors import EventParseError

if TYPE_CHECKING:
    from .cancellation import CancellationToken


PARTICIPANT_SEGMENT = "/participants/"

# 3CX call-control event types
EVENT_UPSERT = 0
EVENT_REMOVE = 1

STATUS_CONNECTED = "Connected"


@dataclass(frozen=True)
class Credential:
    """Bearer token and its expiry (epoch seconds, None when unknown)."""
    token: str
    expires_at: Optional[float] = None
    obtained_at: float = field(default_factory=time.time)

    @property
    def authorization(self) -> str:
        return f"Bearer {self.token}"


@dataclass(frozen=True)
class ParticipantRef:
    participant_id: str
    extension: Optional[str]
    entity: str


@dataclass
class ParticipantSnapshot:
    participant_id: str
    status: str
    extension: Optional[str] = None
    caller_name: Optional[str] = None
    party_dn: Optional[str] = None
    call_id: Optional[Any] = None

    @classmethod
    def from_payload(cls, payload: Dict[str, Any], ref: ParticipantRef) -> "ParticipantSnapshot":
        return cls(
            participant_id=str(payload.get("id", ref.participant_id)),
            status=payload["status"],
            extension=ref.extension,
            caller_name=payload.get("party_caller_name"),
            party_dn=payload.get("party_dn"),
            call_id=payload.get("callid"),
        )


@dataclass(frozen=True)
class EventEnvelope:
    """A single push event: `{"event": {"event_type": ..., "entity": ...}}`."""
    event_type: Any
    entity: str

    @classmethod
    def parse(cls, message: Any) -> "EventEnvelope":
        if isinstance(message, (bytes, bytearray)):
            try:
                message = message.decode("utf-8")
            except UnicodeDecodeError as e:
                raise EventParseError(f"Event message is not UTF-8: {e}") from e
        try:
            data = json.loads(message)
        except (TypeError, ValueError, RecursionError) as e:
            raise EventParseError(f"Event message is not valid JSON: {e}") from e

        event = data.get("event") if isinstance(data, dict) else None
        if not isinstance(event, dict):
            raise EventParseError("Event message has no 'event' object")
        entity = event.get("entity")
        if not isinstance(entity, str):
            raise EventParseError("Event has no entity path")
        return cls(event_type=event.get("event_type"), entity=entity)

    def participant_ref(self) -> Optional[ParticipantRef]:
        """Extract the participant reference, or None for non-participant entities."""
        if PARTICIPANT_SEGMENT not in self.entity:
            return None
        owner, _, tail = self.entity.partition(PARTICIPANT_SEGMENT)
        participant_id = tail.strip("/").split("/")[0]
        if not participant_id:
            return None
        # owner looks like "/callcontrol/111"
        extension = owner.rstrip("/").rsplit("/", 1)[-1] or None
        entity = f"{owner}{PARTICIPANT_SEGMENT}{participant_id}"
        return ParticipantRef(participant_id=participant_id, extension=extension, entity=entity)


class UploadState(str, Enum):
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class UploadSession:
    """State of one chunked audio upload; lives only as long as the upload."""
    extension: str
    participant_id: str
    byte_source: AsyncIterator[bytes]
    credential: Credential
    cancellation: "CancellationToken"
    bytes_sent: int = 0
    chunks_sent: int = 0
    exhausted: bool = False
    http_status: Optional[int] = None
    started_at: float = field(default_factory=time.time)


@dataclass(frozen=True)
class UploadOutcome:
    participant_id: str
    state: UploadState
    bytes_sent: int = 0
    chunks_sent: int = 0
    http_status: Optional[int] = None
    error: Optional[str] = None

    @classmethod
    def from_session(cls, session: UploadSession, state: UploadState, error: Optional[str] = None) -> "UploadOutcome":
        return cls(
            participant_id=session.participant_id,
            state=state,
            bytes_sent=session.bytes_sent,
            chunks_sent=session.chunks_sent,
            http_status=session.http_status,
            error=error,
        )
