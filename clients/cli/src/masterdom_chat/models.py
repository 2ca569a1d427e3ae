"""Immutable records parsed from backend JSON."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .errors import ProtocolError

_FRACTION_RE = re.compile(r"\.(\d+)")


def parse_timestamp(value: Any) -> datetime:
    """Parse an RFC 3339 timestamp into an aware ``datetime``.

    The backend serializes Go ``time.Time`` values, which may carry a trailing
    ``Z`` and up to nine fractional digits; both are normalized before parsing.
    Naive values are taken as UTC.
    """

    if not isinstance(value, str) or not value:
        raise ProtocolError(f"expected timestamp string, got {value!r}")
    text = value.strip()
    if text.endswith(("Z", "z")):
        text = text[:-1] + "+00:00"
    text = _FRACTION_RE.sub(lambda match: "." + match.group(1)[:6].ljust(6, "0"), text, count=1)
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError as exc:
        raise ProtocolError(f"invalid timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _require_object(data: Any, what: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise ProtocolError(f"{what} must be a JSON object")
    return data


def _require_str(data: Dict[str, Any], key: str, what: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value:
        raise ProtocolError(f"{what} is missing {key!r}")
    return value


def _optional_str(data: Dict[str, Any], key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


@dataclass(frozen=True)
class ConversationPreview:
    conversation_id: str
    counterpart_id: str
    counterpart_display_name: str
    subject_offer_title: str
    last_message_content: str
    last_message_at: datetime

    @classmethod
    def from_json(cls, data: Any) -> "ConversationPreview":
        entry = _require_object(data, "conversation preview")
        return cls(
            conversation_id=_require_str(entry, "conversationId", "conversation preview"),
            counterpart_id=_optional_str(entry, "otherParticipantId"),
            counterpart_display_name=_optional_str(entry, "otherParticipantName"),
            subject_offer_title=_optional_str(entry, "offerTitle"),
            last_message_content=_optional_str(entry, "lastMessageContent"),
            last_message_at=parse_timestamp(entry.get("lastMessageAt")),
        )


@dataclass(frozen=True)
class Participant:
    participant_id: str
    display_name: str

    @classmethod
    def from_json(cls, data: Any) -> "Participant":
        entry = _require_object(data, "participant")
        return cls(
            participant_id=_require_str(entry, "id", "participant"),
            display_name=_optional_str(entry, "firstName"),
        )


@dataclass(frozen=True)
class ConversationDetail:
    conversation_id: str
    subject_offer_id: str
    subject_offer_title: str
    participants: Tuple[Participant, ...]

    @classmethod
    def from_json(cls, data: Any) -> "ConversationDetail":
        entry = _require_object(data, "conversation detail")
        raw_participants = entry.get("participants") or []
        if not isinstance(raw_participants, list):
            raise ProtocolError("conversation detail participants must be a list")
        return cls(
            conversation_id=_require_str(entry, "conversationId", "conversation detail"),
            subject_offer_id=_optional_str(entry, "offerId"),
            subject_offer_title=_optional_str(entry, "offerTitle"),
            participants=tuple(Participant.from_json(item) for item in raw_participants),
        )

    def counterpart(self, subject_id: str) -> Optional[Participant]:
        for participant in self.participants:
            if participant.participant_id != subject_id:
                return participant
        return None


@dataclass(frozen=True)
class Message:
    message_id: str
    conversation_id: str
    sender_id: str
    sender_display_name: str
    content: str
    created_at: datetime
    is_read: bool = False

    @classmethod
    def from_json(cls, data: Any, conversation_id: str = "") -> "Message":
        entry = _require_object(data, "message")
        return cls(
            message_id=_require_str(entry, "id", "message"),
            conversation_id=_optional_str(entry, "conversationId") or conversation_id,
            sender_id=_require_str(entry, "senderId", "message"),
            sender_display_name=_optional_str(entry, "senderFirstName"),
            content=_optional_str(entry, "content"),
            created_at=parse_timestamp(entry.get("createdAt")),
            is_read=bool(entry.get("isRead", False)),
        )
