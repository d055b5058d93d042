"""
Push Event Models
=================
Inbound server events and the notifications they produce.

Wire payloads are validated with Pydantic so a malformed event is rejected
at the edge instead of deep inside a handler.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class EventKind(str, Enum):
    """Server event kinds this client acts on. Other kinds are ignored."""
    NEW_MESSAGE = "new_message"
    MESSAGE_SENT = "message_sent"
    AUTH_ACK = "auth_ack"


@dataclass(frozen=True)
class InboundEvent:
    """A decoded push event: its kind, the full payload, and arrival time."""
    kind: str
    payload: Dict[str, Any]
    received_at: float = field(default_factory=time.time)

    @classmethod
    def from_wire(cls, data: Any) -> Optional["InboundEvent"]:
        """Return an InboundEvent for a decoded JSON object, None for anything else."""
        if not isinstance(data, dict):
            return None
        kind = data.get("type")
        if not isinstance(kind, str) or not kind:
            return None
        return cls(kind=kind, payload=data)


class MessagePayload(BaseModel):
    """The ``message`` object carried by ``new_message`` and ``message_sent``."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    id: Optional[int] = None
    sender_id: int = Field(validation_alias=AliasChoices("sender_id", "senderId"))
    recipient_id: Optional[int] = Field(
        default=None,
        validation_alias=AliasChoices("recipient_id", "recipientId")
    )
    subject: Optional[str] = None


class HandshakeMessage(BaseModel):
    """Client→server message binding a connection to an identity."""
    model_config = ConfigDict(populate_by_name=True)

    type: str = "auth"
    user_id: int = Field(serialization_alias="userId")
    user_type: str = Field(serialization_alias="userType")

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True)


class NotificationPriority(str, Enum):
    NORMAL = "normal"
    LOW = "low"


@dataclass(frozen=True)
class Notification:
    """User-visible notification. LOW priority must not interrupt the user."""
    title: str
    body: str
    priority: NotificationPriority = NotificationPriority.NORMAL
    kind: str = ""
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "body": self.body,
            "priority": self.priority.value,
            "kind": self.kind,
            "timestamp": self.timestamp,
        }
