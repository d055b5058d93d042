"""
Session Models
==============
Identity and session state owned by the Session Store.

State Machine:
    [UNKNOWN] ──revalidated──► [AUTHENTICATED] ◄──login/register──┐
        │                          │      ▲                      │
        │                        401/     │                      │
       401                      logout    └────revalidated───────┤
        │                          ▼                             │
        └──────────────────► [UNAUTHENTICATED] ──────────────────┘
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class Role(str, Enum):
    """
    Principal kinds. Values are the ``userType`` strings used on the wire.
    """
    PROFESSIONAL = "psychologist"
    CLIENT = "patient"

    @classmethod
    def from_wire(cls, value: Any) -> "Role":
        """
        Parse a role from a server user record or a persisted marker.

        Accepts both wire values and the generic names
        (``professional`` / ``client``).

        Raises:
            ValueError: If the value names no known role
        """
        normalized = str(value or "").strip().lower()
        aliases = {
            "psychologist": cls.PROFESSIONAL,
            "professional": cls.PROFESSIONAL,
            "patient": cls.CLIENT,
            "client": cls.CLIENT,
        }
        if normalized not in aliases:
            raise ValueError(f"Unknown role: {value!r}")
        return aliases[normalized]


@dataclass(frozen=True)
class Identity:
    """Authenticated principal for the current session."""
    id: int
    role: Role
    display_name: str = ""

    @classmethod
    def from_payload(cls, payload: Mapping[str, Any]) -> "Identity":
        """
        Build an Identity from a server user record or a persisted marker blob.

        Role is read from ``user_type``, ``userType`` or ``role``; the display
        name falls back from ``display_name`` to ``full_name`` to ``username``.

        Raises:
            ValueError: If the id or role is missing or invalid
        """
        if not isinstance(payload, Mapping):
            raise ValueError("Identity payload must be a mapping")

        raw_id = payload.get("id")
        if raw_id is None or isinstance(raw_id, bool):
            raise ValueError("Identity payload has no id")
        try:
            user_id = int(raw_id)
        except (TypeError, ValueError) as e:
            raise ValueError(f"Invalid identity id: {raw_id!r}") from e

        raw_role = payload.get("user_type") or payload.get("userType") or payload.get("role")
        role = Role.from_wire(raw_role)

        display_name = (
            payload.get("display_name")
            or payload.get("full_name")
            or payload.get("username")
            or ""
        )
        return cls(id=user_id, role=role, display_name=str(display_name))

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for the local "last known identity" marker."""
        return {
            "id": self.id,
            "role": self.role.value,
            "display_name": self.display_name,
        }


class SessionStatus(Enum):
    UNKNOWN = "unknown"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


@dataclass(frozen=True)
class SessionState:
    """
    Session belief: a status plus the identity when authenticated.

    Use the ``unknown()``, ``authenticated()`` and ``unauthenticated()``
    constructors; they keep identity present exactly when authenticated.
    """
    status: SessionStatus
    identity: Optional[Identity] = None

    @classmethod
    def unknown(cls) -> "SessionState":
        return cls(SessionStatus.UNKNOWN)

    @classmethod
    def authenticated(cls, identity: Identity) -> "SessionState":
        return cls(SessionStatus.AUTHENTICATED, identity)

    @classmethod
    def unauthenticated(cls) -> "SessionState":
        return cls(SessionStatus.UNAUTHENTICATED)

    @property
    def is_authenticated(self) -> bool:
        return self.status == SessionStatus.AUTHENTICATED

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "user_id": self.identity.id if self.identity else None,
            "role": self.identity.role.value if self.identity else None,
        }
