"""
Session for modelquery.

The session identifies who is querying. It is consulted by access control
and inherited by every nested query (related records, resolution, cursor
pages).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4


@dataclass(frozen=True)
class Session:
    """
    Caller identity passed through the query pipeline.

    Attributes:
        account_id: Account the caller belongs to
        access_id: Access identity value used for `own` scope
        access_id_name: Column name the access identity applies to
        roles: Roles consulted by the access policy
        session_id: Identifier for logging/correlation
    """

    account_id: str | None = None
    access_id: str | None = None
    access_id_name: str | None = None
    roles: tuple[str, ...] = ("all",)
    session_id: str = field(default_factory=lambda: uuid4().hex)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "Session":
        """Build a session from a plain mapping (camelCase or snake_case keys)."""
        data = data or {}
        roles = data.get("roles") or ("all",)
        if isinstance(roles, str):
            roles = tuple(r.strip() for r in roles.split(",") if r.strip())
        kwargs: dict[str, Any] = {
            "account_id": data.get("account_id", data.get("accountId")),
            "access_id": data.get("access_id", data.get("accessId")),
            "access_id_name": data.get("access_id_name", data.get("accessIdName")),
            "roles": tuple(roles),
        }
        session_id = data.get("session_id", data.get("sessionId"))
        if session_id:
            kwargs["session_id"] = session_id
        return cls(**kwargs)

    def to_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "account_id": self.account_id,
            "access_id": self.access_id,
            "access_id_name": self.access_id_name,
            "roles": list(self.roles),
        }
