"""
Access control for queries.

Each query is checked once, before any statement is built. The policy says
which scope the session may use for the action (`all` rows or only the
rows it `own`s); an `own` scope is turned into an equality filter on the
model's access-identity column.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Iterable, Protocol, runtime_checkable

from modelquery.errors import AccessDenied

if TYPE_CHECKING:
    from modelquery.models import Model
    from modelquery.session import Session
    from .request import QueryRequest

logger = logging.getLogger(__name__)

SCOPE_ALL = "all"
SCOPE_OWN = "own"


@dataclass(frozen=True)
class AccessDecision:
    """
    Outcome of the access check for one request.

    Attributes:
        action: `read` when filtering by identifier, otherwise `list`
        scope: `all`, `own`, or None when bypassed
        access_id_name: Column filtered on for `own` scope
        access_id: Value that column must equal
        states: Action states implied by the filter
        bypassed: True when the request set `allow`
    """

    action: str
    scope: str | None = None
    access_id_name: str | None = None
    access_id: str | None = None
    states: tuple[str, ...] = ()
    bypassed: bool = False

    @property
    def filter(self) -> dict[str, Any]:
        """Filter to merge into the statement (empty unless scope is own)."""
        if self.access_id_name is None:
            return {}
        return {self.access_id_name: self.access_id}

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action,
            "scope": self.scope,
            "accessIdName": self.access_id_name,
            "accessId": self.access_id,
            "states": list(self.states),
            "bypassed": self.bypassed,
        }


@runtime_checkable
class AccessPolicy(Protocol):
    """Contract for access-control policies."""

    def allowed_scope(
        self,
        action: str,
        model: str,
        session: Session,
        states: Iterable[str],
    ) -> str | None:
        """Return `all`, `own`, or None when access is denied."""
        ...

    def audit(
        self,
        action: str,
        model: str,
        session: Session,
        states: Iterable[str],
    ) -> Any:
        """Describe a check, attached to AccessDenied."""
        ...


class AllowAllPolicy:
    """Grants `all` scope for every action."""

    def allowed_scope(self, action, model, session, states) -> str | None:
        return SCOPE_ALL

    def audit(self, action, model, session, states) -> dict[str, Any]:
        return {"policy": "allow_all", "action": action, "model": model}


@dataclass(frozen=True)
class AccessRule:
    """
    One grant. `*` matches any role, model, action or state.

    A rule only applies to a query whose implied states are all listed in
    `states` (so the default rule grants access to non-deleted rows only).
    """

    role: str
    model: str = "*"
    action: str = "*"
    scope: str = SCOPE_ALL
    states: tuple[str, ...] = ()

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "AccessRule":
        states = data.get("states") or ()
        if isinstance(states, str):
            states = (states,)
        return cls(
            role=data["role"],
            model=data.get("model", "*"),
            action=data.get("action", "*"),
            scope=data.get("scope", SCOPE_ALL),
            states=tuple(states),
        )

    def matches(self, role: str, action: str, model: str, states: Iterable[str]) -> bool:
        if self.role not in ("*", role):
            return False
        if self.model not in ("*", model):
            return False
        if self.action not in ("*", action):
            return False
        if "*" in self.states:
            return True
        return all(state in self.states for state in states)


class RoleAccessPolicy:
    """
    Role-based access policy.

    The widest scope granted by any rule matching one of the session's roles
    wins: `all` beats `own`.

    Example:
        policy = RoleAccessPolicy([
            {"role": "admin", "scope": "all", "states": ["*"]},
            {"role": "all", "model": "post", "action": "list", "scope": "own"},
        ])
    """

    def __init__(self, rules: Iterable[AccessRule | dict[str, Any]] = ()):
        self.rules: list[AccessRule] = [
            r if isinstance(r, AccessRule) else AccessRule.from_dict(r) for r in rules
        ]

    def add_rule(self, rule: AccessRule | dict[str, Any]) -> None:
        self.rules.append(rule if isinstance(rule, AccessRule) else AccessRule.from_dict(rule))

    def _matching(self, action, model, session, states) -> list[AccessRule]:
        states = list(states)
        roles = session.roles if session is not None else ()
        return [
            rule
            for rule in self.rules
            for role in roles
            if rule.matches(role, action, model, states)
        ]

    def allowed_scope(self, action, model, session, states) -> str | None:
        scopes = {rule.scope for rule in self._matching(action, model, session, states)}
        if SCOPE_ALL in scopes:
            return SCOPE_ALL
        if SCOPE_OWN in scopes:
            return SCOPE_OWN
        return None

    def audit(self, action, model, session, states) -> dict[str, Any]:
        return {
            "policy": "role",
            "action": action,
            "model": model,
            "roles": list(session.roles) if session is not None else [],
            "states": list(states),
            "rules": len(self.rules),
        }


def action_states(model: Model, where: dict[str, Any]) -> tuple[str, ...]:
    """
    Action states implied by a filter.

    `isDeleted` adds its state when true or null (deleted rows may be
    returned); other state properties add theirs when truthy.
    """
    states = []
    for prop, state in model.action_states.items():
        if prop not in where:
            continue
        value = where[prop]
        if prop == "isDeleted":
            if value is True or value is None:
                states.append(state)
        elif value:
            states.append(state)
    return tuple(states)


def resolve_access(
    policy: AccessPolicy,
    model: Model,
    request: QueryRequest,
    session: Session,
) -> AccessDecision:
    """
    Check access for a request.

    Raises:
        AccessDenied: If the policy grants no scope, or grants `own` but the
            session carries no usable access identity
    """
    action = "read" if request.id_filter(model) is not None else "list"
    if request.allow:
        return AccessDecision(action=action, bypassed=True)

    states = action_states(model, request.where)
    scope = policy.allowed_scope(action, model.name, session, states)
    if scope is None:
        logger.debug(f"[access] Denied {action} on {model.name} states={states}")
        raise AccessDenied(
            "access denied",
            model=model.name,
            action=action,
            audit=policy.audit(action, model.name, session, states),
        )

    if scope != SCOPE_OWN:
        return AccessDecision(action=action, scope=scope, states=states)

    if (
        model.access_id_name is not None
        and session.access_id is not None
        and session.access_id_name == model.access_id_name
    ):
        return AccessDecision(
            action=action,
            scope=scope,
            access_id_name=session.access_id_name,
            access_id=session.access_id,
            states=states,
        )
    if session.account_id is not None and model.has_column("accountId"):
        return AccessDecision(
            action=action,
            scope=scope,
            access_id_name="accountId",
            access_id=session.account_id,
            states=states,
        )
    raise AccessDenied(
        "access denied: no access id for own scope",
        model=model.name,
        action=action,
        audit=policy.audit(action, model.name, session, states),
    )
