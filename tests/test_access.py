"""
Tests for access control.
"""
import pytest

from modelquery.errors import AccessDenied
from modelquery.query import (
    SCOPE_ALL,
    SCOPE_OWN,
    AccessRule,
    QueryEngine,
    QueryRequest,
    RoleAccessPolicy,
    resolve_access,
)
from modelquery.query.access import action_states
from modelquery.session import Session
from modelquery.store import new_id


def engine_with(policy, registry, store, views, settings) -> QueryEngine:
    return QueryEngine(registry, store, access_control=policy, views=views, settings=settings)


# =============================================================================
# Policy
# =============================================================================


class TestRoleAccessPolicy:
    """Rule matching and scope selection."""

    def test_all_beats_own(self):
        policy = RoleAccessPolicy([
            {"role": "all", "scope": "own"},
            {"role": "admin", "scope": "all"},
        ])
        admin = Session(roles=("all", "admin"))
        assert policy.allowed_scope("list", "post", admin, ()) == SCOPE_ALL
        assert policy.allowed_scope("list", "post", Session(), ()) == SCOPE_OWN

    def test_no_matching_rule_denies(self):
        policy = RoleAccessPolicy([{"role": "admin"}])
        assert policy.allowed_scope("list", "post", Session(), ()) is None

    def test_model_and_action_matching(self):
        policy = RoleAccessPolicy([{"role": "all", "model": "post", "action": "read"}])
        assert policy.allowed_scope("read", "post", Session(), ()) == SCOPE_ALL
        assert policy.allowed_scope("list", "post", Session(), ()) is None
        assert policy.allowed_scope("read", "user", Session(), ()) is None

    def test_states_must_be_granted(self):
        policy = RoleAccessPolicy([AccessRule(role="all")])
        assert policy.allowed_scope("list", "post", Session(), ("deleted",)) is None

        policy.add_rule({"role": "all", "states": ["deleted"]})
        assert policy.allowed_scope("list", "post", Session(), ("deleted",)) == SCOPE_ALL

    def test_wildcard_states(self):
        policy = RoleAccessPolicy([{"role": "*", "states": "*"}])
        assert policy.allowed_scope("list", "post", Session(roles=("x",)), ("deleted",)) == SCOPE_ALL


class TestActionStates:
    def test_deleted_state(self, registry):
        model = registry.get("post")
        assert action_states(model, {"isDeleted": True}) == ("deleted",)
        assert action_states(model, {"isDeleted": None}) == ("deleted",)
        assert action_states(model, {"isDeleted": False}) == ()


# =============================================================================
# Decisions
# =============================================================================


class TestResolveAccess:
    """Turning a policy answer into a statement filter."""

    def test_read_vs_list(self, registry):
        model = registry.get("post")
        policy = RoleAccessPolicy([{"role": "all"}])
        by_id = QueryRequest.from_args({"where": {"id": new_id()}}, model)
        listing = QueryRequest.from_args({}, model)

        assert resolve_access(policy, model, by_id, Session()).action == "read"
        assert resolve_access(policy, model, listing, Session()).action == "list"

    def test_own_scope_uses_account(self, registry):
        model = registry.get("post")
        policy = RoleAccessPolicy([{"role": "all", "scope": "own"}])
        request = QueryRequest.from_args({}, model)

        decision = resolve_access(policy, model, request, Session(account_id="acct"))

        assert decision.scope == SCOPE_OWN
        assert decision.filter == {"accountId": "acct"}

    def test_own_scope_uses_matching_access_id(self, registry):
        registry.load_definitions([{"name": "doc", "columns": ["ownerId"], "access_id_name": "ownerId"}])
        model = registry.get("doc")
        policy = RoleAccessPolicy([{"role": "all", "scope": "own"}])
        request = QueryRequest.from_args({}, model)
        session = Session(account_id="acct", access_id="me", access_id_name="ownerId")

        decision = resolve_access(policy, model, request, session)

        assert decision.filter == {"ownerId": "me"}

    def test_allow_bypasses_policy(self, registry):
        model = registry.get("post")
        request = QueryRequest.from_args({"allow": True}, model)

        decision = resolve_access(RoleAccessPolicy([]), model, request, Session())

        assert decision.bypassed
        assert decision.filter == {}

    def test_denial_carries_audit(self, registry):
        model = registry.get("post")
        request = QueryRequest.from_args({}, model)

        with pytest.raises(AccessDenied) as exc_info:
            resolve_access(RoleAccessPolicy([]), model, request, Session(roles=("guest",)))

        error = exc_info.value
        assert error.status_code == 403
        assert error.action == "list"
        assert error.audit["policy"] == "role"
        assert error.audit["roles"] == ["guest"]


# =============================================================================
# Queries
# =============================================================================


class TestQueryAccess:
    """Access control applied by the engine."""

    @pytest.mark.asyncio
    async def test_denied_query_makes_no_store_call(self, registry, store, views, settings):
        engine = engine_with(RoleAccessPolicy([]), registry, store, views, settings)

        with pytest.raises(AccessDenied):
            await engine.query("post", {"all": True}, Session())

        assert store.calls == []

    @pytest.mark.asyncio
    async def test_own_scope_without_identity_makes_no_store_call(self, registry, store, views, settings):
        policy = RoleAccessPolicy([{"role": "all", "scope": "own"}])
        engine = engine_with(policy, registry, store, views, settings)

        with pytest.raises(AccessDenied, match="no access id"):
            await engine.query("post", {"all": True}, Session())

        assert store.calls == []

    @pytest.mark.asyncio
    async def test_own_scope_without_access_column_denied(self, registry, store, views, settings, make):
        registry.load_definitions([{"name": "doc", "account_id": False}])
        policy = RoleAccessPolicy([{"role": "all", "scope": "own"}])
        engine = engine_with(policy, registry, store, views, settings)
        make("doc", {"title": "one"})
        make("doc", {"title": "two"})

        with pytest.raises(AccessDenied, match="no access id"):
            await engine.query("doc", {"all": True}, Session(access_id="someone"))

        assert store.calls == []

    @pytest.mark.asyncio
    async def test_own_scope_limits_rows(self, registry, store, views, settings, make):
        policy = RoleAccessPolicy([{"role": "all", "scope": "own"}])
        engine = engine_with(policy, registry, store, views, settings)
        mine = make("post", {"title": "mine"}, account_id="acct-1")
        make("post", {"title": "theirs"}, account_id="acct-2")

        posts = await engine.query("post", {"all": True}, Session(account_id="acct-1"))

        assert [p.id for p in posts] == [mine["id"]]

    @pytest.mark.asyncio
    async def test_where_cannot_widen_own_scope(self, registry, store, views, settings, make):
        policy = RoleAccessPolicy([{"role": "all", "scope": "own"}])
        engine = engine_with(policy, registry, store, views, settings)
        make("post", {"title": "theirs"}, account_id="acct-2")

        posts = await engine.query(
            "post", {"where": {"accountId": "acct-2"}, "all": True}, Session(account_id="acct-1")
        )

        assert posts == []

    @pytest.mark.asyncio
    async def test_own_scope_applies_to_lookup_by_id(self, registry, store, views, settings, make):
        policy = RoleAccessPolicy([{"role": "all", "scope": "own"}])
        engine = engine_with(policy, registry, store, views, settings)
        theirs = make("post", {"title": "theirs"}, account_id="acct-2")

        post = await engine.query(
            "post", {"where": {"id": theirs["id"]}, "one": True}, Session(account_id="acct-1")
        )

        assert post is None

    @pytest.mark.asyncio
    async def test_deleted_rows_need_deleted_state(self, registry, store, views, settings, make):
        policy = RoleAccessPolicy([{"role": "all"}])
        engine = engine_with(policy, registry, store, views, settings)
        make("post", {"title": "gone"}, deleted=True)

        with pytest.raises(AccessDenied):
            await engine.query("post", {"where": {"isDeleted": True}, "all": True}, Session())

        policy.add_rule({"role": "all", "states": ["deleted"]})
        posts = await engine.query("post", {"where": {"isDeleted": True}, "all": True}, Session())
        assert len(posts) == 1
        assert posts[0].is_deleted
