"""
Tests for statement building.
"""
import pytest

from modelquery.errors import InvalidRequest
from modelquery.query import AccessDecision, QueryRequest, SelectBuilder
from modelquery.query.statement import is_select_by_id, is_select_only_ids

A = "a" * 32
B = "b" * 32


@pytest.fixture
def builder(registry) -> SelectBuilder:
    return SelectBuilder(registry)


def build(builder, registry, model_name, args, access=None, cached=False):
    model = registry.get(model_name)
    request = QueryRequest.from_args(args, model)
    return builder.build(model, request, access or AccessDecision(action="list", scope="all"), cached)


# =============================================================================
# Statement Kind
# =============================================================================


class TestStatementKind:
    """Selection of by-id and id-only statements."""

    def test_single_id_is_by_id(self, registry):
        model = registry.get("user")
        request = QueryRequest.from_args({"where": {"id": A}}, model)
        assert is_select_by_id(model, request)

    def test_id_list_needs_all_or_limit_one(self, registry):
        model = registry.get("user")
        assert not is_select_by_id(model, QueryRequest.from_args({"where": {"id": [A, B]}}, model))
        assert is_select_by_id(model, QueryRequest.from_args({"where": {"id": [A, B]}, "all": True}, model))
        assert is_select_by_id(model, QueryRequest.from_args({"where": {"id": [A, B]}, "limit": 1}, model))

    def test_order_or_extra_filter_is_not_by_id(self, registry):
        model = registry.get("post")
        ordered = QueryRequest.from_args({"where": {"id": A}, "order": "createTime"}, model)
        filtered = QueryRequest.from_args({"where": {"id": A, "userOriginalId": B}}, model)
        current = QueryRequest.from_args({"where": {"id": A}, "current": True}, model)
        assert not is_select_by_id(model, ordered)
        assert not is_select_by_id(model, filtered)
        assert not is_select_by_id(model, current)

    def test_only_ids(self, registry):
        model = registry.get("post")
        request = QueryRequest.from_args({}, model)
        assert is_select_only_ids(model, request, by_id=False, cached=False)

    def test_all_selects_rows_unless_cached(self, registry):
        model = registry.get("post")
        request = QueryRequest.from_args({"all": True}, model)
        assert not is_select_only_ids(model, request, by_id=False, cached=False)
        assert is_select_only_ids(model, request, by_id=False, cached=True)

    def test_limit_one_selects_rows(self, registry):
        model = registry.get("post")
        request = QueryRequest.from_args({"limit": 1}, model)
        assert not is_select_only_ids(model, request, by_id=False, cached=True)


# =============================================================================
# SQL
# =============================================================================


class TestSelectBuilder:
    """Generated SQL and structured criteria."""

    def test_by_id_statement(self, builder, registry):
        statement = build(builder, registry, "user", {"where": {"id": [A, B]}, "all": True})

        assert statement.by_id
        assert not statement.only_ids
        assert "u0.`id` IN(:id0, :id1)" in statement.sql
        assert "u0.`d` = 0" in statement.sql
        assert statement.params == {"id0": A, "id1": B}
        assert statement.criteria == {"id": [A, B], "d": False}

    def test_list_statement_selects_current_revisions(self, builder, registry):
        statement = build(builder, registry, "post", {"where": {"userOriginalId": A}, "all": True})

        assert statement.current_only
        assert "LEFT JOIN `post` p1 ON p1.`parentId` = p0.`id`" in statement.sql
        assert "p1.`id` IS NULL" in statement.sql
        assert statement.criteria["userOriginalId"] == A

    def test_only_ids_selects_id_column(self, builder, registry):
        statement = build(builder, registry, "post", {"where": {"userOriginalId": A}})

        assert statement.only_ids
        assert statement.sql.startswith("SELECT p0.`id` FROM `post` p0")

    def test_limit_omitted_when_draining_cursor(self, builder, registry):
        statement = build(builder, registry, "post", {"all": True, "limit": 10}, cached=True)

        assert statement.only_ids
        assert "LIMIT" not in statement.sql
        assert statement.limit is None

    def test_limit_and_offset(self, builder, registry):
        statement = build(builder, registry, "post", {"limit": 10, "offset": 20})

        assert statement.sql.endswith("LIMIT 10 OFFSET 20")
        assert statement.limit == 10
        assert statement.offset == 20

    def test_current_joins_original_revision(self, builder, registry):
        statement = build(builder, registry, "post", {"where": {"id": A}, "current": True, "limit": 1})

        assert statement.current
        assert "p1.`id` AS `idSelect`" in statement.sql
        assert "p1.`id` = :id0" in statement.sql

    def test_operators(self, builder, registry):
        statement = build(
            builder,
            registry,
            "post",
            {"where": {"createTime": {"between": [1, 2]}, "userOriginalId": {"like": "a%"}}},
        )
        assert "p0.`createTime` BETWEEN :createTime0 AND :createTime1" in statement.sql
        assert "p0.`userOriginalId` LIKE :userOriginalId0" in statement.sql

    def test_null_predicate(self, builder, registry):
        statement = build(builder, registry, "post", {"where": {"userOriginalId": None}})
        assert "p0.`userOriginalId` IS NULL" in statement.sql

    def test_unknown_column_rejected(self, builder, registry):
        with pytest.raises(InvalidRequest, match="no column color"):
            build(builder, registry, "post", {"where": {"color": "red"}})

    def test_order(self, builder, registry):
        statement = build(builder, registry, "post", {"order": ["createTime", "DESC"]})
        assert statement.order == [("createTime", "DESC")]
        assert "ORDER BY p0.`createTime` DESC" in statement.sql

    def test_order_groups(self, builder, registry):
        statement = build(builder, registry, "post", {"order": [["createTime", "DESC"], ["id"]]})
        assert statement.order == [("createTime", "DESC"), ("id", "ASC")]

    def test_dotted_order_rejected(self, builder, registry):
        with pytest.raises(InvalidRequest, match="invalid column in order"):
            build(builder, registry, "post", {"order": "user.name"})

    def test_access_filter_kept_separate(self, builder, registry):
        access = AccessDecision(
            action="list", scope="own", access_id_name="accountId", access_id=A
        )
        statement = build(builder, registry, "post", {"where": {"accountId": B}}, access=access)

        assert statement.access == {"accountId": A}
        assert statement.criteria["accountId"] == B
        assert statement.params["accountId0"] == A
        assert statement.params["accountId1"] == B

    def test_by_id_applies_access_filter(self, builder, registry):
        access = AccessDecision(
            action="read", scope="own", access_id_name="accountId", access_id=A
        )
        statement = build(builder, registry, "user", {"where": {"id": B}}, access=access)

        assert statement.by_id
        assert statement.access == {"accountId": A}


class TestRelations:
    """Relation filters used by `with` sub-queries."""

    def test_direct_relation(self, builder, registry):
        statement = build(
            builder,
            registry,
            "post",
            {"where": {"relation": {"name": "user", "userOriginalId": A}}, "all": True},
        )
        assert statement.relation.model_column == "userOriginalId"
        assert statement.relation.value == A
        assert statement.relation.via is None
        assert "p0.`userOriginalId` = :userOriginalId0" in statement.sql

    def test_via_relation(self, builder, registry):
        statement = build(
            builder,
            registry,
            "tag",
            {"where": {"relation": {"name": "post", "postOriginalId": A}}, "all": True},
        )
        join = statement.relation
        assert join.via == "postTag"
        assert join.model_column == "originalId"
        assert join.link_column == "tagOriginalId"
        assert join.filter_column == "postOriginalId"
        assert "JOIN `postTag` pt0 ON pt0.`tagOriginalId` = t0.`originalId`" in statement.sql
        assert "pt0.`d` = 0" in statement.sql

    def test_relation_requires_name(self, builder, registry):
        with pytest.raises(InvalidRequest, match="invalid relation"):
            build(builder, registry, "post", {"where": {"relation": {"userOriginalId": A}}})

    def test_undeclared_relation(self, builder, registry):
        with pytest.raises(InvalidRequest, match="no relation for note"):
            build(builder, registry, "post", {"where": {"relation": {"name": "note"}}})
