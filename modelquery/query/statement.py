"""
Statement building.

A Statement is what the store executes: parameterized SQL text for a
relational backend plus the same query in structured form (criteria,
relation join, revision selection, order, paging) for stores that evaluate
it directly, such as MemoryStore.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from modelquery.errors import InvalidRequest

if TYPE_CHECKING:
    from modelquery.models import Model, ModelRegistry
    from .access import AccessDecision
    from .request import QueryRequest

logger = logging.getLogger(__name__)

DIRECTIONS = ("ASC", "DESC")


@dataclass(frozen=True)
class RelationJoin:
    """
    Restricts rows to those related to one row of another model.

    Direct: `model_column` equals `value`. Via: `model_column` is in the set
    of `link_column` values of current, non-deleted `via` rows whose
    `filter_column` equals `value`.
    """

    related: str
    model_column: str
    value: Any
    via: str | None = None
    link_column: str | None = None
    filter_column: str | None = None


@dataclass
class Statement:
    """Executable select for one model."""

    table: str
    sql: str
    params: dict[str, Any] = field(default_factory=dict)
    criteria: dict[str, Any] = field(default_factory=dict)
    # access-identity filter, applied on top of criteria
    access: dict[str, Any] = field(default_factory=dict)
    relation: RelationJoin | None = None
    order: list[tuple[str, str]] = field(default_factory=list)
    limit: int | None = None
    offset: int | None = None
    id_column: str | None = "id"
    only_ids: bool = False
    by_id: bool = False
    # id query resolving to the current revision of each queried entity
    current: bool = False
    # non-id query restricted to current revisions
    current_only: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {"sql": self.sql, "params": self.params}


class StatementBuilder(Protocol):
    """Contract for statement builders."""

    def build(
        self,
        model: Model,
        request: QueryRequest,
        access: AccessDecision,
        cached: bool = False,
    ) -> Statement:
        ...


def is_select_by_id(model: Model, request: QueryRequest) -> bool:
    """
    Whether the request is a plain lookup by identifier.

    Requires a single id, or a list of ids with `all` or `limit: 1`, no
    order, no `current`, and no filter besides `isDeleted`.
    """
    ids = request.id_filter(model)
    if ids is None:
        return False
    if not isinstance(ids, str) and not (
        isinstance(ids, list) and (request.all or request.limit == 1)
    ):
        return False
    if request.order or request.current:
        return False
    others = [name for name in request.where if name not in ("id", model.id_column)]
    return all(name == "isDeleted" for name in others)


def is_select_only_ids(model: Model, request: QueryRequest, by_id: bool, cached: bool) -> bool:
    """Whether only identifiers are selected (and rows fetched later by a cursor)."""
    if by_id:
        return False
    if request.all and not cached:
        return False
    if request.limit == 1:
        return False
    return model.id_column is not None


class SelectBuilder:
    """
    Default statement builder.

    Emits MySQL-flavoured SQL with named placeholders and the structured
    form of the same query.
    """

    def __init__(self, registry: ModelRegistry):
        self.registry = registry

    def build(
        self,
        model: Model,
        request: QueryRequest,
        access: AccessDecision,
        cached: bool = False,
    ) -> Statement:
        return _Select(self.registry, model, request, access, cached).statement()


class _Select:
    """Builds one statement; holds aliases and params while doing so."""

    def __init__(self, registry, model, request, access, cached):
        self.registry = registry
        self.model = model
        self.request = request
        self.access = access
        self.params: dict[str, Any] = {}
        self.aliases: dict[str, str] = {}
        self.joins: list[str] = []
        self.wheres: list[str] = []
        self.criteria: dict[str, Any] = {}
        self.access_criteria: dict[str, Any] = {}
        self.original_alias: str | None = None
        self.relation: RelationJoin | None = None
        self.alias = self.new_alias(model.name)
        self.by_id = is_select_by_id(model, request)
        self.only_ids = is_select_only_ids(model, request, self.by_id, cached)
        self.current = False
        self.current_only = False

    # =========================================================================
    # Helpers
    # =========================================================================

    def new_alias(self, table: str) -> str:
        base = table[0] + "".join(c for c in table if c.isupper()).lower()
        for i in range(100):
            alias = f"{base}{i}"
            if alias not in self.aliases:
                self.aliases[alias] = table
                return alias
        raise InvalidRequest(f"max alias exceeded {table}", model=self.model.name)

    def new_param(self, name: str, value: Any) -> str:
        i = 0
        while f"{name}{i}" in self.params:
            i += 1
        param = f"{name}{i}"
        self.params[param] = value
        return f":{param}"

    @staticmethod
    def quote(name: str) -> str:
        return f"`{name}`"

    def column(self, name: str) -> str:
        column = self.model.column_name(name)
        if column is None:
            raise InvalidRequest(f"no column {name}", model=self.model.name)
        return column

    # =========================================================================
    # Clauses
    # =========================================================================

    def add_access(self) -> None:
        for name, value in self.access.filter.items():
            column = self.column(name)
            self.access_criteria[column] = value
            self.wheres.append(
                f"{self.alias}.{self.quote(column)} = {self.new_param(column, value)}"
            )

    def add_where(self, name: str, value: Any, alias: str | None = None) -> None:
        if name == "relation":
            self.add_relation(value)
            return
        if name == "isDeleted":
            if value is None:
                return
            value = bool(value)
        column = self.column(name)
        self.criteria[column] = value
        sql = f"{alias or self.alias}.{self.quote(column)}"

        if value is None:
            self.wheres.append(f"{sql} IS NULL")
        elif isinstance(value, bool):
            self.wheres.append(f"{sql} = {1 if value else 0}")
        elif isinstance(value, list):
            placeholders = ", ".join(self.new_param(column, v) for v in value)
            self.wheres.append(f"{sql} IN({placeholders})")
        elif isinstance(value, dict):
            operator, operand = next(iter(value.items()))
            if operator == "between":
                low = self.new_param(column, operand[0])
                high = self.new_param(column, operand[1])
                self.wheres.append(f"{sql} BETWEEN {low} AND {high}")
            else:
                symbol = {"gt": ">", "gte": ">=", "lt": "<", "lte": "<=", "like": "LIKE"}[operator]
                self.wheres.append(f"{sql} {symbol} {self.new_param(column, operand)}")
        else:
            self.wheres.append(f"{sql} = {self.new_param(column, value)}")

    def add_relation(self, value: Any) -> None:
        if not isinstance(value, dict) or "name" not in value:
            raise InvalidRequest("invalid relation in where", model=self.model.name)
        relation = self.registry.relation(self.model.name, value["name"])

        if not relation.is_via:
            column = relation.model_id_column
            key = value.get(column)
            self.relation = RelationJoin(related=relation.related, model_column=column, value=key)
            self.wheres.append(
                f"{self.alias}.{self.quote(column)} = {self.new_param(column, key)}"
            )
            return

        key = value.get(relation.via_relation_id_column)
        via_alias = self.new_alias(relation.via)
        self.relation = RelationJoin(
            related=relation.related,
            model_column=relation.model_id_column,
            value=key,
            via=relation.via,
            link_column=relation.via_model_id_column,
            filter_column=relation.via_relation_id_column,
        )
        self.joins.append(
            f"JOIN {self.quote(relation.via)} {via_alias} ON "
            f"{via_alias}.{self.quote(relation.via_model_id_column)} = "
            f"{self.alias}.{self.quote(relation.model_id_column)}"
        )
        self.wheres.append(
            f"{via_alias}.{self.quote(relation.via_relation_id_column)} = "
            f"{self.new_param(relation.via_relation_id_column, key)}"
        )
        via_model = self.registry.get(relation.via)
        if via_model.soft_delete and via_model.has_column("parentId"):
            revision_alias = self.new_alias(relation.via)
            self.joins.append(
                f"LEFT JOIN {self.quote(relation.via)} {revision_alias} ON "
                f"{revision_alias}.{self.quote('parentId')} = {via_alias}.{self.quote('id')}"
            )
            self.wheres.append(f"{revision_alias}.{self.quote('id')} IS NULL")
            self.wheres.append(f"{via_alias}.`d` = 0")

    def add_revision(self) -> list[str]:
        """Revision selection; returns extra select columns."""
        model = self.model
        if not model.original_id_column or not model.has_column("parentId"):
            return []
        ids = self.request.id_filter(model)
        if ids is not None:
            if not self.request.current:
                return []
            self.current = True
            original_alias = self.original_alias = self.new_alias(model.name)
            revision_alias = self.new_alias(model.name)
            self.joins.append(
                f"LEFT JOIN {self.quote(model.name)} {original_alias} ON "
                f"{original_alias}.`originalId` = {self.alias}.`originalId`"
            )
            self.joins.append(
                f"LEFT JOIN {self.quote(model.name)} {revision_alias} ON "
                f"{revision_alias}.`parentId` = {self.alias}.`id`"
            )
            self.wheres.append(f"{revision_alias}.`id` IS NULL")
            return [f"{original_alias}.`id` AS `idSelect`"]

        self.current_only = True
        revision_alias = self.new_alias(model.name)
        self.joins.append(
            f"LEFT JOIN {self.quote(model.name)} {revision_alias} ON "
            f"{revision_alias}.`parentId` = {self.alias}.`id`"
        )
        self.wheres.append(f"{revision_alias}.`id` IS NULL")
        return []

    def build_order(self) -> list[tuple[str, str]]:
        order = self.request.order
        if not order:
            return []
        groups = [order] if isinstance(order, str) else list(order)
        if not isinstance(groups[0], list):
            groups = [groups]
        result = []
        for group in groups:
            group = [group] if isinstance(group, str) else list(group)
            direction = "ASC"
            if len(group) > 1 and str(group[-1]).upper() in DIRECTIONS:
                direction = str(group.pop()).upper()
            for name in group:
                if "." in str(name):
                    raise InvalidRequest(f"invalid column in order {name}", model=self.model.name)
                result.append((self.column(name), direction))
        return result

    # =========================================================================
    # Statement
    # =========================================================================

    def statement(self) -> Statement:
        model = self.model
        request = self.request
        table = self.quote(model.name)

        if self.by_id:
            ids = request.id_filter(model)
            id_column = model.id_column
            self.add_where(id_column, ids)
            if "isDeleted" in request.where:
                self.add_where("isDeleted", request.where["isDeleted"])
            self.add_access()
            select = ", ".join(f"{self.alias}.{self.quote(c)}" for c in model.columns)
            sql = f"SELECT {select} FROM {table} {self.alias} WHERE {' AND '.join(self.wheres)}"
            return self._finish(sql, [], by_id=True)

        self.add_access()
        extra = self.add_revision()
        for name, value in request.where.items():
            if self.current and name in ("id", model.id_column):
                # applied to the joined original revision
                self.add_where(model.id_column, value, alias=self.original_alias)
                continue
            self.add_where(name, value)
        order = self.build_order()

        columns = [model.id_column] if self.only_ids else model.columns
        select = ", ".join([f"{self.alias}.{self.quote(c)}" for c in columns] + extra)
        sql = f"SELECT {select} FROM {table} {self.alias}"
        if self.joins:
            sql += " " + " ".join(self.joins)
        if self.wheres:
            sql += " WHERE " + " AND ".join(self.wheres)
        if order:
            sql += " ORDER BY " + ", ".join(
                f"{self.alias}.{self.quote(c)} {d}" for c, d in order
            )
        if request.limit is not None and not (self.only_ids and request.all):
            sql += f" LIMIT {int(request.limit)}"
            if request.offset is not None:
                sql += f" OFFSET {int(request.offset)}"
        return self._finish(sql, order)

    def _finish(self, sql: str, order: list[tuple[str, str]], by_id: bool = False) -> Statement:
        limit = self.request.limit
        if self.only_ids and self.request.all:
            limit = None
        statement = Statement(
            table=self.model.name,
            sql=sql,
            params=self.params,
            criteria=self.criteria,
            access=self.access_criteria,
            relation=self.relation,
            order=order,
            limit=limit,
            offset=self.request.offset if limit is not None else None,
            id_column=self.model.id_column,
            only_ids=self.only_ids,
            by_id=by_id,
            current=self.current,
            current_only=self.current_only,
        )
        logger.debug(f"[statement] {statement.sql} {statement.params}")
        return statement
