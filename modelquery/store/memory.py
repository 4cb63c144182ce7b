"""
In-memory store for modelquery.

Evaluates the structured form of a Statement over dict rows. Used by the
test suite and for local development; it implements the same revision,
soft-delete and relation semantics a relational backend gets from the SQL.
"""
from __future__ import annotations

import asyncio
import logging
import re
import time
from typing import TYPE_CHECKING, Any
from uuid import uuid4

if TYPE_CHECKING:
    from modelquery.models import Model
    from modelquery.query.statement import Statement
    from modelquery.session import Session

logger = logging.getLogger(__name__)


def new_id() -> str:
    """New 32-char lowercase hex identifier."""
    return uuid4().hex


def _like(value: Any, pattern: str) -> bool:
    regex = "".join(
        ".*" if c == "%" else "." if c == "_" else re.escape(c) for c in pattern
    )
    return re.fullmatch(regex, str(value), re.IGNORECASE | re.DOTALL) is not None


def matches(value: Any, predicate: Any) -> bool:
    """Evaluate one normalized predicate against a column value."""
    if isinstance(predicate, list):
        return value in predicate
    if isinstance(predicate, dict):
        operator, operand = next(iter(predicate.items()))
        if value is None:
            return False
        if operator == "gt":
            return value > operand
        if operator == "gte":
            return value >= operand
        if operator == "lt":
            return value < operand
        if operator == "lte":
            return value <= operand
        if operator == "between":
            return operand[0] <= value <= operand[1]
        if operator == "like":
            return _like(value, operand)
        raise ValueError(f"invalid operator {operator}")
    if isinstance(predicate, bool):
        return bool(value) == predicate
    return value == predicate


class MemoryStore:
    """
    Store backed by per-model lists of rows.

    Every executed statement is appended to `calls` so tests can assert how
    many round trips a query made.

    Example:
        store = MemoryStore()
        user = store.create(user_model, {"name": "ann"}, account_id=account)
        rows = await store.run(statement)
    """

    def __init__(self, latency: float = 0.0):
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[Statement] = []
        self.latency = latency

    # =========================================================================
    # Writing
    # =========================================================================

    def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        """Insert a raw row as-is."""
        self.tables.setdefault(table, []).append(row)
        return row

    def create(
        self,
        model: Model,
        data: dict[str, Any] | None = None,
        *,
        id: str | None = None,
        account_id: str | None = None,
        parent: dict[str, Any] | None = None,
        deleted: bool = False,
        **columns: Any,
    ) -> dict[str, Any]:
        """
        Create a row for model (a new revision of `parent` if given).

        Returns:
            The stored row (payload encoded)
        """
        row_id = id or new_id()
        row: dict[str, Any] = {}
        if model.has_column("id"):
            row["id"] = row_id
        if model.has_column("originalId"):
            row["originalId"] = parent["originalId"] if parent else row_id
        if model.has_column("parentId"):
            row["parentId"] = parent["id"] if parent else None
        if model.has_column("accountId"):
            row["accountId"] = account_id or (parent or {}).get("accountId")
        if model.has_column("createTime"):
            row["createTime"] = time.time()
        if model.has_column("data"):
            row["data"] = model.encode_data(data)
        if model.soft_delete:
            row["d"] = deleted
        for name, value in columns.items():
            row[name] = value
        return self.insert(model.name, row)

    def revise(
        self,
        model: Model,
        parent: dict[str, Any],
        data: dict[str, Any] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        """Create the next revision of a row, carrying over extra columns."""
        extra = {
            k: v
            for k, v in parent.items()
            if k not in ("id", "originalId", "parentId", "accountId", "createTime", "data", "d")
        }
        extra.update(kwargs)
        return self.create(model, data, parent=parent, **extra)

    def delete(self, model: Model, parent: dict[str, Any]) -> dict[str, Any]:
        """Soft-delete by adding a deleted revision."""
        payload = model.decode_data(dict(parent)).get("data")
        return self.revise(model, parent, payload, deleted=True)

    def clear(self) -> None:
        self.tables.clear()
        self.calls.clear()

    # =========================================================================
    # Reading
    # =========================================================================

    async def run(
        self,
        statement: Statement,
        parameters: dict[str, Any] | None = None,
        session: Session | None = None,
    ) -> list[dict[str, Any]]:
        self.calls.append(statement)
        if self.latency:
            await asyncio.sleep(self.latency)
        else:
            await asyncio.sleep(0)

        table = self.tables.get(statement.table, [])
        parents = {row.get("parentId") for row in table if row.get("parentId")}

        if statement.current:
            rows = self._current(statement, table, parents)
        else:
            rows = [dict(row) for row in table if self._match(statement, row, parents)]

        for column, direction in reversed(statement.order):
            rows.sort(
                key=lambda r: (r.get(column) is not None, r.get(column)),
                reverse=direction == "DESC",
            )
        if statement.limit is not None:
            start = statement.offset or 0
            rows = rows[start:start + statement.limit]

        if statement.only_ids:
            rows = [
                {k: row[k] for k in (statement.id_column, f"{statement.id_column}Select") if k in row}
                for row in rows
            ]
        logger.debug(f"[memory_store] {statement.table}: {len(rows)} rows")
        return rows

    def _match(
        self,
        statement: Statement,
        row: dict[str, Any],
        parents: set[str],
        skip: tuple[str, ...] = (),
    ) -> bool:
        for column, predicate in statement.criteria.items():
            if column in skip:
                continue
            if not matches(row.get(column), predicate):
                return False
        for column, value in statement.access.items():
            if row.get(column) != value:
                return False
        if statement.current_only and row.get("id") in parents:
            return False
        if statement.relation is not None and not self._related(statement, row):
            return False
        return True

    def _related(self, statement: Statement, row: dict[str, Any]) -> bool:
        join = statement.relation
        if join.via is None:
            return row.get(join.model_column) == join.value

        links = self.tables.get(join.via, [])
        link_parents = {link.get("parentId") for link in links if link.get("parentId")}
        keys = {
            link.get(join.link_column)
            for link in links
            if link.get(join.filter_column) == join.value
            and not link.get("d")
            and link.get("id") not in link_parents
        }
        return row.get(join.model_column) in keys

    def _current(
        self,
        statement: Statement,
        table: list[dict[str, Any]],
        parents: set[str],
    ) -> list[dict[str, Any]]:
        """Current revision of each queried entity, tagged with the id it was selected by."""
        id_column = statement.id_column
        ids = statement.criteria.get(id_column)
        ids = ids if isinstance(ids, list) else [ids]
        by_id = {row.get(id_column): row for row in table}
        rows = []
        for queried in ids:
            selected = by_id.get(queried)
            if selected is None:
                continue
            for row in table:
                if row.get("originalId") != selected.get("originalId"):
                    continue
                if row.get(id_column) in parents:
                    continue
                if not self._match(statement, row, parents, skip=(id_column,)):
                    continue
                result = dict(row)
                result[f"{id_column}Select"] = queried
                rows.append(result)
        return rows
