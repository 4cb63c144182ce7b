"""
Query execution for modelquery.

QueryEngine is the entry point: it holds the registries, store, cache,
statement builder and access policy, and runs one Query per call.

A Query goes through these stages:

    normalize -> resolve views -> access control -> build statement
    -> run (cached or direct) -> related fan-out (`with`, `resolve`)
    -> reorder by requested ids -> shape result

Resolution, `with` loading and cursor pages all issue nested queries
through the same engine, so every nested query is access-checked, cached
and view-rendered like a top-level one.

Example:
    engine = QueryEngine(registry, MemoryStore())
    posts = await engine.query(
        "post",
        {"where": {"id": [id1, id2]}, "all": True, "resolve": True},
        session,
    )
"""
from __future__ import annotations

import asyncio
import copy
import logging
from typing import TYPE_CHECKING, Any, Awaitable, Mapping

from modelquery.config import QuerySettings, get_settings
from modelquery.errors import ModelQueryError, NotFound, QueryError
from modelquery.models import Model, ModelRegistry, Record, get_model_registry
from modelquery.session import Session
from modelquery.store.cache import RenderedView
from modelquery.utils import deep_merge, gather_bounded

from .access import AccessDecision, AccessPolicy, AllowAllPolicy, resolve_access
from .cursor import ResultCursor
from .request import QueryRequest
from .resolve import ResolutionContext
from .statement import SelectBuilder, Statement, StatementBuilder
from .views import ViewEngine, ViewRegistry, get_view_registry, resolve_model_views

if TYPE_CHECKING:
    from modelquery.store.protocol import Cache, Store

logger = logging.getLogger(__name__)


class Query:
    """
    One query against one model.

    Normalization and view resolution happen at construction, so bad
    requests fail before any I/O.
    """

    def __init__(
        self,
        engine: QueryEngine,
        model: Model,
        args: Mapping[str, Any] | QueryRequest | None = None,
        session: Session | None = None,
    ):
        self.engine = engine
        self.model = model
        self.session = session or Session()
        self.request = QueryRequest.from_args(args, model)
        self.views = resolve_model_views(model, self.request, engine.views)
        self.view_engine = ViewEngine(self.views, self) if self.views else None
        self.access: AccessDecision | None = None
        self.statement: Statement | None = None

    @property
    def view_names(self) -> list[str]:
        return [view.name for view in self.views]

    @property
    def cache_applies(self) -> bool:
        if self.engine.cache is None or not self.model.cache_enabled:
            return False
        if not self.request.caching_allowed():
            return False
        return self.view_engine is None or self.view_engine.cacheable

    def error(self, message: str, cause: BaseException | None = None) -> QueryError:
        """Build a QueryError carrying this query's args and statement."""
        if cause is not None:
            message = f"{message}: {cause}"
        return QueryError(
            f"query error: {message}",
            model=self.model.name,
            args=self.request.to_args(),
            statement=self.statement,
        )

    # =========================================================================
    # Execution
    # =========================================================================

    async def execute(self) -> Any:
        self.access = resolve_access(
            self.engine.access_control, self.model, self.request, self.session
        )
        cached = self.cache_applies
        self.statement = self.engine.builder.build(
            self.model, self.request, self.access, cached=cached
        )

        if cached:
            rows = await self.engine.cache.query(self)
        else:
            rows = await self.execute_direct()

        if isinstance(rows, RenderedView):
            logger.debug(f"[query] {self.model.name}: rendered view from cache")
            return rows.result

        await self.execute_related(rows)
        rows = self.order_results(rows)
        return await self.result(rows)

    async def execute_direct(self) -> list[dict[str, Any]]:
        """
        Run the statement against the store and decode payloads.

        Raises:
            QueryError: Wrapping any store failure
        """
        statement = self.statement
        try:
            rows = await self.engine.store.run(statement, statement.params, self.session)
        except ModelQueryError:
            raise
        except Exception as e:
            raise self.error("db error", e) from e

        if not statement.only_ids:
            for row in rows:
                self.model.decode_data(row)
        return rows

    # =========================================================================
    # Related records
    # =========================================================================

    async def execute_related(self, rows: list[dict[str, Any]]) -> None:
        """Load `with` relations and `resolve` references for every row."""
        if self.statement.only_ids or not self.request.wants_related or not rows:
            return
        logger.debug(f"[query] {self.model.name}: related fan-out over {len(rows)} rows")
        await gather_bounded(rows, self.execute_related_row, self.model.concurrency)

    async def execute_related_row(self, row: dict[str, Any]) -> dict[str, Any]:
        await gather_bounded(
            (self.resolve_row, self.with_row), lambda step: step(row), 2
        )
        return row

    async def resolve_row(self, row: dict[str, Any]) -> None:
        if not self.request.resolve:
            return
        await ResolutionContext(self, row).resolve()

    async def with_row(self, row: dict[str, Any]) -> None:
        relations = self.request.with_relations
        if not relations:
            return
        row["_related"] = {}
        await gather_bounded(
            list(relations), lambda name: self.with_query(row, name), self.model.concurrency
        )

    async def with_query(self, row: dict[str, Any], name: str) -> None:
        """Load the rows related to `row` through relation `name`."""
        overrides = self.request.with_relations[name]
        relation = self.engine.registry.relation(self.model.name, name)
        key = row.get(relation.model_id_column)
        column = relation.via_model_id_column if relation.is_via else relation.relation_id_column

        args: dict[str, Any] = {
            "all": True,
            "where": {"relation": {"name": self.model.name, column: key}},
        }
        if isinstance(overrides, Mapping):
            deep_merge(args, copy.deepcopy(dict(overrides)))
        row["_related"][name] = await self.engine.query(name, args, self.session)

    # =========================================================================
    # Result
    # =========================================================================

    def order_results(self, rows: list[dict[str, Any]]) -> list[dict[str, Any]]:
        """
        Reorder rows to match a queried list of ids.

        Ids with no row are dropped. With `current`, rows are matched on the
        id they were selected by.
        """
        id_column = self.model.id_column
        if id_column is None:
            return rows
        ids = self.request.id_filter(self.model)
        if not isinstance(ids, list):
            return rows
        current = self.statement is not None and self.statement.current
        key = f"{id_column}Select" if current else id_column
        by_id = {row.get(key): row for row in rows}
        return [by_id[i] for i in ids if i in by_id]

    def new_instance(self, raw: dict[str, Any]) -> Record | dict[str, Any]:
        if self.request.raw:
            return raw
        record = self.model.new_instance(raw, session=self.session, allow=self.request.allow)
        if self.request.plain:
            return record.to_dict()
        return record

    def new_cursor(
        self,
        rows: list[dict[str, Any]],
        view: Any = False,
        raw: bool | None = None,
    ) -> ResultCursor:
        id_column = self.model.id_column
        return ResultCursor(
            self.engine,
            self.model,
            [row[id_column] for row in rows],
            self.session,
            page_size=self.engine.settings.page_size,
            is_deleted=self.request.where.get("isDeleted", False),
            view=view,
            raw=self.request.raw if raw is None else raw,
            plain=self.request.plain,
            allow=self.request.allow,
            related=self.related_args(),
        )

    def related_args(self) -> dict[str, Any]:
        """`with` and `resolve` arguments for queries that load these rows later."""
        args = self.request.to_args()
        return {key: args[key] for key in ("with", "resolve") if key in args}

    async def result(self, rows: list[dict[str, Any]]) -> Any:
        if self.request.required and not rows:
            raise NotFound("no records found", model=self.model.name)

        if self.view_engine is not None:
            result = await self.view_engine.result(rows)
            if self.cache_applies and not isinstance(result, ResultCursor):
                snapshot = copy.deepcopy(result)
                self.engine.spawn_background(
                    self.engine.cache.store_view(self, snapshot),
                    f"store view {self.model.name}",
                )
            return result

        return await self.result_raw(rows)

    async def result_raw(self, rows: list[dict[str, Any]]) -> Any:
        if self.statement.only_ids:
            cursor = self.new_cursor(rows)
            if self.request.all:
                return await cursor.fetch_all()
            return cursor
        if self.request.limit == 1:
            return self.new_instance(rows[0]) if rows else None
        return [self.new_instance(row) for row in rows]


class QueryEngine:
    """
    Entry point for running queries.

    Holds every collaborator a query needs. Registries default to the
    module-level ones; the statement builder defaults to SelectBuilder and
    the access policy to AllowAllPolicy.
    """

    def __init__(
        self,
        registry: ModelRegistry | None = None,
        store: Store | None = None,
        *,
        access_control: AccessPolicy | None = None,
        cache: Cache | None = None,
        builder: StatementBuilder | None = None,
        views: ViewRegistry | None = None,
        settings: QuerySettings | None = None,
    ):
        if store is None:
            raise ValueError("QueryEngine requires a store")
        self.settings = settings or get_settings()
        self.registry = registry if registry is not None else get_model_registry()
        self.store = store
        self.access_control = access_control or AllowAllPolicy()
        self.cache = cache
        self.builder = builder or SelectBuilder(self.registry)
        self.views = views if views is not None else get_view_registry()
        self._background: set[asyncio.Task[Any]] = set()

    def new_query(
        self,
        model: str | Model,
        args: Mapping[str, Any] | QueryRequest | None = None,
        session: Session | None = None,
    ) -> Query:
        if not isinstance(model, Model):
            model = self.registry.get(model)
        return Query(self, model, args, session)

    async def query(
        self,
        model: str | Model,
        args: Mapping[str, Any] | QueryRequest | None = None,
        session: Session | None = None,
    ) -> Any:
        """
        Run a query.

        Args:
            model: Model name or Model
            args: Query arguments (where, limit, all, with, resolve, view, ...)
            session: Caller identity; defaults to an anonymous session

        Returns:
            A Record (or None) for `limit: 1`, a list, a ResultCursor when
            only ids were selected, or a view result

        Raises:
            InvalidRequest: Bad arguments (before any I/O)
            AccessDenied: The policy granted no usable scope
            QueryError: The store failed
            NotFound: `required` was set and nothing matched
        """
        return await self.new_query(model, args, session).execute()

    # =========================================================================
    # Background tasks
    # =========================================================================

    def spawn_background(self, coro: Awaitable[Any], description: str) -> asyncio.Task[Any]:
        """Run coro in the background; failures are logged, never raised."""
        task = asyncio.create_task(self._run_background(coro, description), name=description)
        self._background.add(task)
        task.add_done_callback(self._background.discard)
        return task

    async def _run_background(self, coro: Awaitable[Any], description: str) -> None:
        try:
            await coro
        except Exception as e:
            logger.warning(f"[engine] Background task failed ({description}): {e}")

    @property
    def pending_background(self) -> int:
        return len(self._background)

    async def wait_background(self) -> None:
        """Wait for all background tasks (tests and shutdown)."""
        while self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)
