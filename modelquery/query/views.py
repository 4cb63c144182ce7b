"""
Views: post-processing applied to query results.

A record view transforms each entity's payload. A collection view folds the
whole result into one context mapping through `pre`, `each` and `post`
hooks. Views are synchronous (called directly, mutate in place) or
asynchronous (awaited, return mappings that are deep-merged), and
asynchronous views are either sequential (run alone, in order) or parallel
(run together with neighbouring parallel views).

Models name their views in `Model.views`; an entry may be a ModelView, the
name of another entry or a list of names (aliases), or refer to a globally
registered view in the ViewRegistry. `default` applies when the request
does not select views.
"""
from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any, Callable, Mapping

from modelquery.errors import InvalidViewConfig
from modelquery.utils import deep_merge, gather_bounded, maybe_await

if TYPE_CHECKING:
    from modelquery.models import Model
    from modelquery.session import Session
    from .executor import Query
    from .request import QueryRequest

logger = logging.getLogger(__name__)

RECORD = "record"
COLLECTION = "collection"
VIEW_TYPES = (RECORD, COLLECTION)


class ModelView:
    """
    Base class for views.

    Subclasses override the hooks for their type:

    - record: apply(data, session)
    - collection: pre(session), each(data, number, context), post(context)

    `data` is the decoded payload, or the whole row when `meta` is set.
    """

    name: str = ""
    type: str = RECORD
    synchronous: bool = False
    sequential: bool = False
    meta: bool = False
    cache: bool = True

    def apply(self, data: dict[str, Any], session: Session | None) -> Any:
        return None

    def pre(self, session: Session | None) -> Any:
        return None

    def each(self, data: dict[str, Any], number: int, context: dict[str, Any]) -> Any:
        return None

    def post(self, context: dict[str, Any]) -> Any:
        return None

    def __repr__(self) -> str:
        mode = "sync" if self.synchronous else "async"
        return f"{self.__class__.__name__}(name={self.name!r}, type={self.type!r}, {mode})"


class FunctionView(ModelView):
    """
    View built from plain functions.

    Example:
        upper = FunctionView(
            "upper",
            apply=lambda data, session: data.update(name=data["name"].upper()),
            synchronous=True,
        )
    """

    def __init__(
        self,
        name: str,
        *,
        type: str = RECORD,
        apply: Callable[..., Any] | None = None,
        pre: Callable[..., Any] | None = None,
        each: Callable[..., Any] | None = None,
        post: Callable[..., Any] | None = None,
        synchronous: bool = False,
        sequential: bool = False,
        meta: bool = False,
        cache: bool = True,
    ):
        self.name = name
        self.type = type
        self.synchronous = synchronous
        self.sequential = sequential
        self.meta = meta
        self.cache = cache
        self._apply = apply
        self._pre = pre
        self._each = each
        self._post = post

    def apply(self, data, session):
        return self._apply(data, session) if self._apply else None

    def pre(self, session):
        return self._pre(session) if self._pre else None

    def each(self, data, number, context):
        return self._each(data, number, context) if self._each else None

    def post(self, context):
        return self._post(context) if self._post else None


class ViewRegistry:
    """Registry of globally available views, by name."""

    def __init__(self) -> None:
        self._views: dict[str, ModelView] = {}

    def register(self, view: ModelView) -> ModelView:
        if view.name in self._views:
            logger.warning(f"Replacing existing view: {view.name}")
        self._views[view.name] = view
        logger.info(f"Registered view: {view.name}")
        return view

    def get(self, name: str) -> ModelView | None:
        return self._views.get(name)

    def has(self, name: str) -> bool:
        return name in self._views

    def clear(self) -> None:
        self._views.clear()


# Global registry instance
_registry: ViewRegistry | None = None


def get_view_registry() -> ViewRegistry:
    """Get the global view registry (created on first access)."""
    global _registry
    if _registry is None:
        _registry = ViewRegistry()
    return _registry


def reset_view_registry() -> None:
    """Reset the global view registry (for testing)."""
    global _registry
    if _registry is not None:
        _registry.clear()
    _registry = None


def view_selection(model: Model, request: QueryRequest) -> Any:
    """The view argument in effect: the request's, else the model default."""
    if request.view is False:
        return False
    if request.view is not None:
        return request.view
    return model.views.get("default")


def resolve_model_views(
    model: Model,
    request: QueryRequest,
    registry: ViewRegistry | None = None,
) -> list[ModelView]:
    """
    Expand the selected view names into ModelView objects, in order.

    Raises:
        InvalidViewConfig: For unknown names, alias loops or a bad argument
    """
    selection = view_selection(model, request)
    if selection is False or selection is None:
        return []
    names = selection if isinstance(selection, list) else [selection]

    views: list[ModelView] = []
    for name in names:
        views.extend(_expand(model, name, registry, ()))
    return views


def _expand(
    model: Model,
    entry: Any,
    registry: ViewRegistry | None,
    seen: tuple[str, ...],
) -> list[ModelView]:
    if isinstance(entry, ModelView):
        return [entry]
    if isinstance(entry, list):
        views: list[ModelView] = []
        for item in entry:
            views.extend(_expand(model, item, registry, seen))
        return views
    if not isinstance(entry, str):
        raise InvalidViewConfig(f"invalid view {entry!r}", model=model.name)
    if entry in seen:
        raise InvalidViewConfig(
            f"view alias loop: {' -> '.join(seen + (entry,))}", model=model.name
        )
    if entry in model.views:
        return _expand(model, model.views[entry], registry, seen + (entry,))
    view = registry.get(entry) if registry is not None else None
    if view is None:
        raise InvalidViewConfig(f"view not found: {entry}", model=model.name)
    return [view]


class ViewEngine:
    """
    Applies the views selected for one query to its rows.

    Views are grouped by type and execution mode at construction.
    """

    def __init__(self, views: list[ModelView], query: Query):
        self.query = query
        self.model = query.model
        self.views = list(views)
        self.record_sync: list[ModelView] = []
        self.record_async: list[ModelView] = []
        self.collection_sync: list[ModelView] = []
        self.collection_async: list[ModelView] = []

        for view in self.views:
            if view.type == RECORD:
                bucket = self.record_sync if view.synchronous else self.record_async
            elif view.type == COLLECTION:
                bucket = self.collection_sync if view.synchronous else self.collection_async
            else:
                raise InvalidViewConfig(
                    f"invalid type {view.type} for view {view.name}", model=self.model.name
                )
            bucket.append(view)

    @property
    def has_record(self) -> bool:
        return bool(self.record_sync or self.record_async)

    @property
    def has_collection(self) -> bool:
        return bool(self.collection_sync or self.collection_async)

    @property
    def cacheable(self) -> bool:
        """True when every view allows its output to be cached."""
        return all(view.cache for view in self.views)

    def _target(self, view: ModelView, raw: dict[str, Any]) -> Any:
        if view.meta:
            return raw
        return raw.setdefault(self.model.data_column or "data", {})

    async def result(self, rows: list[dict[str, Any]]) -> Any:
        """Build the query result from rows."""
        if self.has_collection:
            return await self.collection_result(rows)
        return await self.record_result(rows)

    # =========================================================================
    # Record views
    # =========================================================================

    async def apply_record(self, raw: dict[str, Any]) -> dict[str, Any]:
        """Apply record views to one decoded row, in place."""
        self.model.decode_data(raw)
        session = self.query.session

        # asynchronous views first, merged in declaration order
        for batch in _batches(self.record_async):
            results = await gather_bounded(
                batch, lambda view: maybe_await(view.apply(self._target(view, raw), session)), len(batch)
            )
            for view, result in zip(batch, results):
                if isinstance(result, Mapping):
                    deep_merge(self._target(view, raw), result)

        for view in self.record_sync:
            view.apply(self._target(view, raw), session)
        return raw

    async def record_result(self, rows: list[dict[str, Any]]) -> Any:
        query = self.query
        if query.statement is not None and query.statement.only_ids:
            cursor = query.new_cursor(rows, view=query.request.view)
            if query.request.all:
                return await cursor.fetch_all()
            return cursor

        for raw in rows:
            await self.apply_record(raw)
        if query.request.limit == 1:
            return query.new_instance(rows[0]) if rows else None
        return [query.new_instance(raw) for raw in rows]

    # =========================================================================
    # Collection views
    # =========================================================================

    async def collection_result(self, rows: list[dict[str, Any]]) -> dict[str, Any]:
        query = self.query
        context: dict[str, Any] = {}

        for view in self.collection_sync:
            _merge_result(context, view.pre(query.session))
        for batch in _batches(self.collection_async):
            results = await gather_bounded(
                batch, lambda view: maybe_await(view.pre(query.session)), len(batch)
            )
            for result in results:
                _merge_result(context, result)

        if rows:
            if query.statement is not None and query.statement.only_ids:
                cursor = query.new_cursor(rows, view=False, raw=True)
                await cursor.each(self.apply_collection, context)
            else:
                for number, raw in enumerate(rows):
                    self.model.decode_data(raw)
                    await self.apply_collection(raw, number, context)

        for view in self.collection_sync:
            _merge_result(context, view.post(context))
        for batch in _batches(self.collection_async):
            results = await gather_bounded(
                batch, lambda view: maybe_await(view.post(context)), len(batch)
            )
            for result in results:
                _merge_result(context, result)
        return context

    async def apply_collection(
        self, raw: dict[str, Any], number: int, context: dict[str, Any]
    ) -> dict[str, Any]:
        """Pass one row to every collection view's `each` hook."""
        for view in self.collection_sync:
            _merge_result(context, view.each(self._target(view, raw), number, context))
        for batch in _batches(self.collection_async):
            results = await gather_bounded(
                batch,
                lambda view: maybe_await(view.each(self._target(view, raw), number, context)),
                len(batch),
            )
            for result in results:
                _merge_result(context, result)
        return context


def _batches(views: list[ModelView]) -> list[list[ModelView]]:
    """Split async views into runs: sequential views alone, consecutive parallel views together."""
    batches: list[list[ModelView]] = []
    current: list[ModelView] = []
    for view in views:
        if view.sequential:
            if current:
                batches.append(current)
                current = []
            batches.append([view])
        else:
            current.append(view)
    if current:
        batches.append(current)
    return batches


def _merge_result(context: dict[str, Any], result: Any) -> None:
    if isinstance(result, Mapping) and result is not context:
        deep_merge(context, result)
