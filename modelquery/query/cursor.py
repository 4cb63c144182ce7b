"""
Lazy paginated result cursor.

When a query selects only identifiers, the caller gets a ResultCursor over
the captured id list. Entities are loaded page by page with `all: true`
sub-queries by id, so each page is a plain select-by-id (and cacheable),
and delivered in the order of the id list.
"""
from __future__ import annotations

import copy
import logging
from typing import TYPE_CHECKING, Any, AsyncIterator, Awaitable, Callable

from modelquery.utils import maybe_await

if TYPE_CHECKING:
    from modelquery.models import Model
    from modelquery.session import Session
    from .executor import QueryEngine

logger = logging.getLogger(__name__)

DEFAULT_PAGE_SIZE = 25


def entity_id(entity: Any, column: str = "id") -> Any:
    """Identifier column value of a Record or raw row."""
    if isinstance(entity, dict):
        return entity.get(column)
    raw = getattr(entity, "raw", None)
    if isinstance(raw, dict):
        return raw.get(column)
    return None


class ResultCursor:
    """
    Order-preserving, batch-fetching reader over a list of ids.

    Attributes:
        ids: Captured identifiers, in result order
        length: Number of identifiers
        fetched: Identifiers consumed so far
        page_size: Default number of ids per fetch
        done: True once every id has been consumed
        related: `with`/`resolve` arguments carried into page queries
        view: View argument for page queries; None applies the model default

    Example:
        cursor = await engine.query("post", {"where": {"userId": uid}}, session)
        first = await cursor.fetch()
        await cursor.each(lambda post, number, context: print(number, post.id))
    """

    def __init__(
        self,
        engine: QueryEngine,
        model: Model,
        ids: list[str],
        session: Session | None = None,
        *,
        page_size: int = DEFAULT_PAGE_SIZE,
        is_deleted: bool | None = False,
        view: Any = False,
        raw: bool = False,
        plain: bool = False,
        allow: bool = False,
        related: dict[str, Any] | None = None,
    ):
        self.engine = engine
        self.model = model
        self.ids = list(ids)
        self.session = session
        self.length = len(self.ids)
        self.page_size = page_size
        self.is_deleted = is_deleted
        self.view = view
        self.raw = raw
        self.plain = plain
        self.allow = allow
        self.related = related or {}
        self.fetched = 0
        self.done = self.length == 0
        self._fetching = False

    def __len__(self) -> int:
        return self.length

    def _args(self, ids: list[str]) -> dict[str, Any]:
        where: dict[str, Any] = {self.model.id_column or "id": ids}
        if self.model.soft_delete:
            where["isDeleted"] = self.is_deleted
        args: dict[str, Any] = {
            "all": True,
            "where": where,
            "allow": self.allow,
            "raw": self.raw,
            "plain": self.plain,
            **copy.deepcopy(self.related),
        }
        if self.view is not None:
            args["view"] = self.view
        return args

    async def fetch(self, count: int | None = None, offset: int | None = None) -> list[Any]:
        """
        Load the next `count` entities (default: page size).

        Args:
            count: Number of ids to consume
            offset: Jump to this position in the id list first

        Returns:
            Entities in id order; ids with no matching row are dropped

        Raises:
            RuntimeError: If another fetch on this cursor is in progress
        """
        if self._fetching:
            raise RuntimeError("fetch already in progress on this cursor")

        if offset is not None:
            self.fetched = max(0, min(offset, self.length))
            self.done = self.fetched >= self.length
        if self.done:
            return []

        count = self.page_size if count is None else count
        count = max(0, min(count, self.length - self.fetched))
        ids = self.ids[self.fetched:self.fetched + count]
        if not ids:
            return []

        self._fetching = True
        try:
            entities = await self.engine.query(self.model, self._args(ids), self.session)
        finally:
            self._fetching = False

        column = self.model.id_column or "id"
        by_id = {entity_id(e, column): e for e in entities or []}
        page = [by_id[i] for i in ids if i in by_id]

        self.fetched += len(ids)
        self.done = self.fetched >= self.length
        logger.debug(
            f"[cursor] {self.model.name}: fetched {len(page)}/{len(ids)} "
            f"({self.fetched}/{self.length})"
        )
        return page

    async def each(
        self,
        callback: Callable[[Any, int, Any], Awaitable[Any] | Any],
        context: Any = None,
    ) -> Any:
        """
        Call callback(entity, number, context) for every remaining entity.

        Callbacks may be sync or async; each is awaited before the next.

        Returns:
            context (a new dict when not given)
        """
        if context is None:
            context = {}
        number = 0
        while not self.done:
            for entity in await self.fetch():
                await maybe_await(callback(entity, number, context))
                number += 1
        return context

    async def fetch_all(self) -> list[Any]:
        """Drain every remaining page into one list."""
        entities: list[Any] = []
        while not self.done:
            entities.extend(await self.fetch())
        return entities

    async def __aiter__(self) -> AsyncIterator[Any]:
        while not self.done:
            for entity in await self.fetch():
                yield entity

    def to_dict(self) -> dict[str, Any]:
        return {"ids": list(self.ids), "length": self.length}

    def __repr__(self) -> str:
        return (
            f"ResultCursor(model={self.model.name!r}, length={self.length}, "
            f"fetched={self.fetched}, done={self.done})"
        )
