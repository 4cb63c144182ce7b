"""
Store and Cache protocols.

Any backend that can run a Statement can serve as a Store; any object with
`query` and `store_view` can serve as a Cache. Implementations only need to
match these shapes.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, runtime_checkable

if TYPE_CHECKING:
    from modelquery.query.executor import Query
    from modelquery.query.statement import Statement
    from modelquery.session import Session


@runtime_checkable
class Store(Protocol):
    """Executes statements and returns raw rows."""

    async def run(
        self,
        statement: Statement,
        parameters: dict[str, Any] | None = None,
        session: Session | None = None,
    ) -> list[dict[str, Any]]:
        """
        Execute a statement.

        Returns:
            Rows as dicts keyed by column name. Identifier-only statements
            return rows holding just the identifier column.
        """
        ...


@runtime_checkable
class Cache(Protocol):
    """Caches query rows and rendered view results."""

    async def query(self, query: Query) -> Any:
        """
        Return rows for a query, from cache or by running it.

        May return a RenderedView when a rendered result for the query's
        views is cached.
        """
        ...

    async def store_view(self, query: Query, result: Any) -> None:
        """Cache a rendered view result for a query."""
        ...
