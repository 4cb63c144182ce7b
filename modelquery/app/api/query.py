"""
Query endpoint for modelquery.

POST /models/{model}/query runs one query with the JSON body as its
arguments. The caller identity comes from headers:

    X-Account-Id, X-Access-Id, X-Access-Id-Name, X-Roles (comma separated)

Cursor results are returned as {"ids": [...], "length": n}; callers page
through them by querying again with `where: {"id": [...]}`.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, Header

from modelquery.app.dependencies import get_engine
from modelquery.models import to_plain
from modelquery.query import QueryEngine, ResultCursor
from modelquery.session import Session

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/models", tags=["query"])


def get_session(
    x_account_id: Optional[str] = Header(None),
    x_access_id: Optional[str] = Header(None),
    x_access_id_name: Optional[str] = Header(None),
    x_roles: Optional[str] = Header(None),
) -> Session:
    """Build the caller session from request headers."""
    return Session.from_dict(
        {
            "accountId": x_account_id,
            "accessId": x_access_id,
            "accessIdName": x_access_id_name,
            "roles": x_roles,
        }
    )


def serialize(result: Any) -> Any:
    if isinstance(result, ResultCursor):
        return result.to_dict()
    return to_plain(result)


@router.post("/{model}/query")
async def run_query(
    model: str,
    args: Optional[Dict[str, Any]] = Body(None),
    session: Session = Depends(get_session),
    engine: QueryEngine = Depends(get_engine),
) -> Dict[str, Any]:
    """Run a query against a model."""
    logger.info(f"[api] query {model} session={session.session_id}")
    result = await engine.query(model, args or {}, session)
    return {"model": model, "result": serialize(result)}
