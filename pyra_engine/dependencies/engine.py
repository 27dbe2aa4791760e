"""
Engine dependencies for FastAPI.

The engine is built once in the application lifespan and stored on
app.state; routes receive it through get_engine.
"""
from typing import Optional

from fastapi import Header, HTTPException, Query, Request, status
from pydantic import BaseModel

from pyra_engine.services.engine import Engine


def get_engine(request: Request) -> Engine:
    """
    Dependency returning the process-wide engine.

    Usage:
        @router.get("/automations")
        async def list_rules(engine: Engine = Depends(get_engine)):
            ...
    """
    engine = getattr(request.app.state, "engine", None)
    if engine is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Automation engine is not ready",
        )
    return engine


def get_actor(x_pyra_user: Optional[str] = Header(default=None)) -> Optional[str]:
    """Username of the caller, forwarded by the workspace gateway."""
    if not x_pyra_user or not x_pyra_user.strip():
        return None
    return x_pyra_user.strip()


class Pagination(BaseModel):
    page: int
    page_size: int


def get_pagination(
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=20, ge=1, le=100, alias="pageSize"),
) -> Pagination:
    return Pagination(page=page, page_size=page_size)
