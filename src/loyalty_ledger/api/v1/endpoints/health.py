from __future__ import annotations

from typing import Dict, Literal

from fastapi import APIRouter, Depends
from loguru import logger
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty_ledger.db.session import get_session


router = APIRouter()


class ComponentStatus(BaseModel):
    status: Literal["ready", "error"]
    detail: str | None = Field(default=None, description="Human readable status detail")


class ReadinessPayload(BaseModel):
    status: Literal["ready", "error"]
    components: Dict[str, ComponentStatus]


@router.get("/healthz", summary="Service health check")
async def service_health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/readyz", summary="Service readiness", response_model=ReadinessPayload)
async def service_readiness(session: AsyncSession = Depends(get_session)) -> ReadinessPayload:
    try:
        await session.execute(text("SELECT 1"))
    except DBAPIError as exc:
        logger.warning("Readiness database ping failed", error=str(exc.orig))
        return ReadinessPayload(
            status="error",
            components={"database": ComponentStatus(status="error", detail="Database unreachable")},
        )
    return ReadinessPayload(
        status="ready",
        components={"database": ComponentStatus(status="ready")},
    )
