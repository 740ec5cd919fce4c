"""Stats router — queue and ledger aggregates."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.api.deps import get_session, get_stats_service
from commitcaster.api.schemas.stats import StatsResponse
from commitcaster.services.stats_service import StatsService

router = APIRouter()


@router.get("", response_model=StatsResponse)
async def get_stats(
    session: AsyncSession = Depends(get_session),
    svc: StatsService = Depends(get_stats_service),
) -> StatsResponse:
    result = await svc.get_stats(session)
    return StatsResponse(**result)
