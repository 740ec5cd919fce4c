"""Queue router — persisted items and cancellation."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.api.deps import get_queue, get_queue_item_dao, get_session
from commitcaster.api.schemas.common import PageMeta, PaginatedResponse
from commitcaster.api.schemas.queue import CancelResponse, QueueItemResponse
from commitcaster.dao.queue_item_dao import QueueItemDAO
from commitcaster.engines.work_queue.queue import WorkQueue
from commitcaster.services import NotFoundError

router = APIRouter()


@router.get("/items", response_model=PaginatedResponse[QueueItemResponse])
async def list_items(
    status: str | None = Query(None),
    user_id: str | None = Query(None),
    cursor: str | None = Query(None),
    page_size: int = Query(20, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
    dao: QueueItemDAO = Depends(get_queue_item_dao),
    queue: WorkQueue = Depends(get_queue),
) -> PaginatedResponse[QueueItemResponse]:
    page = await dao.list_paginated(
        session, status=status, user_id=user_id, cursor=cursor, page_size=page_size
    )
    items = []
    for row in page.data:
        item = QueueItemResponse.model_validate(row)
        item.position = queue.position(row.queue_id)
        items.append(item)
    return PaginatedResponse(
        data=items,
        meta=PageMeta(next_cursor=page.next_cursor, has_more=page.has_more),
    )


@router.delete("/items/{queue_id}", response_model=CancelResponse)
async def cancel_item(
    queue_id: str,
    queue: WorkQueue = Depends(get_queue),
) -> CancelResponse:
    if not await queue.cancel(queue_id):
        raise NotFoundError(f"no cancellable queue item: {queue_id}")
    return CancelResponse(queue_id=queue_id, cancelled=True)
