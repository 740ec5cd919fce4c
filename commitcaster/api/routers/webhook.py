"""Webhook router — push events from the code host."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, Request

from commitcaster.api.deps import get_webhook_service
from commitcaster.services.webhook_service import WebhookService

router = APIRouter()


@router.post("/codehost")
@router.post("/github", include_in_schema=False)
async def receive_push(
    request: Request,
    svc: WebhookService = Depends(get_webhook_service),
) -> dict[str, Any]:
    body = await request.body()
    headers = request.headers
    return await svc.handle_push(
        body,
        event=headers.get("x-event-kind") or headers.get("x-github-event"),
        signature=headers.get("x-signature-256") or headers.get("x-hub-signature-256"),
        content_type=headers.get("content-type"),
    )
