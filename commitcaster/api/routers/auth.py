"""OAuth router — browser redirects and callbacks for both providers."""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query
from fastapi.responses import HTMLResponse, RedirectResponse

from commitcaster.api.deps import get_orchestrator
from commitcaster.api.errors import status_for
from commitcaster.api.pages import error_page, success_page
from commitcaster.oauth.orchestrator import AuthorizationResult, OAuthOrchestrator
from commitcaster.services import AuthenticationError, ServiceError, TransportError

log = structlog.get_logger("commitcaster.oauth")

router = APIRouter()


def _failure_page(heading: str, exc: ServiceError) -> HTMLResponse:
    if isinstance(exc, TransportError):
        status_code = 502
    elif isinstance(exc, AuthenticationError):
        status_code = 400
    else:
        status_code = status_for(exc)
    return error_page(heading, str(exc) or type(exc).__name__, status_code=status_code)


# ── code host ─────────────────────────────────────────────────────────────


@router.get("/codehost/start")
async def codehost_start(orchestrator: OAuthOrchestrator = Depends(get_orchestrator)):
    try:
        url = orchestrator.start_codehost()
    except ServiceError as exc:
        return _failure_page("OAuth Initialization Failed", exc)
    return RedirectResponse(url, status_code=302)


@router.get("/codehost/callback", response_class=HTMLResponse)
async def codehost_callback(
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    error_description: str | None = Query(None),
    orchestrator: OAuthOrchestrator = Depends(get_orchestrator),
) -> HTMLResponse:
    if error:
        log.warning("oauth.codehost.denied", error=error, description=error_description)
        return error_page("OAuth Authorization Failed", error, error_description)
    try:
        result = await orchestrator.complete_codehost(code, state)
    except ServiceError as exc:
        log.warning("oauth.codehost.failed", error=str(exc))
        return _failure_page("Token Exchange Failed", exc)
    return success_page("code host", _details(result))


# ── social net ────────────────────────────────────────────────────────────


@router.get("/socialnet/start")
async def socialnet_start(
    tenant_id: str = Query(..., min_length=1),
    orchestrator: OAuthOrchestrator = Depends(get_orchestrator),
):
    try:
        url = orchestrator.start_socialnet(tenant_id)
    except ServiceError as exc:
        return _failure_page("OAuth Initialization Failed", exc)
    return RedirectResponse(url, status_code=302)


@router.get("/socialnet/callback", response_class=HTMLResponse)
async def socialnet_callback(
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    error_description: str | None = Query(None),
    orchestrator: OAuthOrchestrator = Depends(get_orchestrator),
) -> HTMLResponse:
    if error:
        log.warning("oauth.socialnet.denied", error=error, description=error_description)
        return error_page("OAuth Authorization Failed", error, error_description)
    try:
        result = await orchestrator.complete_socialnet(code, state)
    except ServiceError as exc:
        log.warning("oauth.socialnet.failed", error=str(exc))
        return _failure_page("Token Exchange Failed", exc)
    return success_page("social network", _details(result))


def _details(result: AuthorizationResult) -> list[str]:
    lines = [f"Tenant: {result.tenant_id}"]
    if result.username:
        lines.append(f"Signed in as {result.username}.")
    return lines
