"""Templates router — presets and per-tenant prompt templates."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from commitcaster.api.deps import get_session, get_template_service, get_tenant_service
from commitcaster.api.schemas.common import DeletedResponse
from commitcaster.api.schemas.template import (
    ActiveTemplate,
    TemplateCatalogue,
    TemplatePreset,
    TemplateResponse,
    TemplateSaveRequest,
    TemplateSaveResponse,
)
from commitcaster.services.template_engine import (
    TEMPLATE_PRESETS,
    TEMPLATE_VARIABLES,
    TemplateService,
)
from commitcaster.services.tenant_service import TenantService

presets_router = APIRouter()
router = APIRouter()


@presets_router.get("/presets", response_model=TemplateCatalogue)
async def list_presets() -> TemplateCatalogue:
    return TemplateCatalogue(
        presets=[TemplatePreset(**preset) for preset in TEMPLATE_PRESETS.values()],
        variables=dict(TEMPLATE_VARIABLES),
    )


@router.get("/{user_id}/templates", response_model=list[TemplateResponse])
async def list_templates(
    user_id: str,
    session: AsyncSession = Depends(get_session),
    svc: TemplateService = Depends(get_template_service),
) -> list[TemplateResponse]:
    return [TemplateResponse(**row) for row in await svc.list_templates(session, user_id)]


@router.put("/{user_id}/templates/{template_id}", response_model=TemplateSaveResponse)
async def save_template(
    user_id: str,
    template_id: str,
    body: TemplateSaveRequest,
    session: AsyncSession = Depends(get_session),
    svc: TemplateService = Depends(get_template_service),
    tenants: TenantService = Depends(get_tenant_service),
) -> TemplateSaveResponse:
    await tenants.get_tenant(session, user_id)
    row, validation = await svc.save_template(
        session,
        user_id,
        template_id,
        body.template_name or template_id,
        body.template,
        body.prompt,
        activate=body.activate,
    )
    return TemplateSaveResponse(
        template=TemplateResponse(**svc.serialize(row)),
        warnings=validation.warnings,
    )


@router.post("/{user_id}/templates/active", response_model=ActiveTemplate)
async def activate_template(
    user_id: str,
    body: ActiveTemplate,
    session: AsyncSession = Depends(get_session),
    svc: TemplateService = Depends(get_template_service),
) -> ActiveTemplate:
    await svc.activate(session, user_id, body.template_id)
    active = await svc.get_active(session, user_id)
    return ActiveTemplate(template_id=active.template_id if active else None)


@router.delete("/{user_id}/templates/{template_id}", response_model=DeletedResponse)
async def delete_template(
    user_id: str,
    template_id: str,
    session: AsyncSession = Depends(get_session),
    svc: TemplateService = Depends(get_template_service),
) -> DeletedResponse:
    await svc.delete_template(session, user_id, template_id)
    return DeletedResponse(deleted=True)
