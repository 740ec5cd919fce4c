"""Prompt-template schemas."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class TemplateSaveRequest(BaseModel):
    template_name: str | None = None
    template: str | None = None
    prompt: str | None = None
    activate: bool = False


class TemplateResponse(BaseModel):
    template_id: str
    template_name: str
    template: str | None
    prompt: str | None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class TemplateSaveResponse(BaseModel):
    template: TemplateResponse
    warnings: list[str]


class ActiveTemplate(BaseModel):
    template_id: str | None = None


class TemplatePreset(BaseModel):
    id: str
    name: str
    description: str
    template: str


class TemplateCatalogue(BaseModel):
    presets: list[TemplatePreset]
    variables: dict[str, str]
