"""Credentials router — revoke a stored token so the subject must re-authorize."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from commitcaster.api.deps import get_vault
from commitcaster.api.schemas.common import DeletedResponse
from commitcaster.services import NotFoundError, ValidationError
from commitcaster.services.credential_vault import CredentialVault, Provider

router = APIRouter()


@router.delete("/{provider}/{subject}", response_model=DeletedResponse)
async def delete_credential(
    provider: str,
    subject: str,
    vault: CredentialVault = Depends(get_vault),
) -> DeletedResponse:
    try:
        kind = Provider(provider)
    except ValueError as exc:
        raise ValidationError(f"unknown provider {provider!r}") from exc
    if not await vault.delete(kind, subject):
        raise NotFoundError(f"no {kind.value} credential for {subject}")
    return DeletedResponse(deleted=True)
