"""Account Routes — registration, activation, login and password reset.

Invariants:
    - Every handler is a plain `def`: FastAPI runs it on its thread pool, so
      requests reach the store concurrently
    - Handlers only translate HTTP <-> AccountService; errors propagate to the
      global RegistryError handler which maps them 1:1 to status codes
    - Account ids in paths are decimal integers; ids outside u64 are simply not found

Design Decisions:
    - Password reset request answers 202: the code is on its way by mail
"""

import logging

from fastapi import APIRouter, Depends, status

from account_registry.api.dependencies import get_account_service
from account_registry.schemas.account import (
    ActivateRequest, LoginRequest, MetadataResponse, PermissionsResponse,
    RegisterRequest, RegisterResponse, ResetPasswordRequest,
    TokenCheckResponse, TokenRequest, TokenResponse,
)
from account_registry.services.account_service import AccountService, ActivationProfile

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/api/v1/accounts", tags=["accounts"])


@router.post(
    "", response_model=RegisterResponse, status_code=status.HTTP_201_CREATED,
)
def register(
    body: RegisterRequest,
    service: AccountService = Depends(get_account_service),
):
    """Register an address and mail it an activation code."""
    account_id = service.register(body.email)
    return RegisterResponse(id=str(account_id))


@router.post("/{account_id}/activate", status_code=status.HTTP_204_NO_CONTENT)
def activate(
    body: ActivateRequest,
    account_id: int,
    service: AccountService = Depends(get_account_service),
):
    profile = ActivationProfile(
        name=body.name,
        school_id=body.school_id,
        phone=body.phone,
        password=body.password,
        house=body.house,
        organization=body.organization,
        token_expiration_days=body.token_expiration_days,
    )
    service.activate(account_id, body.code, profile)


@router.post("/{account_id}/login", response_model=TokenResponse)
def login(
    body: LoginRequest,
    account_id: int,
    service: AccountService = Depends(get_account_service),
):
    return TokenResponse(token=service.login(account_id, body.password))


@router.post("/{account_id}/logout", status_code=status.HTTP_204_NO_CONTENT)
def logout(
    body: TokenRequest,
    account_id: int,
    service: AccountService = Depends(get_account_service),
):
    service.logout(account_id, body.token)


@router.post("/{account_id}/token/check", response_model=TokenCheckResponse)
def check_token(
    body: TokenRequest,
    account_id: int,
    service: AccountService = Depends(get_account_service),
):
    return TokenCheckResponse(valid=service.check_token(account_id, body.token))


@router.post("/{account_id}/password-reset", status_code=status.HTTP_202_ACCEPTED)
def request_password_reset(
    account_id: int,
    service: AccountService = Depends(get_account_service),
):
    """Mail a password reset code to a verified account."""
    service.request_password_reset(account_id)
    return {"status": "code_sent"}


@router.post("/{account_id}/password", status_code=status.HTTP_204_NO_CONTENT)
def reset_password(
    body: ResetPasswordRequest,
    account_id: int,
    service: AccountService = Depends(get_account_service),
):
    service.reset_password(account_id, body.code, body.new_password)


@router.get("/{account_id}", response_model=MetadataResponse)
def get_metadata(
    account_id: int,
    service: AccountService = Depends(get_account_service),
):
    metadata = service.get_metadata(account_id)
    return MetadataResponse.from_metadata(account_id, metadata)


@router.get("/{account_id}/permissions", response_model=PermissionsResponse)
def get_permissions(
    account_id: int,
    service: AccountService = Depends(get_account_service),
):
    permissions = service.get_permissions(account_id)
    return PermissionsResponse(
        id=str(account_id), permissions=sorted(permissions, key=lambda p: p.value),
    )
