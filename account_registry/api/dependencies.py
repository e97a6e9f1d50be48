"""API Dependencies — access to the objects built by the lifespan.

Invariants:
    - The AccountService lives on app.state, never in a module-level global
    - Requests arriving before startup completed get a RuntimeError (500)
"""

from fastapi import Request

from account_registry.infrastructure.database import DatabaseSessionManager
from account_registry.services.account_service import AccountService


def get_account_service(request: Request) -> AccountService:
    service = getattr(request.app.state, "account_service", None)
    if service is None:
        raise RuntimeError("Account service not initialized")
    return service


def get_db_manager(request: Request) -> DatabaseSessionManager | None:
    return getattr(request.app.state, "db_manager", None)
