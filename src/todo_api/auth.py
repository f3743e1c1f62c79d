from __future__ import annotations

import secrets
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from .settings import get_settings

_security = HTTPBasic(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Basic"},
    )


# PUBLIC_INTERFACE
def get_current_user(creds: Optional[HTTPBasicCredentials] = Depends(_security)) -> str:
    """
    Resolve the id of the user making the request.

    Behavior:
    - If settings.enable_basic_auth is False (default): every request acts as
      settings.default_user_id.
    - If True: validates provided credentials against BASIC_AUTH_USERNAME/BASIC_AUTH_PASSWORD
      and returns the username. Missing or invalid credentials raise 401 with
      WWW-Authenticate: Basic.

    Usage:
        @router.get("/")
        def handler(user_id: str = Depends(get_current_user)): ...
    """
    settings = get_settings()
    if not settings.enable_basic_auth:
        return settings.default_user_id

    if creds is None or creds.username is None or creds.password is None:
        raise _unauthorized("Not authenticated")

    expected_user = settings.basic_auth_username
    expected_pass = settings.basic_auth_password
    if expected_user is None or expected_pass is None:
        # Misconfiguration: auth enabled but username/password not provided
        raise _unauthorized("Server authentication not configured")

    user_ok = secrets.compare_digest(creds.username.encode(), expected_user.encode())
    pass_ok = secrets.compare_digest(creds.password.encode(), expected_pass.encode())
    if not (user_ok and pass_ok):
        raise _unauthorized("Invalid authentication credentials")
    return creds.username
