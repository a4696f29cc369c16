"""
HTTP Basic gateway in front of every route.

Rationale:
- One shared user/password pair from Settings; credentials are compared in constant time.
- Anything else gets a 401 challenge so browsers show their login prompt.
"""

import logging
import secrets
from typing import Callable, Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials

from .config import Settings

logger = logging.getLogger(__name__)

REALM = "Ernesto"

_basic = HTTPBasic(realm=REALM, auto_error=False)


def _unauthorized() -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Authentication required",
        headers={"WWW-Authenticate": f'Basic realm="{REALM}"'},
    )


def credentials_match(credentials: Optional[HTTPBasicCredentials], settings: Settings) -> bool:
    if credentials is None:
        return False
    user_ok = secrets.compare_digest(credentials.username.encode("utf-8"), settings.auth_user.encode("utf-8"))
    pass_ok = secrets.compare_digest(credentials.password.encode("utf-8"), settings.auth_password.encode("utf-8"))
    return user_ok and pass_ok


def require_basic_auth(settings: Settings) -> Callable[..., None]:
    """Build the app-wide dependency checking credentials against `settings`."""

    async def dependency(credentials: Optional[HTTPBasicCredentials] = Depends(_basic)) -> None:
        if not credentials_match(credentials, settings):
            logger.info("Rejected request with missing or invalid credentials")
            raise _unauthorized()

    return dependency
