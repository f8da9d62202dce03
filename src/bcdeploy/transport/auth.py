"""httpx authentication for development endpoints."""

from datetime import datetime, timezone
from typing import Any, Generator

import httpx
import structlog

from bcdeploy.core.exceptions import AuthExpired
from bcdeploy.core.interfaces import TokenProvider
from bcdeploy.core.models import Credential

logger = structlog.get_logger()


class BearerTokenAuth(httpx.Auth):
    """Renews a token through the provider and sends it as a bearer header."""

    def __init__(self, provider: TokenProvider, context: Any = None):
        self.provider = provider
        self.context = context

    def access_token(self) -> str:
        """Renew and return the access token.

        Raises:
            AuthExpired: If renewal fails or yields an expired token
        """
        try:
            token, expiry = self.provider.renew(self.context)
        except AuthExpired:
            raise
        except Exception as e:
            logger.error("Token renewal failed", error=str(e))
            raise AuthExpired(f"Token renewal failed: {e}", code="auth_expired")

        if not token:
            raise AuthExpired("Token provider returned no access token", code="auth_expired")
        if expiry is not None:
            if expiry.tzinfo is None:
                expiry = expiry.replace(tzinfo=timezone.utc)
            if expiry <= datetime.now(timezone.utc):
                raise AuthExpired(f"Access token expired at {expiry.isoformat()}", code="auth_expired")
        return token

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        request.headers["Authorization"] = f"Bearer {self.access_token()}"
        yield request


class CredentialAuth(httpx.Auth):
    """HTTP Basic auth built from a credential at request time."""

    def __init__(self, credential: Credential):
        self.credential = credential

    def auth_flow(self, request: httpx.Request) -> Generator[httpx.Request, httpx.Response, None]:
        basic = httpx.BasicAuth(self.credential.username, self.credential.password.get_secret_value())
        yield from basic.auth_flow(request)
