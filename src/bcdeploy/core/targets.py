"""Deployment targets."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional, Union

import httpx

from bcdeploy.core.interfaces import TokenProvider
from bcdeploy.core.models import Credential


@dataclass(frozen=True)
class CloudTenant:
    """Cloud tenant environment reached through its development endpoint."""

    tenant_id: str
    token_provider: TokenProvider
    environment: str = "production"
    base_url: Optional[str] = None  # defaults to Settings.cloud_api_base_url
    kind: Literal["cloud"] = "cloud"

    def dev_base_url(self, default_base_url: str) -> str:
        base = (self.base_url or default_base_url).rstrip("/")
        return f"{base}/v2.0/{self.tenant_id}/{self.environment}"


@dataclass(frozen=True)
class LocalServer:
    """Server instance hosted in a locally managed container.

    ``cloud_fallback`` is used when the container runs no server instance
    (files-only) and apps should go to a cloud tenant instead. ``auth`` is
    sent as-is to development endpoints of instances using Windows
    authentication, e.g. an NTLM or Negotiate flow.
    """

    instance: str
    credential: Optional[Credential] = None
    token_provider: Optional[TokenProvider] = None
    cloud_fallback: Optional[CloudTenant] = None
    auth: Optional[httpx.Auth] = None
    kind: Literal["local"] = "local"


DeploymentTarget = Union[LocalServer, CloudTenant]
