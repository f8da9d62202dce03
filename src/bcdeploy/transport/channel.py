"""Typed requests for the remote command channel.

Each operation executed inside a local server's session is described by one
request model; the ``operation`` field tags the variant so that a channel can
dispatch on it (or serialize it with ``model_dump_json``).
"""

from __future__ import annotations

from typing import Annotated, List, Literal, Optional, Protocol, Union

from pydantic import BaseModel, Field

from bcdeploy.core.models import (
    AppIdentity,
    DeployedAppRecord,
    PackageType,
    PublishScope,
    SyncMode,
)


class _AppRequest(BaseModel):
    publisher: str
    name: str
    version: str
    tenant: Optional[str] = None

    @classmethod
    def for_app(cls, app: AppIdentity, **kwargs):
        return cls(publisher=app.publisher, name=app.name, version=app.version, **kwargs)


class GetAppInfo(_AppRequest):
    operation: Literal["get_app_info"] = "get_app_info"
    tenant_specific: bool = False


class PublishApp(BaseModel):
    operation: Literal["publish_app"] = "publish_app"
    path: str = Field(..., description="Package path as seen by the server host")
    package_type: PackageType = PackageType.EXTENSION
    skip_verification: bool = False
    scope: Optional[PublishScope] = None
    tenant: Optional[str] = None
    publisher_aad_tenant_id: Optional[str] = None
    force: bool = False


class SyncTenant(BaseModel):
    operation: Literal["sync_tenant"] = "sync_tenant"
    tenant: str
    mode: SyncMode = SyncMode.FORCE_SYNC


class SyncApp(_AppRequest):
    operation: Literal["sync_app"] = "sync_app"
    mode: SyncMode = SyncMode.ADD


class InstallApp(_AppRequest):
    operation: Literal["install_app"] = "install_app"
    language: Optional[str] = None


class StartAppDataUpgrade(_AppRequest):
    operation: Literal["start_app_data_upgrade"] = "start_app_data_upgrade"
    language: Optional[str] = None


RemoteRequest = Annotated[
    Union[GetAppInfo, PublishApp, SyncTenant, SyncApp, InstallApp, StartAppDataUpgrade],
    Field(discriminator="operation"),
]


class RemoteResponse(BaseModel):
    """Result of one remote operation."""

    ok: bool = True
    error: Optional[str] = None
    warnings: List[str] = Field(default_factory=list)
    apps: List[DeployedAppRecord] = Field(default_factory=list)


class RemoteCommandChannel(Protocol):
    """Session to the host running a local server instance."""

    def execute(self, instance: str, request: RemoteRequest) -> RemoteResponse:
        ...
