"""Choice of publish transport for a deployment target."""

from dataclasses import dataclass
from typing import Optional

import httpx
import structlog

from bcdeploy.core.config import Settings
from bcdeploy.core.exceptions import InvalidScope, UnsupportedTarget
from bcdeploy.core.models import AuthMode, PublishOptions, PublishScope, ServerInstance, TransportKind
from bcdeploy.core.targets import CloudTenant, DeploymentTarget, LocalServer
from bcdeploy.transport.auth import BearerTokenAuth, CredentialAuth
from bcdeploy.transport.channel import RemoteCommandChannel
from bcdeploy.transport.http import DevEndpoint
from bcdeploy.transport.session import SessionPublishTransport

logger = structlog.get_logger()


@dataclass(frozen=True)
class TransportChoice:
    """Selected transport with everything needed to use it."""

    kind: TransportKind
    endpoint: Optional[DevEndpoint] = None
    session: Optional[SessionPublishTransport] = None
    force_publish: bool = False


def _cloud_choice(tenant: CloudTenant, settings: Settings) -> TransportChoice:
    endpoint = DevEndpoint(
        base_url=tenant.dev_base_url(settings.cloud_api_base_url),
        auth=BearerTokenAuth(tenant.token_provider, tenant),
        verify_tls=True,
    )
    return TransportChoice(kind=TransportKind.HTTP, endpoint=endpoint)


def _local_auth(target: LocalServer, server: ServerInstance) -> Optional[httpx.Auth]:
    if server.auth_mode == AuthMode.NAV_USER_PASSWORD:
        if target.credential is None:
            raise UnsupportedTarget(
                f"Server instance {server.server_instance} uses NavUserPassword and no credential was given",
                code="credential_required",
            )
        return CredentialAuth(target.credential)
    if server.auth_mode == AuthMode.AAD:
        if target.token_provider is None:
            raise UnsupportedTarget(
                f"Server instance {server.server_instance} uses AAD and no token provider was given",
                code="token_provider_required",
            )
        return BearerTokenAuth(target.token_provider, target)
    if target.auth is None:
        logger.debug("No auth for Windows authentication, sending no credentials", instance=target.instance)
    return target.auth


def _local_endpoint(target: LocalServer, server: ServerInstance, options: PublishOptions, settings: Settings) -> DevEndpoint:
    verify_tls = True
    if server.dev_ssl_enabled and not settings.verify_local_tls:
        verify_tls = False
    return DevEndpoint(
        base_url=server.dev_base_url,
        auth=_local_auth(target, server),
        verify_tls=verify_tls,
        tenant=options.tenant if options.tenant != "default" else None,
    )


def select_transport(
    target: DeploymentTarget,
    options: PublishOptions,
    settings: Settings,
    server: Optional[ServerInstance] = None,
    channel: Optional[RemoteCommandChannel] = None,
) -> TransportChoice:
    """Pick the transport for a target.

    ``server`` is the running instance behind a local target, or None when
    the host runs no server instance.

    Raises:
        UnsupportedTarget: If the target cannot be reached with the given options
        InvalidScope: If Global scope is requested over the development endpoint
    """
    if isinstance(target, CloudTenant):
        choice = _cloud_choice(target, settings)
    elif isinstance(target, LocalServer):
        if server is None:
            if target.cloud_fallback is None:
                raise UnsupportedTarget(
                    f"No server instance running for {target.instance}",
                    code="no_server_instance",
                )
            logger.info(
                "No server instance running, publishing to cloud tenant",
                instance=target.instance,
                tenant_id=target.cloud_fallback.tenant_id,
            )
            choice = _cloud_choice(target.cloud_fallback, settings)
        elif options.use_dev_endpoint:
            choice = TransportChoice(
                kind=TransportKind.HTTP,
                endpoint=_local_endpoint(target, server, options, settings),
                force_publish=server.force_publish,
            )
        else:
            if channel is None:
                raise UnsupportedTarget(
                    f"Publishing to {target.instance} requires a remote command channel",
                    code="channel_required",
                )
            choice = TransportChoice(
                kind=TransportKind.SESSION,
                session=SessionPublishTransport(channel, server.server_instance),
                force_publish=server.force_publish,
            )
    else:
        raise UnsupportedTarget(f"Unsupported deployment target: {target!r}")

    if choice.kind == TransportKind.HTTP and options.scope == PublishScope.GLOBAL:
        raise InvalidScope(
            "Global scope is not supported when publishing through the development endpoint",
            code="invalid_scope",
        )

    logger.debug(
        "Selected transport",
        transport=choice.kind.value,
        url=choice.endpoint.base_url if choice.endpoint else None,
    )
    return choice
