"""Publishing and app lifecycle operations through a server session."""

from dataclasses import dataclass
from typing import Callable, Optional

import structlog

from bcdeploy.core.exceptions import RemoteOperationFailed
from bcdeploy.core.models import Package, PackageType, PublishOptions, PublishScope, SyncMode
from bcdeploy.transport.channel import (
    GetAppInfo,
    InstallApp,
    PublishApp,
    RemoteCommandChannel,
    RemoteRequest,
    RemoteResponse,
    StartAppDataUpgrade,
    SyncApp,
    SyncTenant,
)

logger = structlog.get_logger()

STEP_QUERY = "query"
STEP_PUBLISH = "publish"
STEP_SYNC_TENANT = "sync-tenant"
STEP_SYNC_APP = "sync-app"
STEP_DATA_VERSION = "query-data-version"
STEP_INSTALL = "install"
STEP_UPGRADE = "upgrade"

_SYNC_STEPS = {STEP_SYNC_TENANT, STEP_SYNC_APP}


@dataclass
class SessionOutcome:
    """What the session transport did for one package."""

    skipped_publish: bool = False
    published: bool = False
    synced: bool = False
    installed: bool = False
    upgraded: bool = False


class SessionPublishTransport:
    """Runs publish, sync, install and upgrade inside a local server instance.

    Every step is one request on the remote command channel. The first failing
    step aborts the sequence; nothing is retried.
    """

    def __init__(self, channel: RemoteCommandChannel, instance: str):
        self.channel = channel
        self.instance = instance

    def _execute(self, step: str, request: RemoteRequest) -> RemoteResponse:
        logger.debug("Executing remote step", step=step, instance=self.instance, operation=request.operation)
        try:
            response = self.channel.execute(self.instance, request)
        except RemoteOperationFailed:
            raise
        except Exception as e:
            logger.error("Remote step failed", step=step, instance=self.instance, error=str(e))
            raise RemoteOperationFailed(step, str(e))

        if not response.ok:
            logger.error("Remote step failed", step=step, instance=self.instance, error=response.error)
            raise RemoteOperationFailed(step, response.error or "no error message returned")

        for warning in response.warnings:
            if step in _SYNC_STEPS:
                logger.debug("Suppressed sync warning", step=step, warning=warning)
            else:
                logger.warning("Remote step warning", step=step, warning=warning)
        return response

    def deploy(
        self,
        package: Package,
        options: PublishOptions,
        force: bool = False,
        on_step: Optional[Callable[[str], None]] = None,
    ) -> SessionOutcome:
        """Publish a package and run the requested lifecycle steps.

        ``force`` is passed through to the publish request unchanged.
        ``on_step`` is called with each step name before the step runs.

        Raises:
            RemoteOperationFailed: On the first failing step
        """
        app = package.identity
        outcome = SessionOutcome()
        install = options.install
        upgrade = options.upgrade
        symbols_only = options.package_type == PackageType.SYMBOLS_ONLY

        def step(name: str) -> str:
            if on_step:
                on_step(name)
            return name

        if options.ignore_if_app_exists:
            query = GetAppInfo.for_app(
                app,
                tenant=None if symbols_only else options.tenant,
                tenant_specific=not symbols_only,
            )
            existing = self._execute(step(STEP_QUERY), query).apps
            if existing:
                outcome.skipped_publish = True
                logger.info("App already published, skipping publish", app=str(app))
                if any(record.is_installed for record in existing):
                    logger.info("App already installed, skipping install", app=str(app))
                    install = False

        if not outcome.skipped_publish:
            request = PublishApp(
                path=str(package.path),
                package_type=options.package_type,
                skip_verification=options.skip_verification,
                scope=options.scope,
                tenant=options.tenant if options.scope == PublishScope.TENANT else None,
                publisher_aad_tenant_id=options.publisher_aad_tenant_id,
                force=force,
            )
            self._execute(step(STEP_PUBLISH), request)
            outcome.published = True
            logger.info("App published through session", app=str(app), instance=self.instance)

        if options.sync:
            self._execute(step(STEP_SYNC_TENANT), SyncTenant(tenant=options.tenant))
            self._execute(
                step(STEP_SYNC_APP),
                SyncApp.for_app(app, tenant=options.tenant, mode=options.sync_mode or SyncMode.ADD),
            )
            outcome.synced = True
            logger.info("App synchronized", app=str(app), tenant=options.tenant)

        if upgrade and install:
            query = GetAppInfo.for_app(app, tenant=options.tenant, tenant_specific=True)
            records = self._execute(step(STEP_DATA_VERSION), query).apps
            if not records:
                raise RemoteOperationFailed(STEP_DATA_VERSION, f"App {app} not found on tenant {options.tenant}")
            record = records[0]
            if record.upgrade_pending:
                logger.info(
                    "Data upgrade pending, skipping install",
                    app=str(app),
                    extension_data_version=record.extension_data_version,
                )
                install = False
            else:
                logger.info("No data upgrade pending, skipping upgrade", app=str(app))
                upgrade = False

        if install:
            self._execute(
                step(STEP_INSTALL),
                InstallApp.for_app(app, tenant=options.tenant, language=options.language),
            )
            outcome.installed = True
            logger.info("App installed", app=str(app), tenant=options.tenant)

        if upgrade:
            self._execute(
                step(STEP_UPGRADE),
                StartAppDataUpgrade.for_app(app, tenant=options.tenant, language=options.language),
            )
            outcome.upgraded = True
            logger.info("App data upgraded", app=str(app), tenant=options.tenant)

        return outcome
