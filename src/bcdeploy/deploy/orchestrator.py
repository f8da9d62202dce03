"""End-to-end publishing of a batch of app packages to one target."""

from pathlib import Path
from typing import Callable, Dict, List, Optional, Sequence, Union

import structlog

from bcdeploy.core.config import Settings
from bcdeploy.core.exceptions import CyclicDependency, InvalidPackage, PublishError, UnsupportedTarget
from bcdeploy.core.interfaces import FileStaging, PackageSource, ServerConfigProvider
from bcdeploy.core.models import (
    Package,
    PublishOptions,
    PublishResult,
    PublishStage,
    ServerInstance,
    TransportKind,
)
from bcdeploy.core.targets import CloudTenant, DeploymentTarget, LocalServer
from bcdeploy.deploy.staging import LocalFileStaging
from bcdeploy.deploy.workspace import WorkingArea
from bcdeploy.packages.preprocess import preprocess_package
from bcdeploy.packages.sorter import sort_app_files
from bcdeploy.transport import session as steps
from bcdeploy.transport.channel import RemoteCommandChannel
from bcdeploy.transport.http import HttpPublishTransport
from bcdeploy.transport.selector import TransportChoice, select_transport
from bcdeploy.utils.logging import bind_publish_context, clear_publish_context

logger = structlog.get_logger()

_STEP_STAGES: Dict[str, PublishStage] = {
    steps.STEP_QUERY: PublishStage.PUBLISHED,
    steps.STEP_PUBLISH: PublishStage.PUBLISHED,
    steps.STEP_SYNC_TENANT: PublishStage.SYNCED,
    steps.STEP_SYNC_APP: PublishStage.SYNCED,
    steps.STEP_DATA_VERSION: PublishStage.INSTALLED,
    steps.STEP_INSTALL: PublishStage.INSTALLED,
    steps.STEP_UPGRADE: PublishStage.UPGRADED,
}


def _describe_target(target: DeploymentTarget) -> Dict[str, str]:
    if isinstance(target, CloudTenant):
        return {"target": "cloud", "tenant_id": target.tenant_id, "environment": target.environment}
    return {"target": "local", "instance": target.instance}


class AppPublisher:
    """Publishes app packages to a local server instance or a cloud tenant.

    A call stages the sources into a fresh working area, orders the packages
    by their declared dependencies and publishes them one at a time. The
    first failure stops the batch; packages published before it stay
    published.
    """

    def __init__(
        self,
        server_config: Optional[ServerConfigProvider] = None,
        channel: Optional[RemoteCommandChannel] = None,
        staging: Optional[FileStaging] = None,
        http: Optional[HttpPublishTransport] = None,
        settings: Optional[Settings] = None,
        on_published: Optional[Callable[[PublishResult], None]] = None,
    ):
        self.settings = settings or Settings()
        self.server_config = server_config
        self.channel = channel
        self.staging = staging or LocalFileStaging(self.settings.download_chunk_size)
        self.http = http or HttpPublishTransport(self.settings.download_chunk_size)
        self.on_published = on_published

    def _resolve_server(self, target: DeploymentTarget) -> Optional[ServerInstance]:
        if not isinstance(target, LocalServer):
            return None
        if self.server_config is None:
            raise UnsupportedTarget(
                f"Publishing to {target.instance} requires a server config provider",
                code="server_config_required",
            )
        try:
            return self.server_config.get_server_instance(target.instance)
        except PublishError:
            raise
        except Exception as e:
            logger.error("Server instance lookup failed", instance=target.instance, error=str(e))
            raise UnsupportedTarget(
                f"Cannot resolve server instance {target.instance}: {e}",
                code="server_lookup_failed",
            )

    def publish(
        self,
        target: DeploymentTarget,
        sources: Union[PackageSource, Sequence[PackageSource]],
        options: Optional[PublishOptions] = None,
    ) -> List[PublishResult]:
        """Publish all packages found in ``sources`` to ``target``.

        Returns one result per package, in publish order.

        Raises:
            UnsupportedTarget: If the target cannot be reached with the given options
            InvalidScope: If the scope is not supported by the selected transport
            InvalidPackage: If a source cannot be staged or read
            CyclicDependency: If the packages depend on each other in a cycle
            PublishError: Any other failure, annotated with the failing app and stage
        """
        options = options or PublishOptions()
        if isinstance(sources, (str, Path, bytes)) or hasattr(sources, "read"):
            sources = [sources]
        else:
            sources = list(sources)

        # All validation happens before the working area exists
        server = self._resolve_server(target)
        choice = select_transport(target, options, self.settings, server=server, channel=self.channel)

        logger.info(
            "Publishing apps",
            transport=choice.kind.value,
            sources=len(sources),
            tenant=options.tenant,
            **_describe_target(target),
        )

        results: List[PublishResult] = []
        with WorkingArea(self.settings.work_root) as area:
            try:
                paths = self.staging.stage(sources, area.path)
            except PublishError as e:
                raise self._batch_error(e, PublishStage.STAGED)
            try:
                packages = sort_app_files(paths)
            except InvalidPackage as e:
                error = InvalidPackage(self.staging.origin(Path(e.path)), e.reason)
                raise self._batch_error(error, PublishStage.SORTED) from e
            except CyclicDependency as e:
                e.app = ", ".join(e.apps)
                raise self._batch_error(e, PublishStage.SORTED)
            for package in packages:
                result = self._publish_package(package, choice, options, results)
                results.append(result)
                if self.on_published:
                    self.on_published(result)

        logger.info("Publishing completed", published=len(results))
        return results

    def _batch_error(self, error: PublishError, stage: PublishStage) -> PublishError:
        error.stage = stage.value
        logger.error("Publishing batch failed", stage=stage.value, error=str(error), code=error.code)
        return error

    def _publish_package(
        self,
        package: Package,
        choice: TransportChoice,
        options: PublishOptions,
        completed: List[PublishResult],
    ) -> PublishResult:
        app = str(package.identity)
        stages = [PublishStage.STAGED, PublishStage.SORTED]
        current = PublishStage.PROCESSED

        def on_step(step: str) -> None:
            nonlocal current
            current = _STEP_STAGES[step]

        bind_publish_context(app=app, tenant=options.tenant)
        try:
            package = preprocess_package(package, options)
            stages.append(PublishStage.PROCESSED)

            if choice.kind == TransportKind.HTTP:
                current = PublishStage.PUBLISHED
                self.http.publish(package, choice.endpoint, options.sync_mode)
                stages.append(PublishStage.PUBLISHED)
                result = PublishResult(
                    app=package.identity,
                    file_name=package.file_name,
                    transport=choice.kind,
                    stages=stages,
                )
            else:
                outcome = choice.session.deploy(package, options, force=choice.force_publish, on_step=on_step)
                if outcome.published:
                    stages.append(PublishStage.PUBLISHED)
                if outcome.synced:
                    stages.append(PublishStage.SYNCED)
                if outcome.installed:
                    stages.append(PublishStage.INSTALLED)
                if outcome.upgraded:
                    stages.append(PublishStage.UPGRADED)
                result = PublishResult(
                    app=package.identity,
                    file_name=package.file_name,
                    transport=choice.kind,
                    stages=stages,
                    skipped_publish=outcome.skipped_publish,
                    installed=outcome.installed,
                    upgraded=outcome.upgraded,
                )

            result.stages.append(PublishStage.DONE)
            logger.info(
                "App published",
                transport=choice.kind.value,
                file_name=result.file_name,
                skipped_publish=result.skipped_publish,
                installed=result.installed,
                upgraded=result.upgraded,
            )
            return result
        except PublishError as e:
            e.app = app
            e.stage = current.value
            e.completed = list(completed)
            logger.error("App publish failed", stage=current.value, error=str(e), code=e.code)
            raise
        finally:
            clear_publish_context()
