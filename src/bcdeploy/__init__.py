"""bcdeploy - Publishing and lifecycle management of Business Central app packages.

Call ``setup_logging`` once at startup to configure structured logs.
"""

__version__ = "0.1.0"

from bcdeploy.core.config import Settings, load_publish_options
from bcdeploy.core.models import PublishOptions, PublishResult
from bcdeploy.core.targets import CloudTenant, LocalServer
from bcdeploy.deploy.orchestrator import AppPublisher
from bcdeploy.utils.logging import setup_logging

__all__ = [
    "AppPublisher",
    "CloudTenant",
    "LocalServer",
    "PublishOptions",
    "PublishResult",
    "Settings",
    "load_publish_options",
    "setup_logging",
    "__version__",
]
