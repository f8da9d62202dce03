"""Core data models for bcdeploy."""

from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, SecretStr, field_validator, model_validator


def version_tuple(version: Optional[str]) -> Tuple[int, ...]:
    """Parse a dotted version (``1.0.2.0``) into a comparable tuple."""
    if not version:
        return ()
    parts = []
    for part in str(version).strip().split("."):
        try:
            parts.append(int(part))
        except ValueError:
            parts.append(0)
    # 1.0 and 1.0.0.0 are the same version
    while parts and parts[-1] == 0:
        parts.pop()
    return tuple(parts)


def normalize_app_id(app_id: str) -> str:
    """Lower-case GUID without braces, as used for dependency lookups."""
    return app_id.strip().strip("{}").lower()


class SyncMode(str, Enum):
    """Schema synchronization mode."""

    ADD = "Add"
    CLEAN = "Clean"
    DEVELOPMENT = "Development"
    FORCE_SYNC = "ForceSync"


class PublishScope(str, Enum):
    GLOBAL = "Global"
    TENANT = "Tenant"


class PackageType(str, Enum):
    EXTENSION = "Extension"
    SYMBOLS_ONLY = "SymbolsOnly"


class VisibilityMode(str, Enum):
    """How ``show_my_code`` is applied by the pre-processor."""

    SET = "set"
    ASSERT = "assert"


class AuthMode(str, Enum):
    NAV_USER_PASSWORD = "NavUserPassword"
    WINDOWS = "Windows"
    AAD = "AAD"


class TransportKind(str, Enum):
    SESSION = "session"
    HTTP = "http"


class PublishStage(str, Enum):
    STAGED = "staged"
    SORTED = "sorted"
    PROCESSED = "processed"
    PUBLISHED = "published"
    SYNCED = "synced"
    INSTALLED = "installed"
    UPGRADED = "upgraded"
    DONE = "done"


class AppReference(BaseModel):
    """Reference to another app (internals-visible-to module)."""

    id: str = Field(..., description="App id (GUID)")
    name: str = Field("", description="App name")
    publisher: str = Field("", description="App publisher")


class AppDependency(BaseModel):
    """Dependency declared in an app manifest."""

    id: Optional[str] = Field(None, description="App id of the dependency")
    name: str = Field(..., description="Dependency name")
    publisher: str = Field(..., description="Dependency publisher")
    min_version: str = Field("0.0.0.0", description="Minimum required version")


class DependencyReplacement(BaseModel):
    """Replacement applied to a dependency by the pre-processor."""

    id: str
    name: str
    publisher: str
    min_version: str


class AppIdentity(BaseModel):
    """Publisher/name/version triple identifying a published app."""

    model_config = ConfigDict(frozen=True)

    publisher: str
    name: str
    version: str
    id: Optional[str] = None

    def __str__(self) -> str:
        return f"{self.publisher}_{self.name}_{self.version}"


class AppManifest(BaseModel):
    """Parsed NavxManifest.xml."""

    identity: AppIdentity
    dependencies: List[AppDependency] = Field(default_factory=list)
    internals_visible_to: List[AppReference] = Field(default_factory=list)
    show_my_code: bool = False


class Package(BaseModel):
    """App package staged in the working area."""

    path: Path = Field(..., description="Staged file path")
    manifest: AppManifest
    package_id: Optional[UUID] = Field(None, description="Package id from the file header")

    @property
    def identity(self) -> AppIdentity:
        return self.manifest.identity

    @property
    def file_name(self) -> str:
        return self.path.name


class DeployedAppRecord(BaseModel):
    """Server-side view of a published app."""

    publisher: str
    name: str
    version: str
    is_installed: bool = False
    extension_data_version: Optional[str] = None

    @property
    def upgrade_pending(self) -> bool:
        """True when the schema applied to the tenant lags behind the app version.

        An app that was never installed has no data version and needs an
        install, not an upgrade.
        """
        if not self.extension_data_version:
            return False
        return version_tuple(self.extension_data_version) != version_tuple(self.version)


class Credential(BaseModel):
    """Username/password pair; the password is only read when building auth headers."""

    username: str
    password: SecretStr


class ServerInstance(BaseModel):
    """Descriptor of a running local server instance."""

    server_instance: str = Field(..., description="Server instance (service) name")
    host: str = Field("localhost", description="Host name or IP of the server")
    auth_mode: AuthMode = AuthMode.NAV_USER_PASSWORD
    dev_port: int = Field(7049, description="Development services port")
    dev_ssl_enabled: bool = Field(False, description="Development services use HTTPS")
    major_version: int = Field(..., description="Server major version")

    @property
    def force_publish(self) -> bool:
        """Servers from version 14 on accept the force flag on publish."""
        return self.major_version >= 14

    @property
    def dev_base_url(self) -> str:
        scheme = "https" if self.dev_ssl_enabled else "http"
        return f"{scheme}://{self.host}:{self.dev_port}/{self.server_instance}"


class PublishOptions(BaseModel):
    """Immutable configuration for one publish call."""

    model_config = ConfigDict(frozen=True)

    skip_verification: bool = False
    sync_mode: Optional[SyncMode] = None
    scope: Optional[PublishScope] = None
    package_type: PackageType = PackageType.EXTENSION
    ignore_if_app_exists: bool = False
    sync: bool = False
    install: bool = False
    upgrade: bool = False
    tenant: str = "default"
    language: Optional[str] = None
    use_dev_endpoint: bool = False
    publisher_aad_tenant_id: Optional[str] = None

    # Pre-processing
    replace_dependencies: Dict[str, DependencyReplacement] = Field(default_factory=dict)
    internals_visible_to: List[AppReference] = Field(default_factory=list)
    show_my_code: Optional[bool] = None
    show_my_code_mode: VisibilityMode = VisibilityMode.SET
    replace_package_id: bool = False

    @field_validator("replace_dependencies")
    @classmethod
    def normalize_dependency_keys(cls, v: Dict[str, DependencyReplacement]) -> Dict[str, DependencyReplacement]:
        return {normalize_app_id(key): value for key, value in v.items()}

    @field_validator("tenant")
    @classmethod
    def validate_tenant(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError("tenant cannot be empty")
        return v.strip()

    @model_validator(mode="after")
    def validate_lifecycle(self) -> "PublishOptions":
        if self.package_type == PackageType.SYMBOLS_ONLY and (self.install or self.upgrade):
            raise ValueError("Symbols-only packages cannot be installed or upgraded")
        return self

    @property
    def needs_preprocessing(self) -> bool:
        return bool(
            self.replace_dependencies
            or self.internals_visible_to
            or self.show_my_code is not None
            or self.replace_package_id
        )


class PublishResult(BaseModel):
    """Confirmation for one successfully published package."""

    app: AppIdentity
    file_name: str
    transport: TransportKind
    stages: List[PublishStage] = Field(default_factory=list)
    skipped_publish: bool = False
    installed: bool = False
    upgraded: bool = False
