import httpx
import pytest

from bcdeploy.core.config import Settings
from bcdeploy.core.exceptions import InvalidScope, UnsupportedTarget
from bcdeploy.core.models import AuthMode, Credential, PublishOptions, PublishScope, ServerInstance, TransportKind
from bcdeploy.core.targets import CloudTenant, LocalServer
from bcdeploy.transport.auth import BearerTokenAuth, CredentialAuth
from bcdeploy.transport.selector import select_transport


@pytest.fixture
def settings():
    return Settings(_env_file=None)


def _server(**kwargs):
    defaults = dict(server_instance="BC", host="bcserver", major_version=24)
    defaults.update(kwargs)
    return ServerInstance(**defaults)


def _credential():
    return Credential(username="admin", password="P@ssw0rd")


def test_cloud_tenant_uses_http(settings, token_provider):
    target = CloudTenant(tenant_id="contoso.onmicrosoft.com", token_provider=token_provider, environment="sandbox")

    choice = select_transport(target, PublishOptions(), settings)

    assert choice.kind == TransportKind.HTTP
    assert choice.endpoint.base_url == "https://api.businesscentral.dynamics.com/v2.0/contoso.onmicrosoft.com/sandbox"
    assert choice.endpoint.verify_tls is True
    assert choice.endpoint.tenant is None
    assert isinstance(choice.endpoint.auth, BearerTokenAuth)


def test_cloud_tenant_base_url_override(settings, token_provider):
    target = CloudTenant(tenant_id="t1", token_provider=token_provider, base_url="https://bc.example.com/")
    choice = select_transport(target, PublishOptions(), settings)
    assert choice.endpoint.base_url == "https://bc.example.com/v2.0/t1/production"


def test_local_server_uses_session(settings, channel):
    target = LocalServer(instance="bcserver", credential=_credential())

    choice = select_transport(target, PublishOptions(), settings, server=_server(), channel=channel)

    assert choice.kind == TransportKind.SESSION
    assert choice.session.instance == "BC"
    assert choice.force_publish is True


def test_force_publish_off_for_old_servers(settings, channel):
    target = LocalServer(instance="bcserver")
    choice = select_transport(target, PublishOptions(), settings, server=_server(major_version=13), channel=channel)
    assert choice.force_publish is False


def test_session_requires_channel(settings):
    target = LocalServer(instance="bcserver")
    with pytest.raises(UnsupportedTarget):
        select_transport(target, PublishOptions(), settings, server=_server())


def test_local_dev_endpoint_with_credential(settings):
    target = LocalServer(instance="bcserver", credential=_credential())
    options = PublishOptions(use_dev_endpoint=True)

    choice = select_transport(target, options, settings, server=_server())

    assert choice.kind == TransportKind.HTTP
    assert choice.endpoint.base_url == "http://bcserver:7049/BC"
    assert isinstance(choice.endpoint.auth, CredentialAuth)
    assert choice.endpoint.tenant is None


def test_local_dev_endpoint_passes_non_default_tenant(settings):
    target = LocalServer(instance="bcserver", credential=_credential())
    options = PublishOptions(use_dev_endpoint=True, tenant="tenant2")
    choice = select_transport(target, options, settings, server=_server())
    assert choice.endpoint.tenant == "tenant2"


def test_local_https_skips_verification_by_default(settings):
    target = LocalServer(instance="bcserver", credential=_credential())
    server = _server(dev_ssl_enabled=True)

    choice = select_transport(target, PublishOptions(use_dev_endpoint=True), settings, server=server)

    assert choice.endpoint.base_url.startswith("https://")
    assert choice.endpoint.verify_tls is False


def test_local_https_verifies_when_configured():
    settings = Settings(_env_file=None, verify_local_tls=True)
    target = LocalServer(instance="bcserver", credential=_credential())
    server = _server(dev_ssl_enabled=True)
    choice = select_transport(target, PublishOptions(use_dev_endpoint=True), settings, server=server)
    assert choice.endpoint.verify_tls is True


def test_nav_user_password_requires_credential(settings):
    target = LocalServer(instance="bcserver")
    with pytest.raises(UnsupportedTarget):
        select_transport(target, PublishOptions(use_dev_endpoint=True), settings, server=_server())


def test_windows_auth_sends_no_header(settings):
    target = LocalServer(instance="bcserver")
    server = _server(auth_mode=AuthMode.WINDOWS)
    choice = select_transport(target, PublishOptions(use_dev_endpoint=True), settings, server=server)
    assert choice.endpoint.auth is None


def test_windows_auth_uses_caller_auth(settings):
    windows_auth = httpx.BasicAuth("CONTOSO\\builder", "secret")
    target = LocalServer(instance="bcserver", auth=windows_auth)
    server = _server(auth_mode=AuthMode.WINDOWS)
    choice = select_transport(target, PublishOptions(use_dev_endpoint=True), settings, server=server)
    assert choice.endpoint.auth is windows_auth


def test_aad_auth_uses_local_token_provider(settings, token_provider):
    target = LocalServer(instance="bcserver", token_provider=token_provider)
    server = _server(auth_mode=AuthMode.AAD)
    choice = select_transport(target, PublishOptions(use_dev_endpoint=True), settings, server=server)
    assert isinstance(choice.endpoint.auth, BearerTokenAuth)
    assert choice.endpoint.auth.provider is token_provider


def test_files_only_host_is_unsupported(settings, channel):
    target = LocalServer(instance="bcserver")
    with pytest.raises(UnsupportedTarget):
        select_transport(target, PublishOptions(), settings, server=None, channel=channel)


def test_files_only_host_falls_back_to_cloud(settings, token_provider):
    fallback = CloudTenant(tenant_id="t1", token_provider=token_provider)
    target = LocalServer(instance="bcserver", cloud_fallback=fallback)

    choice = select_transport(target, PublishOptions(), settings, server=None)

    assert choice.kind == TransportKind.HTTP
    assert choice.endpoint.base_url.endswith("/v2.0/t1/production")


def test_global_scope_over_dev_endpoint_is_invalid(settings):
    target = LocalServer(instance="bcserver", credential=_credential())
    options = PublishOptions(use_dev_endpoint=True, scope=PublishScope.GLOBAL)
    with pytest.raises(InvalidScope):
        select_transport(target, options, settings, server=_server())


def test_global_scope_to_cloud_is_invalid(settings, token_provider):
    target = CloudTenant(tenant_id="t1", token_provider=token_provider)
    with pytest.raises(InvalidScope):
        select_transport(target, PublishOptions(scope=PublishScope.GLOBAL), settings)


def test_global_scope_over_session_is_allowed(settings, channel):
    target = LocalServer(instance="bcserver")
    options = PublishOptions(scope=PublishScope.GLOBAL)
    choice = select_transport(target, options, settings, server=_server(), channel=channel)
    assert choice.kind == TransportKind.SESSION
