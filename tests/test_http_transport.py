import base64
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import httpx
import pytest

from bcdeploy.core.exceptions import AuthExpired, PublishError, PublishRejected
from bcdeploy.core.models import Credential, SyncMode
from bcdeploy.packages.appfile import read_package
from bcdeploy.transport.auth import BearerTokenAuth, CredentialAuth
from bcdeploy.transport.http import (
    DevEndpoint,
    HttpPublishTransport,
    MultipartAppBody,
    build_publish_url,
    schema_update_mode,
)

from conftest import FakeTokenProvider


def _post(package, endpoint, response, sync_mode=None):
    with patch("httpx.Client") as Client:
        client = MagicMock()
        client.post.return_value = response
        Client.return_value.__enter__.return_value = client
        HttpPublishTransport(chunk_size=16).publish(package, endpoint, sync_mode)
    return Client, client


def test_schema_update_modes():
    assert schema_update_mode(None) == "synchronize"
    assert schema_update_mode(SyncMode.ADD) == "synchronize"
    assert schema_update_mode(SyncMode.DEVELOPMENT) == "synchronize"
    assert schema_update_mode(SyncMode.CLEAN) == "recreate"
    assert schema_update_mode(SyncMode.FORCE_SYNC) == "forcesync"


def test_publish_url_with_tenant():
    endpoint = DevEndpoint(base_url="http://bc:7049/BC/", tenant="tenant 2")
    assert build_publish_url(endpoint, SyncMode.FORCE_SYNC) == (
        "http://bc:7049/BC/dev/apps?SchemaUpdateMode=forcesync&tenant=tenant%202"
    )


def test_multipart_body_streams_file(make_app):
    path = make_app("Sales", file_name="Contoso_Sales Extension_1.0.0.0.app")
    body = MultipartAppBody(path, chunk_size=10, boundary="b0undary")

    data = b"".join(body)

    assert len(data) == body.content_length
    assert body.content_type == "multipart/form-data; boundary=b0undary"
    assert data.startswith(b"--b0undary\r\n")
    assert data.endswith(b"\r\n--b0undary--\r\n")
    assert b'name="Contoso_Sales Extension_1.0.0.0.app"' in data
    assert b"filename*=utf-8''Contoso_Sales%20Extension_1.0.0.0.app" in data
    assert path.read_bytes() in data
    # Re-iterable for retried sends
    assert b"".join(body) == data


def test_publish_success(make_app):
    package = read_package(make_app("Sales"))
    auth = CredentialAuth(Credential(username="admin", password="pw"))
    endpoint = DevEndpoint(base_url="http://bc:7049/BC", auth=auth, verify_tls=True)

    Client, client = _post(package, endpoint, httpx.Response(200), SyncMode.CLEAN)

    Client.assert_called_once_with(verify=True, timeout=None)
    args, kwargs = client.post.call_args
    assert args[0] == "http://bc:7049/BC/dev/apps?SchemaUpdateMode=recreate"
    assert kwargs["auth"] is auth
    body = b"".join(kwargs["content"])
    assert kwargs["headers"]["Content-Length"] == str(len(body))
    assert kwargs["headers"]["Content-Type"].startswith("multipart/form-data; boundary=")
    assert package.path.read_bytes() in body


def test_tls_verification_is_per_call(make_app):
    package = read_package(make_app("Sales"))
    insecure = DevEndpoint(base_url="https://bc:7049/BC", verify_tls=False)
    secure = DevEndpoint(base_url="https://bc.example.com/v2.0/t1/production")

    first, _ = _post(package, insecure, httpx.Response(200))
    second, _ = _post(package, secure, httpx.Response(200))

    assert first.call_args.kwargs["verify"] is False
    assert second.call_args.kwargs["verify"] is True


def test_rejection_with_json_message(make_app):
    package = read_package(make_app("Sales"))
    endpoint = DevEndpoint(base_url="http://bc:7049/BC")
    response = httpx.Response(400, json={"Message": "The request for path /dev/apps failed."})

    with pytest.raises(PublishRejected) as exc_info:
        _post(package, endpoint, response)

    assert exc_info.value.status_code == 400
    assert exc_info.value.detail == "The request for path /dev/apps failed."
    assert str(exc_info.value) == "400 Bad Request: The request for path /dev/apps failed."


def test_rejection_with_plain_text(make_app):
    package = read_package(make_app("Sales"))
    endpoint = DevEndpoint(base_url="http://bc:7049/BC")
    response = httpx.Response(500, text="Internal server failure")

    with pytest.raises(PublishRejected) as exc_info:
        _post(package, endpoint, response)

    assert exc_info.value.status_code == 500
    assert exc_info.value.detail == "Internal server failure"
    assert "Internal Server Error" in str(exc_info.value)


def test_json_without_message_falls_back_to_body(make_app):
    package = read_package(make_app("Sales"))
    endpoint = DevEndpoint(base_url="http://bc:7049/BC")
    response = httpx.Response(422, json={"error": "bad"})

    with pytest.raises(PublishRejected) as exc_info:
        _post(package, endpoint, response)

    assert "bad" in exc_info.value.detail


def test_connection_error_is_publish_error(make_app):
    package = read_package(make_app("Sales"))
    endpoint = DevEndpoint(base_url="http://bc:7049/BC")

    with patch("httpx.Client") as Client:
        client = MagicMock()
        client.post.side_effect = httpx.ConnectError("connection refused")
        Client.return_value.__enter__.return_value = client
        with pytest.raises(PublishError) as exc_info:
            HttpPublishTransport().publish(package, endpoint)

    assert exc_info.value.code == "transport_error"


def test_credential_auth_sets_basic_header():
    auth = CredentialAuth(Credential(username="admin", password="P@ss"))
    request = httpx.Request("POST", "http://bc:7049/BC/dev/apps")

    signed = next(auth.auth_flow(request))

    expected = base64.b64encode(b"admin:P@ss").decode("ascii")
    assert signed.headers["Authorization"] == f"Basic {expected}"


def test_credential_password_not_in_repr():
    credential = Credential(username="admin", password="P@ss")
    assert "P@ss" not in repr(credential)


def test_bearer_auth_renews_token():
    provider = FakeTokenProvider(token="abc")
    auth = BearerTokenAuth(provider, context="tenant-1")
    request = httpx.Request("POST", "https://bc.example.com/dev/apps")

    signed = next(auth.auth_flow(request))

    assert signed.headers["Authorization"] == "Bearer abc"
    assert provider.contexts == ["tenant-1"]


def test_bearer_auth_expired_token():
    provider = FakeTokenProvider(expiry=datetime.now(timezone.utc) - timedelta(minutes=1))
    with pytest.raises(AuthExpired):
        BearerTokenAuth(provider).access_token()


def test_bearer_auth_renewal_failure():
    provider = FakeTokenProvider(error=RuntimeError("refresh token revoked"))
    with pytest.raises(AuthExpired) as exc_info:
        BearerTokenAuth(provider).access_token()
    assert "refresh token revoked" in str(exc_info.value)
    assert exc_info.value.code == "auth_expired"


def test_bearer_auth_naive_expiry_is_utc():
    naive_now = datetime.now(timezone.utc).replace(tzinfo=None)

    with pytest.raises(AuthExpired):
        BearerTokenAuth(FakeTokenProvider(expiry=naive_now - timedelta(minutes=1))).access_token()
    assert BearerTokenAuth(FakeTokenProvider(expiry=naive_now + timedelta(hours=1))).access_token() == "token-123"
