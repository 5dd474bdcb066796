"""Unit tests for regmigrate/registry/client.py"""

import base64
import json
from unittest.mock import MagicMock

import pytest
import requests

from regmigrate.errors import Cancelled, NotFound, PermissionDenied, RegistryError, TransportError
from regmigrate.models.plan import RegistryConfig
from regmigrate.registry.client import CATALOG_SUGGESTIONS, RegistryClient, parse_challenge
from regmigrate.registry.manifest import OCI_INDEX, OCI_MANIFEST, compute_digest
from regmigrate.utils.cancel import CancelToken

BEARER_CHALLENGE = 'Bearer realm="https://auth.example.com/token",service="registry.example.com"'


def _response(status_code=200, json_data=None, headers=None, links=None, content=b""):
    response = MagicMock()
    response.status_code = status_code
    response.ok = status_code < 400
    response.headers = headers or {}
    response.links = links or {}
    response.content = content
    if json_data is None:
        response.json.side_effect = ValueError("no json")
        response.text = content.decode('utf-8') if content else "error"
    else:
        response.json.return_value = json_data
        response.text = json.dumps(json_data)
    return response


def _client(registry="registry.example.com", **kwargs):
    """RegistryClient with a mocked session and the ping already done"""
    client = RegistryClient(RegistryConfig(registry=registry, **kwargs))
    client.session = MagicMock()
    client._scheme = 'https'
    return client


class TestParseChallenge:
    """Tests for parse_challenge"""

    def test_bearer(self):
        scheme, params = parse_challenge(BEARER_CHALLENGE)
        assert scheme == 'bearer'
        assert params == {'realm': 'https://auth.example.com/token', 'service': 'registry.example.com'}

    def test_basic(self):
        assert parse_challenge('Basic realm="Registry"') == ('basic', {'realm': 'Registry'})


class TestPing:
    """Tests for scheme selection and authentication"""

    def test_bearer_flow(self):
        client = RegistryClient(RegistryConfig(registry="registry.example.com", username="u", password="p"))
        client.session = MagicMock()
        client.session.get.side_effect = [
            _response(401, headers={'WWW-Authenticate': BEARER_CHALLENGE}),
            _response(200, {'token': 'abc'}),
        ]
        client.session.request.return_value = _response(200, {'tags': ['1.0', '2.0']})

        assert client.list_tags("library/app") == ['1.0', '2.0']

        token_call = client.session.get.call_args_list[1]
        assert token_call.args[0] == 'https://auth.example.com/token'
        assert token_call.kwargs['params'] == {
            'scope': 'repository:library/app:pull', 'service': 'registry.example.com'
        }
        assert token_call.kwargs['auth'] == ('u', 'p')

        method, url = client.session.request.call_args.args
        assert (method, url) == ('GET', 'https://registry.example.com/v2/library/app/tags/list?n=1000')
        assert client.session.request.call_args.kwargs['headers']['Authorization'] == 'Bearer abc'

    def test_token_cached_per_scope(self):
        client = _client()
        client._challenge = parse_challenge(BEARER_CHALLENGE)
        client.session.get.return_value = _response(200, {'access_token': 'abc'})
        client.session.request.return_value = _response(200, {'tags': []})

        client.list_tags("library/app")
        client.list_tags("library/app")
        client.list_tags("library/other")

        assert client.session.get.call_count == 2

    def test_token_refreshed_once_on_401(self):
        client = _client()
        client._challenge = parse_challenge(BEARER_CHALLENGE)
        client.session.get.side_effect = [_response(200, {'token': 'old'}), _response(200, {'token': 'new'})]
        client.session.request.side_effect = [_response(401), _response(200, {'tags': ['1.0']})]

        assert client.list_tags("library/app") == ['1.0']

        second = client.session.request.call_args_list[1]
        assert second.kwargs['headers']['Authorization'] == 'Bearer new'

    def test_basic_challenge(self):
        client = _client(username="u", password="p")
        client._challenge = ('basic', {})
        client.session.request.return_value = _response(200, {'tags': []})

        client.list_tags("app")

        expected = "Basic " + base64.b64encode(b"u:p").decode("ascii")
        assert client.session.request.call_args.kwargs['headers']['Authorization'] == expected

    def test_insecure_falls_back_to_http(self):
        client = RegistryClient(RegistryConfig(registry="registry.local:5000", insecure=True))
        client.session = MagicMock()
        client.session.get.side_effect = [
            requests.exceptions.ConnectionError("refused"),
            _response(200, {}),
        ]

        assert client.base_url == "http://registry.local:5000"

    def test_secure_ping_failure(self):
        client = RegistryClient(RegistryConfig(registry="registry.example.com"))
        client.session = MagicMock()
        client.session.get.side_effect = requests.exceptions.ConnectionError("refused")

        with pytest.raises(TransportError):
            client.list_tags("app")

        assert client.session.get.call_count == 1

    def test_docker_hub_api_host(self):
        client = RegistryClient(RegistryConfig(registry="docker.io"))
        assert client.registry == "index.docker.io"
        assert client.api_host == "registry-1.docker.io"


class TestListing:
    """Tests for catalog and tag listing"""

    def test_catalog_permission_denied(self):
        client = _client()
        client.session.request.return_value = _response(401)

        with pytest.raises(PermissionDenied) as exc_info:
            client.list_repositories()

        assert exc_info.value.suggestions == CATALOG_SUGGESTIONS
        assert exc_info.value.status_code == 401

    def test_catalog_pagination(self):
        client = _client()
        client.session.request.side_effect = [
            _response(200, {'repositories': ['a', 'b']},
                      links={'next': {'url': '/v2/_catalog?last=b&n=1000'}}),
            _response(200, {'repositories': ['c']}),
        ]

        assert client.list_repositories() == ['a', 'b', 'c']

        second_url = client.session.request.call_args_list[1].args[1]
        assert second_url == 'https://registry.example.com/v2/_catalog?last=b&n=1000'

    def test_missing_repository(self):
        client = _client()
        client.session.request.return_value = _response(404, {'errors': [{'code': 'NAME_UNKNOWN', 'message': 'unknown'}]})

        with pytest.raises(NotFound, match="repository not found: library/app"):
            client.list_tags("library/app")

    def test_server_error(self):
        client = _client()
        client.session.request.return_value = _response(500)

        with pytest.raises(RegistryError) as exc_info:
            client.list_tags("library/app")

        assert exc_info.value.status_code == 500

    def test_cancelled_before_request(self):
        token = CancelToken()
        client = RegistryClient(RegistryConfig(registry="registry.example.com"), cancel_token=token)
        client.session = MagicMock()
        client._scheme = 'https'
        token.cancel()

        with pytest.raises(Cancelled):
            client.list_tags("app")

        client.session.request.assert_not_called()


class TestManifests:
    """Tests for manifest fetching"""

    def test_get_manifest(self):
        raw = json.dumps({'schemaVersion': 2, 'mediaType': OCI_MANIFEST, 'layers': []}).encode('utf-8')
        client = _client()
        client.session.request.return_value = _response(
            200, headers={'Content-Type': f"{OCI_MANIFEST}; charset=utf-8"}, content=raw
        )

        assert client.get_manifest("app", "1.0") == (raw, OCI_MANIFEST, compute_digest(raw))

    def test_media_type_sniffed_from_body(self):
        raw = json.dumps({'schemaVersion': 2, 'manifests': []}).encode('utf-8')
        client = _client()
        client.session.request.return_value = _response(
            200, headers={'Content-Type': 'application/json'}, content=raw
        )

        descriptor = client.get_descriptor("app", "1.0")

        assert descriptor.media_type == OCI_INDEX
        assert descriptor.is_index

    def test_digest_mismatch(self):
        client = _client()
        client.session.request.return_value = _response(
            200, headers={'Content-Type': OCI_MANIFEST}, content=b'{"schemaVersion":2}'
        )

        with pytest.raises(RegistryError):
            client.get_manifest("app", "sha256:" + "0" * 64)

    def test_manifest_unknown(self):
        client = _client()
        client.session.request.return_value = _response(404)

        with pytest.raises(NotFound):
            client.get_manifest("app", "missing")


class TestUpload:
    """Tests for the blob upload sequence"""

    def test_upload_blob(self):
        digest = compute_digest(b"data")
        client = _client()
        client.session.request.side_effect = [
            _response(202, headers={'Location': '/v2/app/blobs/uploads/one'}),
            _response(202, headers={'Location': '/v2/app/blobs/uploads/two?state=x'}),
            _response(201),
        ]

        client.upload_blob("app", digest, iter([b"da", b"ta"]))

        calls = client.session.request.call_args_list
        assert [call.args[0] for call in calls] == ['POST', 'PATCH', 'PUT']
        assert calls[1].args[1] == 'https://registry.example.com/v2/app/blobs/uploads/one'
        assert calls[2].args[1].startswith('https://registry.example.com/v2/app/blobs/uploads/two?state=x&digest=sha256')

    def test_upload_without_location(self):
        client = _client()
        client.session.request.return_value = _response(202)

        with pytest.raises(RegistryError):
            client.upload_blob("app", compute_digest(b"data"), iter([b"data"]))
