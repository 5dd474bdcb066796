"""Registry V2 client for listing, reading and writing images."""

import base64
import json
import logging
import re
import threading
from contextlib import contextmanager
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple
from urllib.parse import urlencode, urljoin

import requests

from ..errors import NotFound, PermissionDenied, RegistryError
from ..models.plan import RegistryConfig
from ..models.reference import DEFAULT_REGISTRY, normalize_registry
from ..utils.cancel import CancelToken, check_cancelled
from ..utils.progress import Update
from .manifest import (
    MANIFEST_ACCEPT, OCI_INDEX, OCI_MANIFEST, RemoteDescriptor, base_media_type,
    compute_digest, is_image, is_index
)
from .transport import build_session, proxies_for, translate_request_error


logger = logging.getLogger(__name__)

DOCKER_HUB_API_HOST = "registry-1.docker.io"
CHUNK_SIZE = 1024 * 1024
PAGE_SIZE = 1000

_CHALLENGE_PARAM_RE = re.compile(r'(\w+)="([^"]*)"')

CATALOG_SUGGESTIONS = [
    "Check that the username and password are correct",
    "Harbor disables the /v2/_catalog API by default; list-tags and migrate still work",
    "Name the repositories to migrate explicitly in the migration plan",
]


def parse_challenge(header: str) -> Tuple[str, Dict[str, str]]:
    """Parse a WWW-Authenticate header into (scheme, params)."""
    scheme, _, rest = header.strip().partition(' ')
    return scheme.lower(), dict(_CHALLENGE_PARAM_RE.findall(rest))


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text.strip()[:300]
    errors = body.get('errors') if isinstance(body, dict) else None
    if errors:
        return "; ".join(f"{e.get('code', '')}: {e.get('message', '')}" for e in errors)
    return response.text.strip()[:300]


class _ProgressTracker:
    """Cumulative byte counter feeding an optional progress sink."""

    def __init__(self, sink, total: int):
        self.sink = sink
        self.total = total
        self.complete = 0
        self._lock = threading.Lock()

    def add(self, count: int):
        with self._lock:
            self.complete += count
            update = Update(self.total, self.complete)
        if self.sink is not None:
            self.sink.send(update)


class RegistryClient:
    """Client for one registry host."""

    def __init__(self, config: RegistryConfig, cancel_token: Optional[CancelToken] = None,
                 timeout: float = 60):
        self.config = config
        self.registry = normalize_registry(config.registry)
        self.api_host = DOCKER_HUB_API_HOST if self.registry == DEFAULT_REGISTRY else self.registry
        self.cancel_token = cancel_token
        self.timeout = timeout
        self.session = build_session(config.insecure, config.proxy)

        self._scheme = None
        self._challenge = None
        self._tokens = {}
        self._lock = threading.Lock()

    @property
    def base_url(self) -> str:
        if self._scheme is None:
            self._ping()
        return f"{self._scheme}://{self.api_host}"

    def _proxies(self, url: str) -> Dict[str, str]:
        return proxies_for(url, self.config.proxy, self.config.no_proxy)

    def _ping(self):
        """Probe /v2/ to pick the scheme and learn the auth challenge."""
        with self._lock:
            if self._scheme is not None:
                return
            schemes = ['https', 'http'] if self.config.insecure else ['https']
            last_error = None
            for scheme in schemes:
                check_cancelled(self.cancel_token)
                url = f"{scheme}://{self.api_host}/v2/"
                try:
                    response = self.session.get(url, proxies=self._proxies(url), timeout=self.timeout)
                except requests.exceptions.RequestException as e:
                    logger.debug(f"Ping {url} failed: {e}")
                    last_error = e
                    continue

                if response.status_code == 401 and response.headers.get('WWW-Authenticate'):
                    self._challenge = parse_challenge(response.headers['WWW-Authenticate'])
                self._scheme = scheme
                logger.debug(f"Using {scheme} for {self.registry}")
                return

            raise translate_request_error(last_error)

    def _basic_auth(self) -> Optional[Tuple[str, str]]:
        if self.config.username:
            return (self.config.username, self.config.password or "")
        return None

    def _fetch_token(self, scope: str) -> str:
        _, params = self._challenge
        realm = params.get('realm')
        if not realm:
            raise RegistryError(f"auth challenge from {self.registry} has no realm")

        query = {'scope': scope}
        if params.get('service'):
            query['service'] = params['service']

        try:
            response = self.session.get(
                realm, params=query, auth=self._basic_auth(),
                proxies=self._proxies(realm), timeout=self.timeout
            )
        except requests.exceptions.RequestException as e:
            raise translate_request_error(e)

        if response.status_code in (401, 403):
            raise PermissionDenied(
                f"token request to {realm} rejected ({response.status_code})",
                status_code=response.status_code
            )
        if not response.ok:
            raise RegistryError(
                f"token request to {realm} failed ({response.status_code}): {_error_message(response)}",
                status_code=response.status_code
            )

        data = response.json()
        token = data.get('token') or data.get('access_token')
        if not token:
            raise RegistryError(f"token response from {realm} has no token")
        return token

    def _authorization(self, scope: str, refresh: bool = False) -> Optional[str]:
        if self._challenge is None:
            return None

        scheme, _ = self._challenge
        if scheme == 'basic':
            auth = self._basic_auth()
            if auth is None:
                return None
            credentials = base64.b64encode(":".join(auth).encode("utf-8")).decode("ascii")
            return f"Basic {credentials}"

        if scheme == 'bearer':
            with self._lock:
                token = None if refresh else self._tokens.get(scope)
            if token is None:
                token = self._fetch_token(scope)
                with self._lock:
                    self._tokens[scope] = token
            return f"Bearer {token}"

        return None

    def _request(self, method: str, url: str, scope: str, headers: Optional[Dict[str, str]] = None,
                 replayable: bool = True, **kwargs) -> requests.Response:
        """Send an authenticated request; a 401 refreshes the token once."""
        check_cancelled(self.cancel_token)
        if not url.startswith(('http://', 'https://')):
            url = self.base_url + url

        refresh = False
        while True:
            request_headers = dict(headers or {})
            authorization = self._authorization(scope, refresh=refresh)
            if authorization:
                request_headers['Authorization'] = authorization

            try:
                response = self.session.request(
                    method, url, headers=request_headers, proxies=self._proxies(url),
                    timeout=self.timeout, **kwargs
                )
            except requests.exceptions.RequestException as e:
                raise translate_request_error(e)

            if (response.status_code == 401 and replayable and not refresh
                    and self._challenge is not None and self._challenge[0] == 'bearer'):
                response.close()
                refresh = True
                continue
            return response

    def _check(self, response: requests.Response, action: str) -> requests.Response:
        if response.ok:
            return response

        message = f"{action} failed ({response.status_code}): {_error_message(response)}"
        response.close()
        if response.status_code in (401, 403):
            raise PermissionDenied(message, status_code=response.status_code)
        if response.status_code == 404:
            raise NotFound(message, status_code=response.status_code)
        raise RegistryError(message, status_code=response.status_code)

    def _pull_scope(self, repository: str) -> str:
        return f"repository:{repository}:pull"

    def _push_scope(self, repository: str) -> str:
        return f"repository:{repository}:pull,push"

    def _paginate(self, path: str, key: str, scope: str, action: str) -> List[str]:
        items = []
        url = f"{path}?{urlencode({'n': PAGE_SIZE})}"
        while url:
            response = self._check(self._request('GET', url, scope), action)
            items.extend(response.json().get(key) or [])
            next_url = response.links.get('next', {}).get('url')
            url = urljoin(self.base_url + '/', next_url) if next_url else None
        return items

    def list_repositories(self) -> List[str]:
        """List repositories through the catalog API."""
        try:
            return self._paginate('/v2/_catalog', 'repositories', 'registry:catalog:*',
                                  f"list catalog of {self.registry}")
        except PermissionDenied as e:
            raise PermissionDenied(
                f"{self.registry} rejected the catalog request: {e}",
                status_code=e.status_code,
                suggestions=CATALOG_SUGGESTIONS
            )

    def list_tags(self, repository: str) -> List[str]:
        """List tags of a repository."""
        try:
            return self._paginate(f"/v2/{repository}/tags/list", 'tags',
                                  self._pull_scope(repository), f"list tags of {repository}")
        except NotFound as e:
            raise NotFound(f"repository not found: {repository}", status_code=e.status_code)

    def get_manifest(self, repository: str, reference: str) -> Tuple[bytes, str, str]:
        """Fetch a manifest by tag or digest: (raw bytes, media type, digest)."""
        response = self._request(
            'GET', f"/v2/{repository}/manifests/{reference}", self._pull_scope(repository),
            headers={'Accept': MANIFEST_ACCEPT}
        )
        if response.status_code == 404:
            response.close()
            raise NotFound(f"manifest unknown: {repository}:{reference}", status_code=404)
        self._check(response, f"fetch manifest {repository}:{reference}")

        raw = response.content
        digest = compute_digest(raw)
        if reference.startswith('sha256:') and digest != reference:
            raise RegistryError(f"manifest {repository}@{reference} has digest {digest}")

        media_type = base_media_type(response.headers.get('Content-Type'))
        if not (is_index(media_type) or is_image(media_type)):
            media_type = self._sniff_media_type(raw, media_type)
        return raw, media_type, digest

    @staticmethod
    def _sniff_media_type(raw: bytes, fallback: str) -> str:
        try:
            data = json.loads(raw)
        except ValueError:
            return fallback
        if data.get('mediaType'):
            return data['mediaType']
        if 'manifests' in data:
            return OCI_INDEX
        if 'layers' in data:
            return OCI_MANIFEST
        return fallback

    def get_descriptor(self, repository: str, reference: str) -> RemoteDescriptor:
        """Resolve a tag or digest to a descriptor with its raw manifest."""
        raw, media_type, digest = self.get_manifest(repository, reference)
        if not (is_index(media_type) or is_image(media_type)):
            raise RegistryError(f"unsupported manifest media type {media_type!r} for {repository}:{reference}")
        return RemoteDescriptor(self, repository, raw, media_type, digest)

    def manifest_exists(self, repository: str, reference: str) -> bool:
        response = self._request(
            'HEAD', f"/v2/{repository}/manifests/{reference}", self._push_scope(repository),
            headers={'Accept': MANIFEST_ACCEPT}
        )
        if response.status_code == 404:
            return False
        self._check(response, f"check manifest {repository}:{reference}")
        return True

    def put_manifest(self, repository: str, reference: str, raw: bytes, media_type: str):
        response = self._request(
            'PUT', f"/v2/{repository}/manifests/{reference}", self._push_scope(repository),
            headers={'Content-Type': media_type}, data=raw
        )
        self._check(response, f"push manifest {repository}:{reference}")
        logger.debug(f"Pushed manifest {self.registry}/{repository}:{reference}")

    def blob_exists(self, repository: str, digest: str) -> bool:
        response = self._request('HEAD', f"/v2/{repository}/blobs/{digest}", self._push_scope(repository))
        if response.status_code == 404:
            return False
        self._check(response, f"check blob {repository}@{digest}")
        return True

    @contextmanager
    def open_blob(self, repository: str, digest: str) -> Iterator[requests.Response]:
        """Stream a blob; the response is closed on exit."""
        response = self._request(
            'GET', f"/v2/{repository}/blobs/{digest}", self._pull_scope(repository), stream=True
        )
        self._check(response, f"fetch blob {repository}@{digest}")
        try:
            yield response
        finally:
            response.close()

    def get_blob_bytes(self, repository: str, digest: str) -> bytes:
        with self.open_blob(repository, digest) as response:
            data = response.content
        if digest.startswith('sha256:') and compute_digest(data) != digest:
            raise RegistryError(f"blob {repository}@{digest} failed digest check")
        return data

    def upload_blob(self, repository: str, digest: str, chunks: Iterable[bytes]):
        """Upload a blob: open a session, stream one chunked PATCH, then commit."""
        scope = self._push_scope(repository)
        response = self._check(
            self._request('POST', f"/v2/{repository}/blobs/uploads/", scope),
            f"start upload {repository}@{digest}"
        )
        location = self._upload_location(response, repository)

        response = self._check(
            self._request('PATCH', location, scope, replayable=False,
                          headers={'Content-Type': 'application/octet-stream'}, data=chunks),
            f"upload blob {repository}@{digest}"
        )
        location = self._upload_location(response, repository, default=location)

        separator = '&' if '?' in location else '?'
        commit_url = f"{location}{separator}{urlencode({'digest': digest})}"
        self._check(
            self._request('PUT', commit_url, scope, headers={'Content-Length': '0'}),
            f"commit blob {repository}@{digest}"
        )

    def _upload_location(self, response: requests.Response, repository: str,
                         default: Optional[str] = None) -> str:
        location = response.headers.get('Location') or default
        if not location:
            raise RegistryError(f"upload for {repository} returned no Location header")
        return urljoin(self.base_url + '/', location)

    def _copy_blob(self, source, repository: str, blob, tracker: _ProgressTracker):
        """Copy one blob from source image's repository unless already present."""
        if self.blob_exists(repository, blob.digest):
            tracker.add(blob.size)
            return

        cancel_token = self.cancel_token

        with source.client.open_blob(source.repository, blob.digest) as response:
            def chunks():
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    check_cancelled(cancel_token)
                    tracker.add(len(chunk))
                    yield chunk

            self.upload_blob(repository, blob.digest, chunks())
        logger.debug(f"Copied blob {blob.digest} ({blob.size} bytes) to {repository}")

    def _image_total(self, image) -> int:
        return sum(blob.size for blob in image.blobs()) + image.size

    def _push_image(self, repository: str, reference: str, image, tracker: _ProgressTracker):
        for blob in image.blobs():
            self._copy_blob(image, repository, blob, tracker)
        self.put_manifest(repository, reference, image.raw_manifest, image.media_type)
        tracker.add(image.size)

    def write_image(self, repository: str, tag: str, image, progress=None):
        """Copy an image's blobs and push its manifest under tag."""
        tracker = _ProgressTracker(progress, self._image_total(image))
        self._push_image(repository, tag, image, tracker)

    def _resolve_children(self, index) -> List[Tuple[Any, Any]]:
        """Fetch every child of an index before anything is pushed."""
        children = []
        for descriptor in index.manifests:
            if is_index(descriptor.media_type):
                child = index.image_index(descriptor.digest)
                children.append((child, self._resolve_children(child)))
            else:
                children.append((index.image(descriptor.digest), None))
        return children

    def _tree_total(self, index, children) -> int:
        total = index.size
        for child, grandchildren in children:
            if grandchildren is None:
                total += self._image_total(child)
            else:
                total += self._tree_total(child, grandchildren)
        return total

    def _push_index(self, repository: str, reference: str, index, children,
                    tracker: _ProgressTracker):
        for child, grandchildren in children:
            if self.manifest_exists(repository, child.digest):
                if grandchildren is None:
                    tracker.add(self._image_total(child))
                else:
                    tracker.add(self._tree_total(child, grandchildren))
                continue
            if grandchildren is None:
                self._push_image(repository, child.digest, child, tracker)
            else:
                self._push_index(repository, child.digest, child, grandchildren, tracker)

        self.put_manifest(repository, reference, index.raw_manifest, index.media_type)
        tracker.add(index.size)

    def write_index(self, repository: str, tag: str, index, progress=None):
        """Copy every child manifest and blob, then push the index under tag."""
        children = self._resolve_children(index)
        tracker = _ProgressTracker(progress, self._tree_total(index, children))
        self._push_index(repository, tag, index, children, tracker)
