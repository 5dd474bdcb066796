"""Harbor project provisioning."""

import logging
import threading
from typing import Optional

import requests

from ..errors import PermissionDenied, RegistryError, SchemeMismatch
from ..models.plan import RegistryConfig
from ..registry.transport import build_session, proxies_for, translate_request_error


logger = logging.getLogger(__name__)


class NamespaceCheckedSet:
    """Namespaces already ensured during this run."""

    def __init__(self):
        self._checked = {}
        self._lock = threading.RLock()

    @property
    def lock(self) -> threading.RLock:
        return self._lock

    def is_checked(self, namespace: str) -> bool:
        with self._lock:
            return self._checked.get(namespace, False)

    def mark(self, namespace: str):
        with self._lock:
            self._checked[namespace] = True

    def __len__(self) -> int:
        with self._lock:
            return len(self._checked)


class HarborClient:
    """Minimal Harbor v2.0 API client for projects."""

    def __init__(self, config: RegistryConfig, timeout: float = 10):
        base_url = config.registry
        if not base_url.startswith(('http://', 'https://')):
            base_url = 'https://' + base_url
        self.base_url = base_url.rstrip('/')
        self.config = config
        self.timeout = timeout
        self.session = build_session(config.insecure, config.proxy)

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        auth = (self.config.username, self.config.password or "") if self.config.username else None
        try:
            return self.session.request(
                method, url, auth=auth, timeout=self.timeout,
                proxies=proxies_for(url, self.config.proxy, self.config.no_proxy), **kwargs
            )
        except requests.exceptions.RequestException as e:
            raise translate_request_error(e)

    def downgrade_to_http(self) -> bool:
        """Switch the base URL from https to http; False if already plaintext."""
        if not self.base_url.startswith('https://'):
            return False
        new_url = 'http://' + self.base_url[len('https://'):]
        logger.info(f"Harbor answered over plain HTTP, retrying with {new_url} (was {self.base_url})")
        self.base_url = new_url
        return True

    def project_exists(self, project: str) -> bool:
        response = self._request('GET', '/api/v2.0/projects', params={'name': project})

        if response.status_code == 401:
            raise PermissionDenied(
                "Harbor authentication failed (401), check the destination username and password",
                status_code=401
            )
        if response.status_code != 200:
            raise RegistryError(
                f"Harbor API error {response.status_code}: {response.text[:300]}",
                status_code=response.status_code
            )

        try:
            projects = response.json() or []
        except ValueError as e:
            raise RegistryError(f"Failed to parse Harbor project list: {e}")

        return any(p.get('name') == project for p in projects)

    def create_project(self, project: str):
        payload = {
            'project_name': project,
            'metadata': {'public': 'false'}
        }
        response = self._request('POST', '/api/v2.0/projects', json=payload)

        if response.status_code == 201:
            return
        if response.status_code == 409:
            logger.debug(f"Harbor project '{project}' already exists")
            return
        raise RegistryError(
            f"Failed to create Harbor project '{project}' ({response.status_code}): {response.text[:300]}",
            status_code=response.status_code
        )


class NamespaceProvisioner:
    """Ensures destination projects exist, at most once per project per run."""

    def __init__(self, client: HarborClient, checked: Optional[NamespaceCheckedSet] = None):
        self.client = client
        self.checked = checked if checked is not None else NamespaceCheckedSet()

    def _exists(self, namespace: str) -> bool:
        try:
            return self.client.project_exists(namespace)
        except SchemeMismatch:
            if not self.client.downgrade_to_http():
                raise
            return self.client.project_exists(namespace)

    def ensure(self, namespace: str):
        """Create namespace unless it exists; cached for the rest of the run.

        The namespace is recorded as checked even when the check fails.
        """
        with self.checked.lock:
            if self.checked.is_checked(namespace):
                return

            try:
                if self._exists(namespace):
                    logger.debug(f"Harbor project '{namespace}' exists")
                    return
                logger.info(f"Harbor project '{namespace}' does not exist, creating it")
                self.client.create_project(namespace)
            finally:
                self.checked.mark(namespace)


def namespace_of(repository: str) -> Optional[str]:
    """First path component of a repository, None for single-component names."""
    parts = repository.split('/')
    if len(parts) > 1 and parts[0]:
        return parts[0]
    return None
