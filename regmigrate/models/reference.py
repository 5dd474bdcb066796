"""Image reference parsing."""

import re
from dataclasses import dataclass
from typing import Optional, Tuple

from ..errors import ConfigError


DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_TAG = "latest"

_DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io", "registry-1.docker.io")

_COMPONENT = r'[a-z0-9]+(?:(?:[._]|__|[-]+)[a-z0-9]+)*'
_REPOSITORY_RE = re.compile(r'^' + _COMPONENT + r'(?:/' + _COMPONENT + r')*$')
_TAG_RE = re.compile(r'^[\w][\w.-]{0,127}$')
_DIGEST_RE = re.compile(r'^[A-Za-z][A-Za-z0-9]*(?:[-_+.][A-Za-z][A-Za-z0-9]*)*:[0-9a-fA-F]{32,}$')


@dataclass(frozen=True)
class ImageReference:
    """A registry/repository plus a tag or digest."""
    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def identifier(self) -> str:
        """Digest when pinned, otherwise the tag."""
        return self.digest or self.tag or DEFAULT_TAG

    @property
    def context(self) -> str:
        return f"{self.registry}/{self.repository}"

    def __str__(self) -> str:
        if self.digest:
            return f"{self.context}@{self.digest}"
        return f"{self.context}:{self.identifier}"


def normalize_registry(host: str) -> str:
    """Strip scheme and trailing slash; fold Docker Hub aliases."""
    host = host.strip()
    for prefix in ("http://", "https://"):
        if host.lower().startswith(prefix):
            host = host[len(prefix):]
    host = host.rstrip('/')
    if host in _DOCKER_HUB_ALIASES:
        return DEFAULT_REGISTRY
    return host


def looks_like_registry(component: str) -> bool:
    return '.' in component or ':' in component or component == 'localhost'


def is_digest(reference: str) -> bool:
    """True when reference is a content digest rather than a tag."""
    return bool(_DIGEST_RE.match(reference))


def _split_registry(name: str) -> Tuple[str, str]:
    parts = name.split('/', 1)
    if len(parts) == 2 and looks_like_registry(parts[0]):
        registry, repository = normalize_registry(parts[0]), parts[1]
    else:
        registry, repository = DEFAULT_REGISTRY, name

    if registry == DEFAULT_REGISTRY and '/' not in repository:
        repository = f"library/{repository}"
    return registry, repository


def parse_reference(value: str, default_tag: str = DEFAULT_TAG) -> ImageReference:
    """Parse ``[registry/]repository[:tag][@digest]``."""
    original = value
    value = value.strip()
    if not value:
        raise ConfigError("empty image reference")

    digest = None
    if '@' in value:
        value, digest = value.split('@', 1)
        if not _DIGEST_RE.match(digest):
            raise ConfigError(f"invalid digest in reference '{original}'")

    tag = None
    last_slash = value.rfind('/')
    last_colon = value.rfind(':')
    if last_colon > last_slash:
        value, tag = value[:last_colon], value[last_colon + 1:]
        if not _TAG_RE.match(tag):
            raise ConfigError(f"invalid tag in reference '{original}'")

    registry, repository = _split_registry(value)
    if not repository or not _REPOSITORY_RE.match(repository):
        raise ConfigError(f"invalid repository in reference '{original}'")

    if tag is None and digest is None:
        tag = default_tag
    return ImageReference(registry=registry, repository=repository, tag=tag, digest=digest)


def parse_repository(value: str) -> Tuple[str, str]:
    """Split a repository name into (registry, repository).

    A trailing tag or digest is accepted and ignored.
    """
    ref = parse_reference(value)
    return ref.registry, ref.repository
