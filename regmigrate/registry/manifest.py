"""Manifest, index and platform models for registry content."""

import hashlib
import json
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional


OCI_INDEX = "application/vnd.oci.image.index.v1+json"
DOCKER_MANIFEST_LIST = "application/vnd.docker.distribution.manifest.list.v2+json"
OCI_MANIFEST = "application/vnd.oci.image.manifest.v1+json"
DOCKER_MANIFEST = "application/vnd.docker.distribution.manifest.v2+json"

INDEX_MEDIA_TYPES = (OCI_INDEX, DOCKER_MANIFEST_LIST)
IMAGE_MEDIA_TYPES = (OCI_MANIFEST, DOCKER_MANIFEST)
MANIFEST_ACCEPT = ", ".join(INDEX_MEDIA_TYPES + IMAGE_MEDIA_TYPES)


def base_media_type(media_type: Optional[str]) -> str:
    """Drop content-type parameters such as charset."""
    return (media_type or "").split(';', 1)[0].strip()


def is_index(media_type: Optional[str]) -> bool:
    return base_media_type(media_type) in INDEX_MEDIA_TYPES


def is_image(media_type: Optional[str]) -> bool:
    return base_media_type(media_type) in IMAGE_MEDIA_TYPES


def compute_digest(data: bytes) -> str:
    return "sha256:" + hashlib.sha256(data).hexdigest()


def parse_created(value: Optional[str]) -> Optional[datetime]:
    """Parse an RFC 3339 timestamp from an image config; None when absent or zero."""
    if not value:
        return None
    text = value.strip()
    if text.endswith('Z'):
        text = text[:-1] + '+00:00'
    # fromisoformat() rejects more than six fractional digits
    if '.' in text:
        head, _, rest = text.partition('.')
        digits = ''
        while rest and rest[0].isdigit():
            digits, rest = digits + rest[0], rest[1:]
        text = f"{head}.{digits[:6].ljust(6, '0')}{rest}"
    try:
        created = datetime.fromisoformat(text)
    except ValueError:
        return None
    if created.year <= 1:
        return None
    if created.tzinfo is None:
        created = created.replace(tzinfo=timezone.utc)
    return created


@dataclass(frozen=True)
class Platform:
    """Operating system, architecture and optional variant."""
    os: str = ""
    architecture: str = ""
    variant: str = ""

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> Optional['Platform']:
        if not data:
            return None
        return cls(
            os=data.get('os', ''),
            architecture=data.get('architecture', ''),
            variant=data.get('variant', '')
        )

    @property
    def is_known(self) -> bool:
        """False for platform entries that cannot be selected by a filter."""
        return self.architecture not in ('', 'unknown')

    def matches(self, tokens: Iterable[str]) -> bool:
        """Loose substring match against requested architecture tokens.

        A token matches when it appears in the architecture alone or in
        ``os/architecture``, so ``arm64`` selects ``linux/arm64/v8`` and
        ``64`` selects both ``amd64`` and ``arm64``.
        """
        os_arch = f"{self.os}/{self.architecture}"
        return any(token in self.architecture or token in os_arch for token in tokens)

    def __str__(self) -> str:
        value = f"{self.os}/{self.architecture}"
        if self.variant:
            value += f"/{self.variant}"
        return value


@dataclass(frozen=True)
class Descriptor:
    """Reference to a manifest or blob by digest."""
    media_type: str
    digest: str
    size: int
    platform: Optional[Platform] = None
    raw: Dict[str, Any] = field(default_factory=dict, compare=False, hash=False, repr=False)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Descriptor':
        return cls(
            media_type=data.get('mediaType', ''),
            digest=data.get('digest', ''),
            size=int(data.get('size', 0) or 0),
            platform=Platform.from_dict(data.get('platform')),
            raw=dict(data)
        )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize with every field of the source document preserved."""
        if self.raw:
            return dict(self.raw)
        data = {'mediaType': self.media_type, 'size': self.size, 'digest': self.digest}
        if self.platform:
            platform = {'architecture': self.platform.architecture, 'os': self.platform.os}
            if self.platform.variant:
                platform['variant'] = self.platform.variant
            data['platform'] = platform
        return data


class RemoteManifest:
    """Manifest bytes fetched from a repository."""

    def __init__(self, client, repository: str, raw: bytes, media_type: str,
                 digest: Optional[str] = None):
        self.client = client
        self.repository = repository
        self.raw_manifest = raw
        self.media_type = base_media_type(media_type)
        self.digest = digest or compute_digest(raw)
        self._parsed = None

    @property
    def size(self) -> int:
        return len(self.raw_manifest)

    @property
    def manifest(self) -> Dict[str, Any]:
        if self._parsed is None:
            self._parsed = json.loads(self.raw_manifest)
        return self._parsed

    def descriptor(self) -> Descriptor:
        return Descriptor(media_type=self.media_type, digest=self.digest, size=self.size)


class RemoteImage(RemoteManifest):
    """A single-platform image manifest."""

    def __init__(self, client, repository: str, raw: bytes, media_type: str,
                 digest: Optional[str] = None):
        super().__init__(client, repository, raw, media_type, digest)
        self._config_file = None

    @property
    def config(self) -> Descriptor:
        return Descriptor.from_dict(self.manifest.get('config') or {})

    @property
    def layers(self) -> List[Descriptor]:
        return [Descriptor.from_dict(layer) for layer in self.manifest.get('layers') or []]

    def blobs(self) -> List[Descriptor]:
        """Config and layers, each digest once, config first."""
        seen = set()
        result = []
        for blob in [self.config] + self.layers:
            if blob.digest and blob.digest not in seen:
                seen.add(blob.digest)
                result.append(blob)
        return result

    @property
    def layer_size(self) -> int:
        return sum(layer.size for layer in self.layers)

    def config_file(self) -> Dict[str, Any]:
        """Fetch and cache the image configuration blob."""
        if self._config_file is None:
            self._config_file = json.loads(self.client.get_blob_bytes(self.repository, self.config.digest))
        return self._config_file

    @property
    def platform(self) -> Platform:
        config = self.config_file()
        return Platform(
            os=config.get('os', ''),
            architecture=config.get('architecture', ''),
            variant=config.get('variant', '')
        )

    @property
    def created(self) -> Optional[datetime]:
        return parse_created(self.config_file().get('created'))


class RemoteIndex(RemoteManifest):
    """A multi-platform image index (manifest list)."""

    @property
    def schema_version(self) -> int:
        return self.manifest.get('schemaVersion', 2)

    @property
    def annotations(self) -> Dict[str, str]:
        return self.manifest.get('annotations') or {}

    @property
    def manifests(self) -> List[Descriptor]:
        return [Descriptor.from_dict(entry) for entry in self.manifest.get('manifests') or []]

    def image(self, digest: str) -> RemoteImage:
        """Resolve a child descriptor to an image."""
        return self.client.get_descriptor(self.repository, digest).image()

    def image_index(self, digest: str) -> 'RemoteIndex':
        """Resolve a child descriptor to a nested index."""
        return self.client.get_descriptor(self.repository, digest).image_index()


class FilteredIndex:
    """Read-through view of an index keeping only selected descriptors.

    Shares media type, schema version and annotations with the source
    index. Digest and size come from this object's own serialization, so the
    pushed manifest is self-consistent.
    """

    def __init__(self, source: RemoteIndex, kept: List[Descriptor]):
        self.source = source
        self.kept = list(kept)
        self._raw = None

    @property
    def client(self):
        return self.source.client

    @property
    def repository(self) -> str:
        return self.source.repository

    @property
    def media_type(self) -> str:
        return self.source.media_type

    @property
    def manifests(self) -> List[Descriptor]:
        return list(self.kept)

    @property
    def manifest(self) -> Dict[str, Any]:
        original = self.source.manifest
        data = {'schemaVersion': original.get('schemaVersion', 2)}
        if original.get('mediaType'):
            data['mediaType'] = original['mediaType']
        data['manifests'] = [d.to_dict() for d in self.kept]
        if original.get('annotations'):
            data['annotations'] = original['annotations']
        return data

    @property
    def raw_manifest(self) -> bytes:
        if self._raw is None:
            self._raw = json.dumps(self.manifest, separators=(',', ':')).encode('utf-8')
        return self._raw

    @property
    def digest(self) -> str:
        return compute_digest(self.raw_manifest)

    @property
    def size(self) -> int:
        return len(self.raw_manifest)

    def descriptor(self) -> Descriptor:
        return Descriptor(media_type=self.media_type, digest=self.digest, size=self.size)

    def image(self, digest: str) -> RemoteImage:
        return self.source.image(digest)

    def image_index(self, digest: str) -> RemoteIndex:
        return self.source.image_index(digest)


class RemoteDescriptor:
    """Result of resolving a tag or digest: media type, digest and raw bytes."""

    def __init__(self, client, repository: str, raw: bytes, media_type: str, digest: str):
        self.client = client
        self.repository = repository
        self.raw_manifest = raw
        self.media_type = base_media_type(media_type)
        self.digest = digest

    @property
    def size(self) -> int:
        return len(self.raw_manifest)

    @property
    def is_index(self) -> bool:
        return is_index(self.media_type)

    def image(self) -> RemoteImage:
        if self.is_index:
            raise TypeError(f"{self.repository}@{self.digest} is an index, not an image")
        return RemoteImage(self.client, self.repository, self.raw_manifest, self.media_type, self.digest)

    def image_index(self) -> RemoteIndex:
        if not self.is_index:
            raise TypeError(f"{self.repository}@{self.digest} is an image, not an index")
        return RemoteIndex(self.client, self.repository, self.raw_manifest, self.media_type, self.digest)
