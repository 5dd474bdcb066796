"""
Pytest configuration file.

Provides an in-memory registry built on RegistryClient so the copy engine,
tag workers and orchestrator run against real manifest handling without
network access.
"""
import json
import time
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Tuple

import pytest

from regmigrate.errors import NotFound
from regmigrate.models.plan import RegistryConfig
from regmigrate.registry.client import RegistryClient
from regmigrate.registry.manifest import OCI_INDEX, OCI_MANIFEST, compute_digest

CONFIG_MEDIA_TYPE = "application/vnd.oci.image.config.v1+json"
LAYER_MEDIA_TYPE = "application/vnd.oci.image.layer.v1.tar+gzip"


class FakeBlobResponse:
    """Stands in for a streamed requests.Response."""

    def __init__(self, data: bytes):
        self.data = data

    def iter_content(self, chunk_size: int = 1024):
        for start in range(0, len(self.data), chunk_size):
            yield self.data[start:start + chunk_size]


class FakeRegistryClient(RegistryClient):
    """RegistryClient whose wire calls are served from dictionaries."""

    def __init__(self, registry: str = "registry.example.com", cancel_token=None,
                 latencies: Optional[Dict[str, float]] = None):
        super().__init__(RegistryConfig(registry=registry), cancel_token=cancel_token)
        self.manifests: Dict[Tuple[str, str], Tuple[bytes, str]] = {}
        self.blobs: Dict[Tuple[str, str], bytes] = {}
        self.tags: Dict[str, List[str]] = {}
        self.pushed: List[Tuple[str, str, str]] = []
        self.uploaded: List[Tuple[str, str]] = []
        self.latencies = latencies or {}

    # builders

    def add_blob(self, repository: str, data: bytes, media_type: str = LAYER_MEDIA_TYPE) -> Dict[str, Any]:
        digest = compute_digest(data)
        self.blobs[(repository, digest)] = data
        return {'mediaType': media_type, 'digest': digest, 'size': len(data)}

    def add_manifest(self, repository: str, manifest: Dict[str, Any],
                     tag: Optional[str] = None) -> Dict[str, Any]:
        raw = json.dumps(manifest).encode('utf-8')
        digest = compute_digest(raw)
        media_type = manifest['mediaType']
        self.manifests[(repository, digest)] = (raw, media_type)
        if tag:
            self.manifests[(repository, tag)] = (raw, media_type)
            self.tags.setdefault(repository, []).append(tag)
        return {'mediaType': media_type, 'digest': digest, 'size': len(raw)}

    def add_image(self, repository: str, architecture: str = "amd64", os: str = "linux",
                  variant: str = "", created: Optional[str] = "2024-01-01T00:00:00Z",
                  tag: Optional[str] = None) -> Dict[str, Any]:
        config = {'architecture': architecture, 'os': os}
        if variant:
            config['variant'] = variant
        if created:
            config['created'] = created
        config_desc = self.add_blob(repository, json.dumps(config).encode('utf-8'), CONFIG_MEDIA_TYPE)
        layer_desc = self.add_blob(repository, f"layer {os}/{architecture}{variant}".encode('utf-8') * 100)
        manifest = {
            'schemaVersion': 2,
            'mediaType': OCI_MANIFEST,
            'config': config_desc,
            'layers': [layer_desc]
        }
        return self.add_manifest(repository, manifest, tag)

    def add_index(self, repository: str, platforms: List[Tuple[str, str, str]], tag: Optional[str] = None,
                  created: Optional[Dict[str, str]] = None,
                  annotations: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        """Add one image per (os, architecture, variant) and an index over them."""
        created = created or {}
        entries = []
        for os, architecture, variant in platforms:
            key = f"{os}/{architecture}"
            descriptor = self.add_image(repository, architecture, os, variant,
                                        created=created.get(key, "2024-01-01T00:00:00Z"))
            platform = {'architecture': architecture, 'os': os}
            if variant:
                platform['variant'] = variant
            descriptor['platform'] = platform
            entries.append(descriptor)

        manifest = {'schemaVersion': 2, 'mediaType': OCI_INDEX, 'manifests': entries}
        if annotations:
            manifest['annotations'] = annotations
        return self.add_manifest(repository, manifest, tag)

    # wire calls

    def get_manifest(self, repository: str, reference: str):
        delay = self.latencies.get(reference)
        if delay:
            time.sleep(delay)
        try:
            raw, media_type = self.manifests[(repository, reference)]
        except KeyError:
            raise NotFound(f"manifest unknown: {repository}:{reference}", status_code=404)
        return raw, media_type, compute_digest(raw)

    def list_tags(self, repository: str) -> List[str]:
        if repository not in self.tags:
            raise NotFound(f"repository not found: {repository}", status_code=404)
        return list(self.tags[repository])

    def get_blob_bytes(self, repository: str, digest: str) -> bytes:
        try:
            return self.blobs[(repository, digest)]
        except KeyError:
            raise NotFound(f"blob unknown: {repository}@{digest}", status_code=404)

    def blob_exists(self, repository: str, digest: str) -> bool:
        return (repository, digest) in self.blobs

    @contextmanager
    def open_blob(self, repository: str, digest: str):
        yield FakeBlobResponse(self.get_blob_bytes(repository, digest))

    def upload_blob(self, repository: str, digest: str, chunks):
        data = b"".join(chunks)
        assert compute_digest(data) == digest
        self.blobs[(repository, digest)] = data
        self.uploaded.append((repository, digest))

    def manifest_exists(self, repository: str, reference: str) -> bool:
        return (repository, reference) in self.manifests

    def put_manifest(self, repository: str, reference: str, raw: bytes, media_type: str):
        self.manifests[(repository, reference)] = (raw, media_type)
        self.pushed.append((repository, reference, media_type))

    def manifest_at(self, repository: str, reference: str) -> Dict[str, Any]:
        raw, _ = self.manifests[(repository, reference)]
        return json.loads(raw)


@pytest.fixture
def src_registry():
    """Source registry with nothing in it."""
    return FakeRegistryClient("source.example.com")


@pytest.fixture
def dst_registry():
    """Destination registry with nothing in it."""
    return FakeRegistryClient("dest.example.com")
