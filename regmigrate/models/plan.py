"""Migration plan data models."""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class RegistryConfig:
    """Connection settings for one registry host."""
    registry: str
    username: Optional[str] = None
    password: Optional[str] = None
    insecure: bool = False
    type: str = ""
    proxy: Optional[str] = None
    no_proxy: Tuple[str, ...] = ()

    @property
    def is_harbor(self) -> bool:
        return self.type.lower() == "harbor"

    @classmethod
    def from_dict(cls, key: str, data: Dict[str, Any]) -> 'RegistryConfig':
        return cls(
            registry=str(data.get('registry') or key),
            username=data.get('username') or None,
            password=data.get('password') or None,
            insecure=bool(data.get('insecure', False)),
            type=str(data.get('type') or '')
        )


@dataclass
class ImageEntry:
    """One repository to migrate, optionally limited to tags and architectures.

    An empty ``tags`` list means every tag in the source repository; an
    empty ``architectures`` list means the image is copied unfiltered.
    """
    name: str
    registry: str = ""
    target_name: str = ""
    tags: List[str] = field(default_factory=list)
    architectures: List[str] = field(default_factory=list)

    @property
    def destination_name(self) -> str:
        return self.target_name or self.name

    @property
    def repository_key(self) -> str:
        return f"{self.registry}/{self.name}"

    def tag_key(self, tag: str) -> str:
        return f"{self.registry}/{self.name}:{tag}"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'ImageEntry':
        return cls(
            name=str(data.get('name') or ''),
            registry=str(data.get('registry') or ''),
            target_name=str(data.get('target_name') or ''),
            tags=[str(tag) for tag in data.get('tags') or []],
            architectures=[str(arch) for arch in data.get('architectures') or []]
        )
