"""Configuration management for regmigrate."""

import os
from dataclasses import replace
from typing import Any, Dict, List, Optional

import yaml

from ..errors import ConfigError
from ..models.plan import ImageEntry, RegistryConfig
from ..models.reference import normalize_registry
from ..registry.transport import parse_no_proxy, validate_proxy


PROXY_ENV = 'REGMIGRATE_PROXY'
NO_PROXY_ENV = 'REGMIGRATE_NO_PROXY'


class Config:
    """Configuration manager for regmigrate.

    Proxy settings come from arguments or the environment; the migration
    plan is read lazily from a YAML file.
    """

    def __init__(self, plan_path: Optional[str] = None, proxy: Optional[str] = None,
                 no_proxy: Optional[str] = None):
        self.plan_path = plan_path
        try:
            self.proxy = validate_proxy(proxy or os.environ.get(PROXY_ENV))
        except ValueError as e:
            raise ConfigError(str(e))
        self.no_proxy = parse_no_proxy(no_proxy or os.environ.get(NO_PROXY_ENV))

        self._plan = None

    def registry_config(self, registry: str, username: Optional[str] = None,
                        password: Optional[str] = None, insecure: bool = False) -> RegistryConfig:
        """Build a RegistryConfig for ad-hoc commands such as list-tags."""
        if not registry:
            raise ConfigError("a registry address is required")
        return self.with_proxy(RegistryConfig(
            registry=normalize_registry(registry),
            username=username,
            password=password,
            insecure=insecure
        ))

    def with_proxy(self, registry: RegistryConfig) -> RegistryConfig:
        """Attach the global proxy settings to a registry config."""
        return replace(registry, proxy=self.proxy, no_proxy=tuple(self.no_proxy))

    @property
    def plan(self) -> Dict[str, Any]:
        """Load and cache the migration plan."""
        if self._plan is None:
            if not self.plan_path:
                raise ConfigError("no migration plan given")
            if not os.path.exists(self.plan_path):
                raise ConfigError(f"Migration plan not found: {self.plan_path}")

            with open(self.plan_path, 'r') as f:
                try:
                    data = yaml.safe_load(f)
                except yaml.YAMLError as e:
                    raise ConfigError(f"Invalid YAML in {self.plan_path}: {e}")

            if data is None:
                data = {}
            if not isinstance(data, dict):
                raise ConfigError(f"Migration plan {self.plan_path} must be a mapping")
            self._plan = data

        return self._plan

    def _registries(self, section: str) -> Dict[str, RegistryConfig]:
        raw = self.plan.get(section) or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"{section} must be a mapping of name to registry settings")

        registries = {}
        for key, value in raw.items():
            if not isinstance(value, dict):
                raise ConfigError(f"{section}.{key} must be a mapping")
            registry = RegistryConfig.from_dict(str(key), value)
            registries[str(key)] = self.with_proxy(
                replace(registry, registry=normalize_registry(registry.registry))
            )
        return registries

    @property
    def source_registries(self) -> Dict[str, RegistryConfig]:
        """Source registry credentials keyed by plan name."""
        return self._registries('source_registries')

    @property
    def destination_registries(self) -> Dict[str, RegistryConfig]:
        """Destination registries; at least one is required."""
        registries = self._registries('destination_registries')
        if not registries:
            raise ConfigError("destination_registries must name at least one registry")
        return registries

    @property
    def images(self) -> List[ImageEntry]:
        raw = self.plan.get('images') or []
        if not isinstance(raw, list):
            raise ConfigError("images must be a list")

        entries = []
        for i, item in enumerate(raw):
            if not isinstance(item, dict):
                raise ConfigError(f"images[{i}] must be a mapping")
            for key in ('tags', 'architectures'):
                if item.get(key) is not None and not isinstance(item[key], list):
                    raise ConfigError(f"images[{i}].{key} must be a list")
            entries.append(ImageEntry.from_dict(item))
        return entries

    @property
    def image_list(self) -> str:
        value = self.plan.get('image_list') or ""
        if not isinstance(value, str):
            raise ConfigError("image_list must be a multi-line string")
        return value

    def source_for(self, registry: str) -> RegistryConfig:
        """Credentials for a source host, anonymous when the plan has none."""
        host = normalize_registry(registry)
        for source in self.source_registries.values():
            if source.registry == host:
                return source
        return self.with_proxy(RegistryConfig(registry=host))

    def validate(self):
        """Fail before any network activity when the plan is unusable."""
        destinations = self.destination_registries
        for name, registry in {**self.source_registries, **destinations}.items():
            if not registry.registry:
                raise ConfigError(f"registry address missing for '{name}'")
        if not self.images and not self.image_list.strip():
            raise ConfigError("the migration plan lists no images (images or image_list)")
