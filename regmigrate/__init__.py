"""regmigrate: container image migration between registries."""

__version__ = "1.0.0"
