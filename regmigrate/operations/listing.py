"""Repository and tag listing operations."""

import logging
from typing import Any, Dict, Optional

from ..config.settings import Config
from ..errors import PermissionDenied
from ..models.plan import RegistryConfig
from ..registry.client import RegistryClient
from ..utils.cancel import CancelToken
from ..workers.tag_worker import DEFAULT_TAG_WORKERS, TagWorkerPool


logger = logging.getLogger(__name__)


class ListOperation:
    """Lists repositories and tags of a single registry."""

    def __init__(self, config: Config, registry: RegistryConfig,
                 cancel_token: Optional[CancelToken] = None, show_progress: bool = True):
        self.config = config
        self.registry = registry
        self.cancel_token = cancel_token
        self.show_progress = show_progress
        self.client = RegistryClient(registry, cancel_token=cancel_token)

    def list_repositories(self) -> Dict[str, Any]:
        logger.info(f"Listing repositories of {self.registry.registry}")
        try:
            repositories = self.client.list_repositories()
        except PermissionDenied as e:
            for suggestion in e.suggestions:
                logger.warning(f"Hint: {suggestion}")
            raise

        logger.info(f"Found {len(repositories)} repositories")
        return {
            'registry': self.registry.registry,
            'repositories': sorted(repositories)
        }

    def list_tags(self, repository: str, num_workers: int = DEFAULT_TAG_WORKERS) -> Dict[str, Any]:
        """List tags of repository with digest, platforms, size and creation time."""
        logger.info(f"Listing tags of {self.registry.registry}/{repository}")
        tags = sorted(self.client.list_tags(repository))
        logger.info(f"Found {len(tags)} tags, fetching details with {num_workers} workers")

        pool = TagWorkerPool(self.client, num_workers=num_workers,
                             cancel_token=self.cancel_token, show_progress=self.show_progress)
        details = pool.enumerate(repository, tags)

        return {
            'registry': self.registry.registry,
            'repository': repository,
            'tags': details,
            'failed': sum(1 for detail in details if not detail.digest)
        }
