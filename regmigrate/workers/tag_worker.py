"""Concurrent tag detail workers."""

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import List, Optional

from ..errors import Cancelled
from ..models.tag import TagDetail
from ..registry.client import RegistryClient
from ..utils.cancel import CancelToken, check_cancelled
from ..utils.progress import ProgressReporter


logger = logging.getLogger(__name__)

DEFAULT_TAG_WORKERS = 10


class TagWorker:
    """Worker resolving the details of individual tags."""

    def __init__(self, client: RegistryClient, repository: str,
                 cancel_token: Optional[CancelToken] = None):
        self.client = client
        self.repository = repository
        self.cancel_token = cancel_token

    def tag_detail(self, tag: str) -> TagDetail:
        """Fetch digest, platforms, size and creation time of a tag."""
        check_cancelled(self.cancel_token)
        descriptor = self.client.get_descriptor(self.repository, tag)

        if descriptor.is_index:
            return self._index_detail(tag, descriptor)

        image = descriptor.image()
        return TagDetail(
            name=tag,
            digest=descriptor.digest,
            size=image.layer_size,
            platforms=[str(image.platform)],
            created=image.created,
            is_index=False
        )

    def _index_detail(self, tag: str, descriptor) -> TagDetail:
        index = descriptor.image_index()
        platforms = []
        created = None

        for child in index.manifests:
            platform = child.platform
            if platform is None or not platform.is_known:
                continue

            name = str(platform)
            if name not in platforms:
                platforms.append(name)

            if platform.os == 'linux':
                check_cancelled(self.cancel_token)
                try:
                    child_created = index.image(child.digest).created
                except Cancelled:
                    raise
                except Exception as e:
                    logger.debug(f"No creation time for {self.repository}@{child.digest}: {e}")
                    continue
                if child_created and (created is None or child_created < created):
                    created = child_created

        return TagDetail(
            name=tag,
            digest=descriptor.digest,
            size=0,
            platforms=platforms,
            created=created,
            is_index=True
        )


class TagWorkerPool:
    """Pool of workers fetching tag details with bounded concurrency."""

    def __init__(self, client: RegistryClient, num_workers: int = DEFAULT_TAG_WORKERS,
                 cancel_token: Optional[CancelToken] = None, show_progress: bool = True):
        if num_workers < 1:
            raise ValueError("num_workers must be at least 1")
        self.client = client
        self.num_workers = num_workers
        self.cancel_token = cancel_token
        self.show_progress = show_progress

    def enumerate(self, repository: str, tags: List[str]) -> List[TagDetail]:
        """Return one TagDetail per tag, in the order of tags.

        A tag whose details cannot be fetched yields a TagDetail holding
        only its name.
        """
        if not tags:
            return []

        worker = TagWorker(self.client, repository, self.cancel_token)
        results: List[Optional[TagDetail]] = [None] * len(tags)

        with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
            with ProgressReporter(len(tags), description="Fetching tag details", unit="tag",
                                  disable=not self.show_progress) as reporter:
                future_to_index = {
                    executor.submit(worker.tag_detail, tag): i
                    for i, tag in enumerate(tags)
                }

                for future in as_completed(future_to_index):
                    i = future_to_index[future]
                    try:
                        results[i] = future.result()
                        reporter.update(True)
                    except Cancelled:
                        raise
                    except Exception as e:
                        logger.warning(f"Failed to fetch details for {repository}:{tags[i]}: {e}")
                        results[i] = TagDetail(name=tags[i])
                        reporter.update(False)

        return results
