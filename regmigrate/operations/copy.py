"""Cross-registry image copy with architecture filtering."""

import logging
from typing import List, Optional, Sequence

from ..errors import Cancelled, ConfigError, CopyError, NoMatchingPlatform, PlatformMismatch
from ..models.reference import is_digest
from ..registry.client import RegistryClient
from ..registry.manifest import Descriptor, FilteredIndex
from ..utils.cancel import CancelToken, check_cancelled


logger = logging.getLogger(__name__)


def select_platforms(descriptors: Sequence[Descriptor], platforms: Sequence[str]) -> List[Descriptor]:
    """Keep index entries whose platform matches any requested token.

    Entries without a platform or with an unknown architecture (attestation
    manifests, for example) are never selected.
    """
    kept = []
    for descriptor in descriptors:
        platform = descriptor.platform
        if platform is None or not platform.is_known:
            continue
        if platform.matches(platforms):
            kept.append(descriptor)
    return kept


def _step(operation: str, func, *args, **kwargs):
    """Run one copy step, wrapping failures with the step name."""
    try:
        return func(*args, **kwargs)
    except Cancelled:
        raise
    except (NoMatchingPlatform, PlatformMismatch):
        raise
    except Exception as e:
        raise CopyError(operation, e) from e


def copy_image(src_client: RegistryClient, dst_client: RegistryClient, src_repo: str,
               dst_repo: str, tag: str, platforms: Optional[Sequence[str]] = None,
               progress=None, cancel: Optional[CancelToken] = None):
    """Copy src_repo:tag to dst_repo:tag, optionally limited to some architectures.

    An index copied without a filter is pushed unchanged. With a filter, a
    single surviving entry is pushed as a plain image and several survivors
    are pushed as a new index listing only them. Nothing is pushed before
    every source manifest needed for the push has been read.
    """
    platforms = list(platforms or [])
    check_cancelled(cancel)

    descriptor = _step("fetch manifest", src_client.get_descriptor, src_repo, tag)

    if descriptor.is_index:
        index = _step("fetch index", descriptor.image_index)

        if not platforms:
            logger.debug(f"Pushing index {src_repo}:{tag} unfiltered")
            check_cancelled(cancel)
            _step("push index", dst_client.write_index, dst_repo, tag, index, progress)
            return

        if is_digest(tag):
            raise ConfigError(f"{src_repo}@{tag}: a digest reference cannot be copied with an architecture filter")

        kept = select_platforms(_step("fetch index", lambda: index.manifests), platforms)
        if not kept:
            raise NoMatchingPlatform(platforms)

        if len(kept) == 1:
            logger.info(f"Only {kept[0].platform} matches {platforms}; pushing a single image")
            image = _step("fetch image", index.image, kept[0].digest)
            check_cancelled(cancel)
            _step("push image", dst_client.write_image, dst_repo, tag, image, progress)
            return

        filtered = FilteredIndex(index, kept)
        logger.info(
            f"Keeping {len(kept)} of {len(index.manifests)} platforms: "
            f"{', '.join(str(d.platform) for d in kept)}"
        )
        check_cancelled(cancel)
        _step("push index", dst_client.write_index, dst_repo, tag, filtered, progress)
        return

    image = _step("fetch image", descriptor.image)
    if platforms:
        platform = _step("fetch image config", lambda: image.platform)
        if not platform.matches(platforms):
            raise PlatformMismatch(platform.architecture, platforms)

    check_cancelled(cancel)
    _step("push image", dst_client.write_image, dst_repo, tag, image, progress)

