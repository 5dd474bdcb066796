"""Resolution of explicit image entries and the free-text image list."""

import logging
from typing import List, Optional, Sequence

from ..errors import ConfigError
from ..models.plan import ImageEntry
from ..models.reference import looks_like_registry, normalize_registry, parse_reference, parse_repository


logger = logging.getLogger(__name__)

ARCH_DIRECTIVE = "#arch="
DEFAULT_ARCHITECTURES = ("amd64", "arm64")


def normalize_explicit_images(images: Sequence[ImageEntry],
                              default_registry: Optional[str] = None) -> List[ImageEntry]:
    """Fill in the registry of entries that do not name one.

    The registry is taken from the entry name when it starts with a host,
    otherwise from default_registry, otherwise Docker Hub.
    """
    normalized = []
    for image in images:
        if not image.name.strip():
            raise ConfigError("images.name must not be empty")

        if image.registry:
            registry, name = normalize_registry(image.registry), image.name
        else:
            first = image.name.split("/", 1)[0]
            has_host = "/" in image.name and looks_like_registry(first)
            if default_registry and not has_host:
                registry, name = normalize_registry(default_registry), image.name
            else:
                try:
                    registry, name = parse_repository(image.name)
                except ConfigError as e:
                    raise ConfigError(f"invalid image name {image.name}: {e}")

        normalized.append(ImageEntry(
            name=name,
            registry=registry,
            target_name=image.target_name,
            tags=list(image.tags),
            architectures=list(image.architectures)
        ))
    return normalized


def _split_directive(line: str):
    index = line.find(ARCH_DIRECTIVE)
    if index < 0:
        return line, []

    architectures = []
    arch_part = line[index + len(ARCH_DIRECTIVE):].strip()
    if arch_part:
        arch_part = arch_part.split(' ', 1)[0]
        architectures = [arch.strip() for arch in arch_part.split(',') if arch.strip()]
    return line[:index].strip(), architectures


def parse_image_list(raw: Optional[str],
                     default_architectures: Sequence[str] = DEFAULT_ARCHITECTURES) -> List[ImageEntry]:
    """Parse one image reference per line with an optional ``#arch=a,b`` suffix.

    Blank lines and lines starting with ``#`` are skipped. Lines without a
    directive get default_architectures; references without a tag get
    ``latest``. Digest references are copied unfiltered and reject the
    directive.
    """
    results = []
    for line_number, line in enumerate((raw or "").split('\n'), start=1):
        line = line.strip()
        if not line or line.startswith('#'):
            continue

        line, architectures = _split_directive(line)
        if not line:
            continue

        try:
            ref = parse_reference(line)
        except ConfigError as e:
            raise ConfigError(f"image_list line {line_number}: {e}")

        if ref.digest:
            if architectures:
                raise ConfigError(
                    f"image_list line {line_number}: {ARCH_DIRECTIVE} cannot be used with a digest reference"
                )
        elif not architectures:
            architectures = list(default_architectures)

        results.append(ImageEntry(
            name=ref.repository,
            registry=ref.registry,
            tags=[ref.identifier],
            architectures=architectures
        ))
    return results


def merge_images(explicit_images: Sequence[ImageEntry],
                 list_images: Sequence[ImageEntry]) -> List[ImageEntry]:
    """Merge explicit entries with image-list entries.

    An explicit entry without tags claims its whole repository; one with
    tags claims each repository:tag pair. Image-list entries touching a
    claimed repository or pair are dropped.
    """
    known_repos = set()
    known_tags = set()

    for image in explicit_images:
        if not image.tags:
            known_repos.add(image.repository_key)
            continue
        for tag in image.tags:
            known_tags.add(image.tag_key(tag))

    merged = list(explicit_images)
    for image in list_images:
        if image.repository_key in known_repos:
            logger.debug(f"Skipping {image.repository_key}: repository listed in images")
            continue
        if any(image.tag_key(tag) in known_tags for tag in image.tags):
            logger.debug(f"Skipping duplicate image_list entry {image.repository_key}:{image.tags}")
            continue
        for tag in image.tags:
            known_tags.add(image.tag_key(tag))
        merged.append(image)

    return merged


def resolve_images(explicit_images: Sequence[ImageEntry], image_list: Optional[str],
                   default_architectures: Sequence[str] = DEFAULT_ARCHITECTURES,
                   default_registry: Optional[str] = None) -> List[ImageEntry]:
    """Build the ordered migration task list: explicit entries, then the image list."""
    normalized = normalize_explicit_images(explicit_images, default_registry)
    entries_from_list = parse_image_list(image_list, default_architectures)
    return merge_images(normalized, entries_from_list)
