"""Migration of images from source registries to destination registries."""

import logging
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from typing import Any, Dict, List, Optional

from ..config.resolve import DEFAULT_ARCHITECTURES, resolve_images
from ..config.settings import Config
from ..errors import Cancelled
from ..models.plan import ImageEntry, RegistryConfig
from ..provisioning.harbor import HarborClient, NamespaceCheckedSet, NamespaceProvisioner, namespace_of
from ..registry.client import RegistryClient
from ..utils.cancel import CancelToken
from ..utils.progress import ProgressChannel, TransferProgress
from .copy import copy_image


logger = logging.getLogger(__name__)


class MigrateOperation:
    """Runs a migration plan one tag at a time."""

    def __init__(self, config: Config, cancel_token: Optional[CancelToken] = None,
                 show_progress: bool = True,
                 checked_namespaces: Optional[Dict[str, NamespaceCheckedSet]] = None):
        self.config = config
        self.cancel_token = cancel_token or CancelToken()
        self.show_progress = show_progress
        self._clients: Dict[str, RegistryClient] = {}
        # Harbor namespaces already ensured, per destination host
        self.checked_namespaces = checked_namespaces if checked_namespaces is not None else {}

    def client_for(self, registry: RegistryConfig) -> RegistryClient:
        """One client per registry host for the whole run."""
        client = self._clients.get(registry.registry)
        if client is None:
            client = RegistryClient(registry, cancel_token=self.cancel_token)
            self._clients[registry.registry] = client
        return client

    def resolve_tasks(self) -> List[ImageEntry]:
        """Validate the plan and resolve it into migration tasks."""
        self.config.validate()
        return resolve_images(self.config.images, self.config.image_list, DEFAULT_ARCHITECTURES)

    def migrate(self) -> Dict[str, Any]:
        """Migrate every task to every destination registry."""
        tasks = self.resolve_tasks()
        destinations = self.config.destination_registries
        logger.info(f"Resolved {len(tasks)} image entries for {len(destinations)} destination(s)")

        results = {
            'succeeded': 0,
            'failed': 0,
            'errors': []
        }

        try:
            for destination in destinations.values():
                self._migrate_to(destination, tasks, results)
        except Cancelled:
            logger.warning("Migration cancelled")
            results['cancelled'] = True

        results['completed'] = datetime.now().strftime("%A, %b %d, %Y %H:%M")
        logger.info(f"Migration finished. Succeeded: {results['succeeded']}, failed: {results['failed']}")
        return results

    def _migrate_to(self, destination: RegistryConfig, tasks: List[ImageEntry],
                    results: Dict[str, Any]):
        dst_client = self.client_for(destination)
        provisioner = None
        if destination.is_harbor:
            provisioner = NamespaceProvisioner(
                HarborClient(destination),
                self.checked_namespaces.setdefault(destination.registry, NamespaceCheckedSet())
            )
            logger.info(f"Harbor project provisioning enabled for {destination.registry}")

        for task in tasks:
            self.cancel_token.raise_if_cancelled()
            src_client = self.client_for(self.config.source_for(task.registry))
            dst_name = task.destination_name

            if provisioner is not None:
                self._ensure_namespace(provisioner, dst_name)

            tags = task.tags
            if not tags:
                logger.info(f"No tags given, listing all tags of {task.registry}/{task.name}")
                try:
                    tags = src_client.list_tags(task.name)
                except Cancelled:
                    raise
                except Exception as e:
                    logger.error(f"Failed to list tags of {task.registry}/{task.name}: {e}")
                    self._record_failure(results, task, None, e)
                    continue

            if task.architectures:
                logger.info(f"{task.name} (-> {dst_name}) limited to architectures {task.architectures}")

            for tag in tags:
                logger.info(
                    f"Migrating {task.registry}/{task.name}:{tag} -> {destination.registry}/{dst_name}:{tag}"
                )
                error = self.copy_tag(src_client, dst_client, task.name, dst_name, tag, task.architectures)
                if error is None:
                    results['succeeded'] += 1
                elif isinstance(error, Cancelled):
                    raise error
                else:
                    logger.error(f"Failed to migrate {task.name}:{tag}: {error}")
                    self._record_failure(results, task, tag, error)

    def _ensure_namespace(self, provisioner: NamespaceProvisioner, repository: str):
        namespace = namespace_of(repository)
        if namespace is None:
            return
        try:
            provisioner.ensure(namespace)
        except Exception as e:
            logger.warning(f"Could not check or create Harbor project '{namespace}': {e}")

    def copy_tag(self, src_client: RegistryClient, dst_client: RegistryClient, src_repo: str,
                 dst_repo: str, tag: str, architectures: List[str]) -> Optional[Exception]:
        """Copy one tag while rendering its progress; returns the error, if any."""
        channel = ProgressChannel()

        def run():
            try:
                copy_image(src_client, dst_client, src_repo, dst_repo, tag, architectures,
                           progress=channel, cancel=self.cancel_token)
            finally:
                channel.close()

        with ThreadPoolExecutor(max_workers=1) as executor:
            future = executor.submit(run)
            with TransferProgress(f"{dst_repo}:{tag}", disable=not self.show_progress) as bar:
                try:
                    bar.consume(channel)
                except KeyboardInterrupt:
                    self.cancel_token.cancel("interrupted")
                    channel.close()
            try:
                future.result()
            except Exception as e:
                return e
        return None

    def _record_failure(self, results: Dict[str, Any], task: ImageEntry, tag: Optional[str],
                        error: Exception):
        results['failed'] += 1
        results['errors'].append({
            'image': f"{task.registry}/{task.name}" + (f":{tag}" if tag else ""),
            'target': task.destination_name,
            'error': str(error)
        })
