"""Main CLI entry point for regmigrate."""

import argparse
import json
import sys
import logging
from typing import Dict, Any

from .config.settings import Config
from .errors import PermissionDenied
from .operations.listing import ListOperation
from .operations.migrate import MigrateOperation
from .utils.cancel import CancelToken
from .utils.logger import setup_logging
from .workers.tag_worker import DEFAULT_TAG_WORKERS


logger = logging.getLogger(__name__)


def print_json_output(data: Dict[str, Any]):
    """Print formatted JSON output."""
    print(json.dumps(data, indent=2))


def _failure(operation: str, error: Exception) -> Dict[str, Any]:
    output = {
        "Operation": operation,
        "Status": "Failed",
        "Error": str(error)
    }
    if isinstance(error, PermissionDenied) and error.suggestions:
        output["Suggestions"] = error.suggestions
    return output


def _registry_from_args(config: Config, args):
    return config.registry_config(
        args.registry,
        username=args.username,
        password=args.password,
        insecure=args.insecure
    )


def handle_list_images(args):
    """Handle list-images command."""
    cancel_token = CancelToken()
    try:
        config = Config(proxy=args.proxy, no_proxy=args.no_proxy)
        list_op = ListOperation(config, _registry_from_args(config, args), cancel_token)

        result = list_op.list_repositories()

        print_json_output({
            "Operation": "ListImages",
            "Registry": result['registry'],
            "Count": len(result['repositories']),
            "Repositories": result['repositories']
        })

    except KeyboardInterrupt:
        cancel_token.cancel("interrupted")
        print_json_output({"Operation": "ListImages", "Status": "Cancelled"})
        sys.exit(1)
    except Exception as e:
        logger.error(f"List images failed: {e}")
        print_json_output(_failure("ListImages", e))
        sys.exit(1)


def handle_list_tags(args):
    """Handle list-tags command."""
    cancel_token = CancelToken()
    try:
        config = Config(proxy=args.proxy, no_proxy=args.no_proxy)
        list_op = ListOperation(config, _registry_from_args(config, args), cancel_token)

        result = list_op.list_tags(args.repo, num_workers=args.num_workers)

        print_json_output({
            "Operation": "ListTags",
            "Registry": result['registry'],
            "Repository": result['repository'],
            "Count": len(result['tags']),
            "Tags": [detail.to_dict() for detail in result['tags']]
        })

        if result['failed'] > 0:
            logger.warning(f"Details missing for {result['failed']} tag(s)")

    except KeyboardInterrupt:
        cancel_token.cancel("interrupted")
        print_json_output({"Operation": "ListTags", "Status": "Cancelled"})
        sys.exit(1)
    except Exception as e:
        logger.error(f"List tags failed: {e}")
        print_json_output(_failure("ListTags", e))
        sys.exit(1)


def handle_migrate(args):
    """Handle migrate command."""
    cancel_token = CancelToken()
    try:
        config = Config(args.config, proxy=args.proxy, no_proxy=args.no_proxy)
        migrate_op = MigrateOperation(config, cancel_token)

        result = migrate_op.migrate()

        output = {
            "Operation": "Migrate",
            "Summary": {
                "Completed": result['completed'],
                "Status": "Cancelled" if result.get('cancelled') else (
                    "Success" if result['failed'] == 0 else "Partial"
                ),
                "Succeeded": result['succeeded'],
                "Failed": result['failed']
            }
        }

        if result['errors']:
            output["Errors"] = result['errors'][:5]  # Show first 5 errors

        print_json_output(output)

        if result['failed'] > 0 or result.get('cancelled'):
            sys.exit(1)

    except KeyboardInterrupt:
        cancel_token.cancel("interrupted")
        print_json_output({"Operation": "Migrate", "Status": "Cancelled"})
        sys.exit(1)
    except Exception as e:
        logger.error(f"Migration failed: {e}")
        print_json_output(_failure("Migrate", e))
        sys.exit(1)


def _add_registry_arguments(parser):
    parser.add_argument('--registry', required=True, help='Registry address, e.g. harbor.example.com')
    parser.add_argument('-u', '--username', help='Registry username (default: anonymous)')
    parser.add_argument('-p', '--password', help='Registry password')
    parser.add_argument(
        '--insecure',
        action='store_true',
        help='Skip TLS verification and allow plain HTTP'
    )


def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog='regmigrate',
        description='Lists and migrates container images between OCI/Docker registries.'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default='INFO',
        help='Set logging level (default: INFO)'
    )
    parser.add_argument(
        '--log-file',
        help='Log to file in addition to console'
    )
    parser.add_argument(
        '--proxy',
        help='HTTP(S) proxy for registry traffic (default: $REGMIGRATE_PROXY)'
    )
    parser.add_argument(
        '--no-proxy',
        help='Comma separated hosts that bypass the proxy (default: $REGMIGRATE_NO_PROXY)'
    )

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # List images command
    images_parser = subparsers.add_parser(
        'list-images',
        help='List repositories of a registry',
        description='Lists the repositories of a registry through the catalog API.'
    )
    _add_registry_arguments(images_parser)
    images_parser.set_defaults(func=handle_list_images)

    # List tags command
    tags_parser = subparsers.add_parser(
        'list-tags',
        help='List tags of a repository',
        description='Lists the tags of a repository with digest, platforms, size and creation time.'
    )
    _add_registry_arguments(tags_parser)
    tags_parser.add_argument('--repo', required=True, help='Repository to list, e.g. library/nginx')
    tags_parser.add_argument(
        '--num-workers',
        type=int,
        default=DEFAULT_TAG_WORKERS,
        help=f'Number of tag detail requests in flight (default: {DEFAULT_TAG_WORKERS})'
    )
    tags_parser.set_defaults(func=handle_list_tags)

    # Migrate command
    migrate_parser = subparsers.add_parser(
        'migrate',
        help='Migrate images described by a plan',
        description='Copies every image of a YAML migration plan to each destination registry.'
    )
    migrate_parser.add_argument(
        '-c', '--config',
        default='config.yaml',
        help='Path to the migration plan (default: config.yaml)'
    )
    migrate_parser.set_defaults(func=handle_migrate)

    return parser


def main():
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    setup_logging(args.log_level, args.log_file)

    args.func(args)


if __name__ == '__main__':
    main()
