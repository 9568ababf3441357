#!/usr/bin/env python

# Copyright the TUF contributors
# SPDX-License-Identifier: MIT OR Apache-2.0

"""
<Program Name>
  repo.py

<Purpose>
  Command-line interface to create and maintain the trust metadata of a
  registry repository, without writing Python code.

  Every command prints its result as JSON on stdout. Errors are printed on
  stderr and the exit status is 1.

<Usage>
  $ repo.py [--repo PATH] [--keys PATH] [--config FILE] [-v] init
  $ repo.py add <name> <file> [--custom JSON]
  $ repo.py remove <name>
  $ repo.py list
  $ repo.py verify <name> <file>
  $ repo.py rotate <role>
  $ repo.py delegate <name> <pattern> ... [--threshold N] [--terminating]
  $ repo.py revoke <name>
  $ repo.py delegations
  $ repo.py refresh
  $ repo.py auto-refresh
  $ repo.py status
  $ repo.py expiry
  $ repo.py export-keys
"""

import argparse
import json
import logging
import sys
from typing import Any, Callable, Dict, List, Optional

from colorama import Fore

from regtuf.config import RepositoryConfig
from regtuf.exceptions import RepositoryError
from regtuf.repository import MetadataManager

logger = logging.getLogger(__name__)

PROG_NAME = "repo.py"


def _target_dict(name: str, target: Any) -> Dict[str, Any]:
    return {"name": name, **target.to_dict()}


def init_repo(manager: MetadataManager, args: argparse.Namespace) -> Any:
    manager.initialize()
    return manager.get_status().to_dict()


def add_target(manager: MetadataManager, args: argparse.Namespace) -> Any:
    custom = json.loads(args.custom) if args.custom else None
    if custom is not None and not isinstance(custom, dict):
        raise ValueError("--custom must be a JSON object")
    with open(args.file, "rb") as file_obj:
        target = manager.add_target(args.name, file_obj, custom)
    return _target_dict(args.name, target)


def remove_target(manager: MetadataManager, args: argparse.Namespace) -> Any:
    manager.remove_target(args.name)
    return {"removed": args.name}


def list_targets(manager: MetadataManager, args: argparse.Namespace) -> Any:
    return [
        _target_dict(name, target)
        for name, target in sorted(manager.list_targets().items())
    ]


def verify_target(manager: MetadataManager, args: argparse.Namespace) -> Any:
    with open(args.file, "rb") as file_obj:
        result = manager.verify_target(args.name, file_obj)
    return {
        "name": result.name,
        "verified": result.verified,
        "error": str(result.error) if result.error else None,
    }


def rotate_key(manager: MetadataManager, args: argparse.Namespace) -> Any:
    return {"role": args.role, "keyids": manager.rotate_key(args.role)}


def delegate(manager: MetadataManager, args: argparse.Namespace) -> Any:
    role = manager.add_delegation(
        args.name, args.patterns, args.threshold, args.terminating
    )
    return role.to_dict()


def revoke(manager: MetadataManager, args: argparse.Namespace) -> Any:
    manager.remove_delegation(args.name)
    return {"removed": args.name}


def list_delegations(
    manager: MetadataManager, args: argparse.Namespace
) -> Any:
    return [role.to_dict() for role in manager.list_delegations()]


def refresh(manager: MetadataManager, args: argparse.Namespace) -> Any:
    manager.refresh_timestamp()
    return manager.get_status().to_dict()["roles"]["timestamp"]


def auto_refresh(manager: MetadataManager, args: argparse.Namespace) -> Any:
    return {"refreshed": manager.auto_refresh()}


def status(manager: MetadataManager, args: argparse.Namespace) -> Any:
    return manager.get_status().to_dict()


def expiry(manager: MetadataManager, args: argparse.Namespace) -> Any:
    return {"expired": manager.check_expiry()}


def export_keys(manager: MetadataManager, args: argparse.Namespace) -> Any:
    return manager.export_public_keys()


def _add_command(
    subparsers: Any,
    name: str,
    func: Callable[[MetadataManager, argparse.Namespace], Any],
    help_text: str,
) -> argparse.ArgumentParser:
    parser = subparsers.add_parser(name, help=help_text)
    parser.set_defaults(func=func)
    return parser


def parse_arguments(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse the command line. Also set the logging level from -v."""

    parser = argparse.ArgumentParser(
        prog=PROG_NAME,
        description="Create or maintain registry trust metadata.",
    )
    parser.add_argument(
        "--repo", metavar="PATH", help="Repository metadata directory."
    )
    parser.add_argument(
        "--keys", metavar="PATH", help="Private key directory."
    )
    parser.add_argument(
        "--config",
        metavar="FILE",
        help="JSON file of repository options, e.g. "
        '{"timestamp_expiry": "12h", "root_threshold": 2}.',
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Log more: -v for INFO, -vv for DEBUG.",
    )

    subparsers = parser.add_subparsers(dest="command", metavar="<command>")
    subparsers.required = True

    _add_command(subparsers, "init", init_repo, "Create a new repository.")

    sub = _add_command(subparsers, "add", add_target, "Add a target.")
    sub.add_argument("name", help="Target name, e.g. app/image.tar")
    sub.add_argument("file", help="File with the target content.")
    sub.add_argument("--custom", metavar="JSON", help="Custom target data.")

    sub = _add_command(subparsers, "remove", remove_target, "Remove a target.")
    sub.add_argument("name")

    _add_command(subparsers, "list", list_targets, "List targets.")

    sub = _add_command(
        subparsers, "verify", verify_target, "Verify content of a target."
    )
    sub.add_argument("name")
    sub.add_argument("file")

    sub = _add_command(subparsers, "rotate", rotate_key, "Rotate role keys.")
    sub.add_argument("role", help="Top-level or delegated role name.")

    sub = _add_command(subparsers, "delegate", delegate, "Add a delegation.")
    sub.add_argument("name", help="Delegated role name.")
    sub.add_argument("patterns", nargs="+", help="Delegated path patterns.")
    sub.add_argument("--threshold", type=int, default=1, metavar="N")
    sub.add_argument("--terminating", action="store_true")

    sub = _add_command(subparsers, "revoke", revoke, "Remove a delegation.")
    sub.add_argument("name")

    _add_command(
        subparsers, "delegations", list_delegations, "List delegations."
    )
    _add_command(subparsers, "refresh", refresh, "Renew timestamp.")
    _add_command(
        subparsers,
        "auto-refresh",
        auto_refresh,
        "Renew snapshot and timestamp if they expire soon.",
    )
    _add_command(subparsers, "status", status, "Show repository status.")
    _add_command(subparsers, "expiry", expiry, "List expired roles.")
    _add_command(
        subparsers, "export-keys", export_keys, "Print public keys."
    )

    parsed_args = parser.parse_args(argv)

    logging_levels = [logging.WARNING, logging.INFO, logging.DEBUG]
    level = logging_levels[min(parsed_args.verbose, len(logging_levels) - 1)]
    logging.basicConfig(level=level, stream=sys.stderr)

    return parsed_args


def load_config(args: argparse.Namespace) -> RepositoryConfig:
    options: Dict[str, Any] = {}
    if args.config:
        with open(args.config, "rb") as file_obj:
            options.update(json.loads(file_obj.read().decode("utf-8")))
    if args.repo:
        options["repo_path"] = args.repo
    if args.keys:
        options["keys_path"] = args.keys
    return RepositoryConfig.from_dict(options)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_arguments(argv)

    try:
        manager = MetadataManager(load_config(args))
        result = args.func(manager, args)

    except (RepositoryError, ValueError, OSError) as e:
        sys.stderr.write(f"{Fore.RED}Error:{Fore.RESET} {e}\n")
        return 1

    sys.stdout.write(json.dumps(result, indent=2, sort_keys=True) + "\n")

    if args.command == "verify" and not result["verified"]:
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
