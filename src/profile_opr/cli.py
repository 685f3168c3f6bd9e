"""CLI handlers for profile verb commands (install, remove, upgrade, info).

Usage:
    profile-driver profile install <installable...> [--profile PATH] [--dry-run] [--json-output]
    profile-driver profile remove <element...> [--profile PATH] [--dry-run] [--json-output]
    profile-driver profile upgrade <element...> [--profile PATH] [--dry-run] [--json-output]
    profile-driver profile info [--profile PATH] [--json-output]

Elements are selected by position ("0"), store path or attribute path
pattern ("packages.x86_64-linux.hello", ".*").
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Callable

from common import OperationResult, ProfileError
from config import ConfigError, DriverConfig, load_config
from profile_opr.operations import ProfileOperations
from profile_opr.profile import ProfileHandle
from resolver import FlakeRegistry, NixCliResolver
from store import LocalStore

logger = logging.getLogger(__name__)


def _common_parser(verb: str, description: str) -> argparse.ArgumentParser:
    """Build argument parser with common options for all verbs."""
    parser = argparse.ArgumentParser(
        prog=f'profile-driver profile {verb}',
        description=description,
    )
    parser.add_argument(
        '--profile', '-p',
        type=Path,
        help='Profile to operate on (default: profile from config)',
    )
    parser.add_argument(
        '--config',
        type=Path,
        help='Path to config file (default: auto-discovered)',
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging',
    )
    parser.add_argument(
        '--json-output',
        action='store_true',
        help='Output structured JSON to stdout (logs to stderr)',
    )
    return parser


def _mutating_parser(verb: str, description: str, metavar: str, help_text: str,
                     nargs: str = '*') -> argparse.ArgumentParser:
    parser = _common_parser(verb, description)
    parser.add_argument('args', nargs=nargs, metavar=metavar, help=help_text)
    parser.add_argument(
        '--dry-run',
        action='store_true',
        help='Preview changes without building or switching the profile',
    )
    return parser


def _setup_logging(verbose: bool, json_output: bool) -> None:
    """Configure logging based on flags."""
    if json_output:
        root_logger = logging.getLogger()
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        stderr_handler = logging.StreamHandler(sys.stderr)
        stderr_handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S',
        ))
        root_logger.addHandler(stderr_handler)

    if verbose:
        logging.getLogger().setLevel(logging.DEBUG)


def build_operations(config: DriverConfig, profile: Path | None = None, dry_run: bool = False) -> ProfileOperations:
    """Wire store, resolver and profile handle from configuration."""
    store = LocalStore(
        store_dir=config.store_dir,
        state_dir=config.state_dir,
        build_command=config.build_command,
        timeout=config.command_timeout,
    )
    registry = FlakeRegistry(entries=config.registry, registry_url=config.registry_url)
    resolver = NixCliResolver(
        registry=registry,
        nix_command=config.nix_command,
        timeout=config.command_timeout,
    )
    return ProfileOperations(
        profile=ProfileHandle(profile or config.profile),
        store=store,
        resolver=resolver,
        system=config.system,
        dry_run=dry_run,
    )


def _emit_json(verb: str, result: OperationResult) -> None:
    """Emit structured JSON output."""
    output = {
        'verb': verb,
        'message': result.message,
        'dry_run': result.dry_run,
        'store_path': result.store_path,
        'duration_seconds': round(result.duration, 2),
        'changes': result.changes,
    }
    print(json.dumps(output, indent=2))


def _run_verb(verb: str, argv: list, description: str, metavar: str, help_text: str,
              action: Callable[[ProfileOperations, list[str]], OperationResult],
              nargs: str = '*') -> int:
    parser = _mutating_parser(verb, description, metavar, help_text, nargs)
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        config = load_config(args.config)
        ops = build_operations(config, args.profile, dry_run=args.dry_run)
        result = action(ops, args.args)
    except (ProfileError, ConfigError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json_output:
        _emit_json(verb, result)
    elif result.store_path:
        logger.info(f"Profile now at {result.store_path}")
    return 0


def install_main(argv: list) -> int:
    """Handle 'profile install' verb."""
    return _run_verb(
        'install', argv,
        'Install packages into a profile',
        'INSTALLABLE', 'Flake installable, e.g. nixpkgs#hello',
        lambda ops, args: ops.install(args),
        nargs='+',
    )


def remove_main(argv: list) -> int:
    """Handle 'profile remove' verb."""
    return _run_verb(
        'remove', argv,
        'Remove packages from a profile',
        'ELEMENT', 'Position, store path or attribute path pattern',
        lambda ops, args: ops.remove(args),
    )


def upgrade_main(argv: list) -> int:
    """Handle 'profile upgrade' verb."""
    return _run_verb(
        'upgrade', argv,
        'Upgrade packages using their most recent flake',
        'ELEMENT', 'Position, store path or attribute path pattern',
        lambda ops, args: ops.upgrade(args),
    )


def info_main(argv: list) -> int:
    """Handle 'profile info' verb.

    Writes one line per element: position, original ref#attr, locked
    ref#attr (or '-' for elements without provenance) and store paths.
    """
    parser = _common_parser('info', 'List installed packages')
    args = parser.parse_args(argv)
    _setup_logging(args.verbose, args.json_output)

    try:
        config = load_config(args.config)
        ops = build_operations(config, args.profile)
        elements = ops.info()
    except (ProfileError, ConfigError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if args.json_output:
        print(json.dumps({'elements': [e.to_dict() for e in elements]}, indent=2))
    else:
        for element in elements:
            print(element.to_line())
    return 0
