#!/usr/bin/env python3
"""CLI entry point for profile-driver.

Supports noun-action subcommands:
- profile-driver profile install nixpkgs#hello
- profile-driver profile remove 0
- profile-driver config show

Nouns:
- profile: Profile management (install/remove/upgrade/info)
- config: Driver configuration (show)
"""

import logging
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import yaml

from config import ConfigError, load_config

# Noun commands (noun-action subcommands)
NOUN_COMMANDS = {
    "profile": "Profile management (install/remove/upgrade/info)",
    "config": "Driver configuration (show)",
}

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def get_version() -> str:
    """Get installed package version ('dev' when running from a checkout)."""
    try:
        return version('profile-driver')
    except PackageNotFoundError:
        return 'dev'


def dispatch_profile(argv: list) -> int:
    """Dispatch 'profile' noun to action-specific handler.

    Args:
        argv: Arguments after 'profile' (e.g., ['install', 'nixpkgs#hello'])

    Returns:
        Exit code
    """
    if not argv or argv[0].startswith('-'):
        print("Usage: profile-driver profile <action> [options]")
        print()
        print("Actions:")
        print("  install   Install packages into a profile")
        print("  remove    Remove packages from a profile")
        print("  upgrade   Upgrade packages using their most recent flake")
        print("  info      List installed packages")
        print()
        print("Run 'profile-driver profile <action> --help' for action-specific options.")
        return 1 if not argv else 0

    action = argv[0]
    rest = argv[1:]

    if action == "install":
        from profile_opr.cli import install_main
        rc: int = install_main(rest)
        return rc
    if action == "remove":
        from profile_opr.cli import remove_main
        rc = remove_main(rest)
        return rc
    if action == "upgrade":
        from profile_opr.cli import upgrade_main
        rc = upgrade_main(rest)
        return rc
    if action == "info":
        from profile_opr.cli import info_main
        rc = info_main(rest)
        return rc

    print(f"Error: Unknown profile action '{action}'")
    print("Available actions: install, remove, upgrade, info")
    return 1


def dispatch_config(argv: list) -> int:
    """Dispatch 'config' noun: 'config show [PATH]' prints the resolved config."""
    if not argv or argv[0] != 'show':
        print("Usage: profile-driver config show [CONFIG_FILE]")
        return 1

    try:
        config = load_config(Path(argv[1]) if len(argv) > 1 else None)
    except ConfigError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    source = config.config_file or 'built-in defaults'
    print(f"# source: {source}")
    print(yaml.safe_dump(config.to_dict(), default_flow_style=False, sort_keys=False), end='')
    return 0


def dispatch_noun(noun: str, argv: list) -> int:
    """Dispatch to noun-specific CLI handler.

    Args:
        noun: The noun command (e.g., "profile", "config")
        argv: Remaining command line arguments

    Returns:
        Exit code
    """
    if noun == "profile":
        return dispatch_profile(argv)

    if noun == "config":
        return dispatch_config(argv)

    print(f"Error: Unknown command '{noun}'")
    print(f"Available commands: {', '.join(NOUN_COMMANDS)}")
    return 1


def print_usage():
    """Print top-level usage showing noun commands."""
    print(f"profile-driver {get_version()}")
    print()
    print("Usage: profile-driver <noun> <action> [options]")
    print()
    print("Commands:")
    for noun, desc in NOUN_COMMANDS.items():
        print(f"  {noun:<12} {desc}")
    print()
    print("Run 'profile-driver <noun> --help' for command-specific options.")
    print()
    print("Examples:")
    print("  profile-driver profile install nixpkgs#hello")
    print("  profile-driver profile remove packages.x86_64-linux.hello")
    print("  profile-driver profile upgrade '.*'")
    print("  profile-driver profile info")
    print("  profile-driver config show")


def main(argv: list | None = None) -> int:
    """Main entry point."""
    if argv is None:
        argv = sys.argv[1:]

    if not argv or argv[0] in ('-h', '--help'):
        print_usage()
        return 0 if argv else 1

    if argv[0] == '--version':
        print(f"profile-driver {get_version()}")
        return 0

    return dispatch_noun(argv[0], argv[1:])


if __name__ == '__main__':
    sys.exit(main())
