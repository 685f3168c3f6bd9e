"""Resolver package: turns flake references into locked references and derivations."""

from resolver.base import (
    ResolverError,
    ResolutionError,
    UnsupportedInstallableError,
    BuildArtifact,
    ResolvedInstallable,
    Resolver,
)
from resolver.registry import FlakeRegistry
from resolver.nix_cli import NixCliResolver

__all__ = [
    "ResolverError",
    "ResolutionError",
    "UnsupportedInstallableError",
    "BuildArtifact",
    "ResolvedInstallable",
    "Resolver",
    "FlakeRegistry",
    "NixCliResolver",
]
