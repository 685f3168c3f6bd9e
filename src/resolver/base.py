"""Resolver contract and resolver errors.

A resolver turns a flake reference plus candidate attribute paths into a
locked reference and the derivation to build. The profile engine consumes
resolvers only through `Resolver.resolve`.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from common import ProfileError
from flakeref import FlakeRef


class ResolverError(ProfileError):
    """Base exception for resolver errors."""


class ResolutionError(ResolverError):
    """Reference or attribute could not be resolved."""

    def __init__(self, message: str):
        super().__init__("E201", message)


class UnsupportedInstallableError(ResolverError):
    """Argument cannot be installed into a profile."""

    def __init__(self, text: str):
        self.text = text
        super().__init__("E202", f"'profile install' does not support argument '{text}'")


@dataclass(frozen=True)
class BuildArtifact:
    """Derivation selected by a resolution.

    Attributes:
        drv_path: Store path of the derivation
        out_path: Store path of its 'out' output
    """
    drv_path: str
    out_path: str


@dataclass(frozen=True)
class ResolvedInstallable:
    """Outcome of resolving a flake installable."""
    attr_path: str
    resolved_ref: FlakeRef
    artifact: BuildArtifact


class Resolver(ABC):
    """Base class for flake resolvers."""

    @abstractmethod
    def resolve(self, flake_ref: FlakeRef, attr_paths: list[str]) -> ResolvedInstallable:
        """Resolve the first attribute path the flake provides.

        Raises:
            ResolutionError: If the flake cannot be locked or provides none of the paths
        """
