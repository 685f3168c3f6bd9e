"""Resolver backed by the nix command line.

Resolution of one installable:
1. Indirect references go through the flake registry
2. `nix flake metadata --json <ref>` locks the reference
3. `nix eval --json <locked>#<attr> --apply <projection>` is tried for each
   candidate attribute path; the first that evaluates wins
"""

import json
import logging
from typing import Optional

from common import run_command
from flakeref import FlakeRef, FlakeRefError
from resolver.base import BuildArtifact, ResolutionError, ResolvedInstallable, Resolver
from resolver.registry import FlakeRegistry

logger = logging.getLogger(__name__)

# Evaluates a derivation down to the two store paths the profile needs
DRV_PROJECTION = 'drv: { drvPath = drv.drvPath; outPath = drv.outPath; }'

NIX_FEATURES = ['--extra-experimental-features', 'nix-command flakes']


class NixCliResolver(Resolver):
    """Resolve flakes by invoking nix."""

    def __init__(
        self,
        registry: Optional[FlakeRegistry] = None,
        nix_command: Optional[list[str]] = None,
        timeout: int = 600,
    ):
        """Initialize resolver.

        Args:
            registry: Registry for indirect references (default: empty, no fetch)
            nix_command: Command prefix for nix (default: ['nix'])
            timeout: Seconds allowed per nix invocation
        """
        self.registry = registry or FlakeRegistry()
        self.nix_command = nix_command or ['nix']
        self.timeout = timeout

    def _nix(self, args: list[str]) -> tuple[int, str, str]:
        return run_command(self.nix_command + NIX_FEATURES + args, timeout=self.timeout)

    def lock(self, flake_ref: FlakeRef) -> FlakeRef:
        """Lock a reference to an immutable one.

        Raises:
            ResolutionError: If nix cannot fetch or lock the flake
        """
        direct = self.registry.resolve(flake_ref)
        rc, out, err = self._nix(['flake', 'metadata', '--json', direct.to_string()])
        if rc != 0:
            raise ResolutionError(f"cannot lock flake '{flake_ref}': {err.strip()}")

        try:
            metadata = json.loads(out)
            locked = metadata.get('url') or metadata['resolvedUrl']
            return FlakeRef.parse(locked)
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ResolutionError(f"unexpected 'nix flake metadata' output for '{flake_ref}': {e}")
        except FlakeRefError as e:
            raise ResolutionError(f"nix locked '{flake_ref}' to an unparseable reference: {e.message}")

    def _eval_attr(self, locked: FlakeRef, attr_path: str) -> Optional[BuildArtifact]:
        rc, out, err = self._nix([
            'eval', '--json', f"{locked.to_string()}#{attr_path}",
            '--apply', DRV_PROJECTION,
        ])
        if rc != 0:
            logger.debug(f"Attribute '{attr_path}' not usable: {err.strip()}")
            return None
        try:
            data = json.loads(out)
            return BuildArtifact(drv_path=data['drvPath'], out_path=data['outPath'])
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ResolutionError(f"unexpected 'nix eval' output for '{locked}#{attr_path}': {e}")

    def resolve(self, flake_ref: FlakeRef, attr_paths: list[str]) -> ResolvedInstallable:
        locked = self.lock(flake_ref)
        logger.debug(f"Locked {flake_ref} to {locked}")

        for attr_path in attr_paths:
            artifact = self._eval_attr(locked, attr_path)
            if artifact is not None:
                return ResolvedInstallable(attr_path=attr_path, resolved_ref=locked, artifact=artifact)

        raise ResolutionError(
            f"flake '{flake_ref}' does not provide attribute "
            f"{', '.join(repr(a) for a in attr_paths)}"
        )
