"""Profile operations: install, remove, upgrade and info.

Every mutating operation follows the same shape:
1. Parse arguments (installables or matchers) before touching anything
2. Load the current manifest through the profile handle
3. Compute a new element list from the old one
4. Build all accumulated derivations in one batch
5. Build and register the new profile tree, then switch the profile to it

Failures in steps 1-5 leave the current manifest, tree and profile link as
they were.
"""

import logging
import time
from dataclasses import dataclass, replace

from common import OperationResult
from flakeref import FlakeRef, InstallableFlake, parse_installable
from manifest import ElementSource, ManifestElement, ProfileManifest
from matchers import Matcher, matches, parse_matchers
from profile_opr.profile import ProfileHandle
from resolver import Resolver, UnsupportedInstallableError
from store import DerivedPath, Store

logger = logging.getLogger(__name__)


@dataclass
class ElementInfo:
    """One line of 'profile info'."""
    position: int
    original: str
    resolved: str
    store_paths: list[str]

    def to_line(self) -> str:
        return f"{self.position} {self.original} {self.resolved} {' '.join(self.store_paths)}"

    def to_dict(self) -> dict:
        return {
            'position': self.position,
            'original': self.original,
            'resolved': self.resolved,
            'storePaths': self.store_paths,
        }


def remove_elements(
    manifest: ProfileManifest,
    matchers: list[Matcher],
) -> tuple[ProfileManifest, list[ManifestElement]]:
    """Split a manifest into kept and removed elements.

    Positions are those of the original manifest for the whole pass.

    Returns:
        (manifest of kept elements, removed elements)
    """
    kept: list[ManifestElement] = []
    removed: list[ManifestElement] = []
    for position, element in enumerate(manifest.elements):
        if matches(element, position, matchers):
            removed.append(element)
        else:
            kept.append(element)
    return ProfileManifest(elements=kept, source_path=manifest.source_path), removed


def upgrade_elements(
    manifest: ProfileManifest,
    matchers: list[Matcher],
    resolver: Resolver,
) -> tuple[ProfileManifest, set[DerivedPath], list[dict]]:
    """Re-resolve matching elements that came from mutable flake references.

    Elements without provenance, with an immutable original reference, that
    do not match, or whose reference resolves to the same locked reference
    are carried over unchanged. Upgraded elements keep their position.

    Returns:
        (new manifest, derivations to build, description of each upgrade)
    """
    elements: list[ManifestElement] = []
    to_build: set[DerivedPath] = set()
    upgrades: list[dict] = []

    for position, element in enumerate(manifest.elements):
        source = element.source
        if source is None or not matches(element, position, matchers):
            elements.append(element)
            continue

        original = FlakeRef.parse(source.original_ref)
        if original.is_immutable():
            logger.debug(f"Skipping '{source.attr_path}': '{source.original_ref}' is locked")
            elements.append(element)
            continue

        logger.debug(f"Checking '{source.attr_path}' for updates")
        resolved = resolver.resolve(original, [source.attr_path])
        resolved_ref = resolved.resolved_ref.to_string()

        if resolved_ref == source.resolved_ref:
            elements.append(element)
            continue

        logger.info(
            f"upgrading '{source.attr_path}' from flake '{source.resolved_ref}' to '{resolved_ref}'"
        )
        elements.append(replace(
            element,
            store_paths=frozenset({resolved.artifact.out_path}),
            source=ElementSource(
                original_ref=source.original_ref,
                resolved_ref=resolved_ref,
                attr_path=resolved.attr_path,
            ),
        ))
        to_build.add(DerivedPath(resolved.artifact.drv_path))
        upgrades.append({
            'position': position,
            'attrPath': resolved.attr_path,
            'from': source.resolved_ref,
            'to': resolved_ref,
        })

    return ProfileManifest(elements=elements, source_path=manifest.source_path), to_build, upgrades


class ProfileOperations:
    """Profile operations bound to one profile, store and resolver."""

    def __init__(
        self,
        profile: ProfileHandle,
        store: Store,
        resolver: Resolver,
        system: str = 'x86_64-linux',
        dry_run: bool = False,
    ):
        """Initialize operations.

        Args:
            profile: Profile to read and switch
            store: Store used for builds and tree registration
            resolver: Resolver for flake installables
            system: Platform for attribute path expansion
            dry_run: Compute changes without building or switching
        """
        self.profile = profile
        self.store = store
        self.resolver = resolver
        self.system = system
        self.dry_run = dry_run

    def _commit(
        self,
        manifest: ProfileManifest,
        to_build: set[DerivedPath],
        message: str,
        changes: dict,
        start: float,
    ) -> OperationResult:
        """Build, register and switch to `manifest`."""
        if self.dry_run:
            logger.info(f"[dry-run] {message}")
            return OperationResult(
                message=message, duration=time.time() - start, changes=changes, dry_run=True,
            )

        if to_build:
            self.store.build_paths(to_build)

        store_path = manifest.build(self.store)
        generation = self.profile.update(store_path)
        if generation is not None:
            changes['generation'] = generation

        return OperationResult(
            message=message, store_path=store_path, duration=time.time() - start, changes=changes,
        )

    def install(self, texts: list[str]) -> OperationResult:
        """Install flake installables at the end of the profile.

        Raises:
            UnsupportedInstallableError: If an argument is not a flake installable
            ResolutionError: If an installable cannot be resolved
            BuildFailureError: If building fails
        """
        start = time.time()

        installables: list[InstallableFlake] = []
        for text in texts:
            installable = parse_installable(text, self.store.is_store_path, self.system)
            if not isinstance(installable, InstallableFlake):
                raise UnsupportedInstallableError(text)
            installables.append(installable)

        manifest = self.profile.load_manifest()
        elements = list(manifest.elements)
        to_build: set[DerivedPath] = set()
        installed = []

        for installable in installables:
            resolved = self.resolver.resolve(installable.flake_ref, installable.attr_paths)
            elements.append(ManifestElement(
                store_paths=frozenset({resolved.artifact.out_path}),
                active=True,
                source=ElementSource(
                    original_ref=installable.flake_ref.to_string(),
                    resolved_ref=resolved.resolved_ref.to_string(),
                    attr_path=resolved.attr_path,
                ),
            ))
            to_build.add(DerivedPath(resolved.artifact.drv_path))
            installed.append({'attrPath': resolved.attr_path, 'outPath': resolved.artifact.out_path})
            logger.info(f"Installing '{resolved.attr_path}' from flake '{resolved.resolved_ref}'")

        new_manifest = ProfileManifest(elements=elements, source_path=manifest.source_path)
        message = f"installed {len(installed)} packages"
        return self._commit(new_manifest, to_build, message, {'installed': installed}, start)

    def remove(self, tokens: list[str]) -> OperationResult:
        """Remove every element selected by the matchers.

        Selecting nothing is not an error; the profile is rebuilt unchanged.
        """
        start = time.time()
        matchers = parse_matchers(tokens, self.store.is_store_path)
        manifest = self.profile.load_manifest()

        new_manifest, removed = remove_elements(manifest, matchers)
        message = f"removed {len(removed)} packages, kept {len(new_manifest.elements)} packages"
        logger.info(message)

        changes = {
            'removed': [sorted(e.store_paths) for e in removed],
            'kept': len(new_manifest.elements),
        }
        return self._commit(new_manifest, set(), message, changes, start)

    def upgrade(self, tokens: list[str]) -> OperationResult:
        """Upgrade selected elements installed from mutable flake references."""
        start = time.time()
        matchers = parse_matchers(tokens, self.store.is_store_path)
        manifest = self.profile.load_manifest()

        new_manifest, to_build, upgrades = upgrade_elements(manifest, matchers, self.resolver)
        message = f"upgraded {len(upgrades)} packages"
        return self._commit(new_manifest, to_build, message, {'upgraded': upgrades}, start)

    def info(self) -> list[ElementInfo]:
        """Describe every element of the current manifest, in order."""
        manifest = self.profile.load_manifest()
        result = []
        for position, element in enumerate(manifest.elements):
            original, resolved = element.describe()
            result.append(ElementInfo(position, original, resolved, sorted(element.store_paths)))
        return result
