"""Shared pytest fixtures for profile-driver tests."""

import stat
import sys
from pathlib import Path

import pytest

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / 'src'))

from flakeref import FlakeRef
from manifest import ElementSource, ManifestElement, ProfileManifest
from profile_opr.profile import ProfileHandle
from resolver.base import BuildArtifact, ResolutionError, ResolvedInstallable, Resolver
from store.hashing import make_store_path, sha256
from store.local import LocalStore

LOCKED_REV = 'a' * 40
NEWER_REV = 'b' * 40


def fake_store_path(store_dir, name: str) -> str:
    """Deterministic, syntactically valid store path for `name`."""
    return make_store_path(str(store_dir), 'output:out', sha256(name.encode()), name)


class FakeResolver(Resolver):
    """Resolver returning canned results keyed by attribute path.

    Attributes:
        packages: attr path -> out path
        locked: Locked reference string returned for every resolution
        calls: (flake ref string, attr paths) for every resolve() call
    """

    def __init__(self, packages: dict, locked: str = f'github:NixOS/nixpkgs/{LOCKED_REV}'):
        self.packages = dict(packages)
        self.locked = locked
        self.calls: list = []

    def resolve(self, flake_ref, attr_paths):
        self.calls.append((flake_ref.to_string(), list(attr_paths)))
        for attr_path in attr_paths:
            if attr_path in self.packages:
                out_path = self.packages[attr_path]
                return ResolvedInstallable(
                    attr_path=attr_path,
                    resolved_ref=FlakeRef.parse(self.locked),
                    artifact=BuildArtifact(drv_path=out_path + '.drv', out_path=out_path),
                )
        raise ResolutionError(f"flake '{flake_ref}' does not provide attribute {attr_paths}")


@pytest.fixture
def store_dir(tmp_path):
    path = tmp_path / 'store'
    path.mkdir()
    return path


@pytest.fixture
def store(store_dir, tmp_path):
    """LocalStore rooted in tmp_path; builds run `true`."""
    return LocalStore(store_dir=store_dir, state_dir=tmp_path / 'state', build_command=['true'])


@pytest.fixture
def make_package(store_dir):
    """Create a fake package in the store with bin/<name> and optional extra files.

    Usage:
        path = make_package('hello')
        path = make_package('tools', files={'bin/a': 'x', 'share/doc/a': 'y'})
    """
    def _make(name: str, files: dict | None = None) -> str:
        path = Path(fake_store_path(store_dir, name))
        if files is None:
            files = {f'bin/{name}': f'#!/bin/sh\necho {name}\n'}
        for rel, content in files.items():
            target = path / rel
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content)
            if rel.startswith('bin/'):
                target.chmod(target.stat().st_mode | stat.S_IXUSR)
        path.mkdir(parents=True, exist_ok=True)
        return str(path)

    return _make


@pytest.fixture
def profile(tmp_path):
    """ProfileHandle for a profile that does not exist yet."""
    return ProfileHandle(tmp_path / 'profiles' / 'profile')


@pytest.fixture
def seed_profile(store, profile):
    """Build a manifest into the store and point the profile at it."""
    def _seed(elements: list[ManifestElement]) -> str:
        store_path = ProfileManifest(elements=elements).build(store)
        profile.update(store_path)
        return store_path

    return _seed


def flake_element(out_path: str, attr: str, original: str = 'flake:nixpkgs',
                  resolved: str = f'github:NixOS/nixpkgs/{LOCKED_REV}', active: bool = True) -> ManifestElement:
    """Element with provenance."""
    return ManifestElement(
        store_paths=frozenset({out_path}),
        active=active,
        source=ElementSource(original_ref=original, resolved_ref=resolved, attr_path=attr),
    )
