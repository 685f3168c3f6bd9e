#!/usr/bin/env python3
"""Tests for profile_opr/operations.py - install, remove, upgrade and info.

Tests run against a LocalStore in tmp_path and a FakeResolver, so no nix
installation is needed. Builds are either the no-op 'true' command or
patched out.
"""

from unittest.mock import patch

import pytest

from conftest import LOCKED_REV, NEWER_REV, FakeResolver, flake_element
from manifest import ElementSource, ManifestElement, ProfileManifest
from matchers import ByIndex, InvalidPatternError
from profile_opr.operations import ProfileOperations, remove_elements
from resolver import ResolutionError, UnsupportedInstallableError
from store import BuildFailureError, DerivedPath

HELLO_ATTR = 'packages.x86_64-linux.hello'
LOCKED = f'github:NixOS/nixpkgs/{LOCKED_REV}'
NEWER = f'github:NixOS/nixpkgs/{NEWER_REV}'


@pytest.fixture
def hello(make_package):
    return make_package('hello')


@pytest.fixture
def tools(make_package):
    return make_package('tools', files={'bin/tool': 'tool', 'share/man/tool.1': 'man'})


def make_ops(profile, store, resolver, **kwargs):
    return ProfileOperations(profile=profile, store=store, resolver=resolver, **kwargs)


class TestInstall:
    """Test ProfileOperations.install."""

    def test_install_into_fresh_profile(self, profile, store, hello):
        resolver = FakeResolver({HELLO_ATTR: hello})
        ops = make_ops(profile, store, resolver)

        result = ops.install(['nixpkgs#hello'])

        assert result.message == 'installed 1 packages'
        assert result.changes['generation'] == 1
        assert profile.current_target() == result.store_path
        assert (profile.path / 'bin' / 'hello').exists()

        manifest = profile.load_manifest()
        assert len(manifest.elements) == 1
        element = manifest.elements[0]
        assert element.store_paths == frozenset({hello})
        assert element.active is True
        assert element.source == ElementSource('flake:nixpkgs', LOCKED, HELLO_ATTR)

    def test_install_tries_candidate_attr_paths_in_order(self, profile, store, hello):
        resolver = FakeResolver({'hello': hello})
        make_ops(profile, store, resolver).install(['nixpkgs#hello'])

        assert resolver.calls == [
            ('flake:nixpkgs', [HELLO_ATTR, 'legacyPackages.x86_64-linux.hello', 'hello']),
        ]
        assert profile.load_manifest().elements[0].source.attr_path == 'hello'

    def test_install_appends_after_existing(self, profile, store, seed_profile, hello, tools):
        seed_profile([flake_element(tools, 'tools')])
        ops = make_ops(profile, store, FakeResolver({HELLO_ATTR: hello}))

        result = ops.install(['nixpkgs#hello'])

        assert result.changes['generation'] == 2
        elements = profile.load_manifest().elements
        assert [e.store_paths for e in elements] == [frozenset({tools}), frozenset({hello})]

    def test_install_builds_in_one_batch(self, profile, store, hello, tools):
        resolver = FakeResolver({HELLO_ATTR: hello, 'packages.x86_64-linux.tools': tools})
        ops = make_ops(profile, store, resolver)

        with patch.object(store, 'build_paths') as mock_build:
            result = ops.install(['nixpkgs#hello', 'nixpkgs#tools'])

        mock_build.assert_called_once_with({DerivedPath(hello + '.drv'), DerivedPath(tools + '.drv')})
        assert result.message == 'installed 2 packages'

    @pytest.mark.parametrize('argument', ['hello', 'store-path'])
    def test_unsupported_installable(self, profile, store, seed_profile, hello, argument):
        seeded = seed_profile([flake_element(hello, 'hello')])
        if argument == 'store-path':
            argument = hello
        resolver = FakeResolver({HELLO_ATTR: hello})

        with pytest.raises(UnsupportedInstallableError) as exc_info:
            make_ops(profile, store, resolver).install(['nixpkgs#hello', argument])

        assert exc_info.value.code == 'E202'
        assert f"does not support argument '{argument}'" in str(exc_info.value)
        assert resolver.calls == []
        assert profile.current_target() == seeded
        assert len(profile.generations()) == 1

    def test_resolution_failure_leaves_profile(self, profile, store, seed_profile, hello):
        seeded = seed_profile([flake_element(hello, 'hello')])
        ops = make_ops(profile, store, FakeResolver({}))

        with pytest.raises(ResolutionError):
            ops.install(['nixpkgs#missing'])

        assert profile.current_target() == seeded
        assert len(profile.load_manifest().elements) == 1

    def test_build_failure_leaves_profile(self, profile, store, seed_profile, hello, tools):
        seeded = seed_profile([flake_element(hello, 'hello')])
        ops = make_ops(profile, store, FakeResolver({'packages.x86_64-linux.tools': tools}))

        with patch.object(store, 'build_paths', side_effect=BuildFailureError([tools + '.drv!out'], 'boom')):
            with pytest.raises(BuildFailureError, match='boom'):
                ops.install(['nixpkgs#tools'])

        assert profile.current_target() == seeded
        assert [g for g, _ in profile.generations()] == [1]

    def test_dry_run_changes_nothing(self, profile, store, hello):
        ops = make_ops(profile, store, FakeResolver({HELLO_ATTR: hello}), dry_run=True)

        with patch.object(store, 'build_paths') as mock_build:
            result = ops.install(['nixpkgs#hello'])

        assert result.dry_run is True
        assert result.store_path is None
        assert result.changes['installed'] == [{'attrPath': HELLO_ATTR, 'outPath': hello}]
        mock_build.assert_not_called()
        assert profile.current_target() is None


class TestRemove:
    """Test ProfileOperations.remove."""

    def test_remove_by_pattern(self, profile, store, seed_profile, hello):
        seed_profile([flake_element(hello, 'hello')])
        ops = make_ops(profile, store, FakeResolver({}))

        result = ops.remove(['hello'])

        assert result.message == 'removed 1 packages, kept 0 packages'
        assert result.changes['generation'] == 2
        assert profile.load_manifest().elements == []
        assert not (profile.path / 'bin').exists()

    def test_remove_by_index_keeps_order(self, profile, store, seed_profile, make_package):
        paths = [make_package(name) for name in ('aaa', 'bbb', 'ccc')]
        seed_profile([flake_element(p, p.rsplit('-', 1)[1]) for p in paths])

        result = make_ops(profile, store, FakeResolver({})).remove(['0'])

        assert result.message == 'removed 1 packages, kept 2 packages'
        elements = profile.load_manifest().elements
        assert [e.store_paths for e in elements] == [frozenset({paths[1]}), frozenset({paths[2]})]

    def test_remove_first_twice_renumbers(self, profile, store, seed_profile, make_package):
        paths = [make_package(name) for name in ('aaa', 'bbb', 'ccc')]
        seed_profile([flake_element(p, p.rsplit('-', 1)[1]) for p in paths])
        ops = make_ops(profile, store, FakeResolver({}))

        ops.remove(['0'])
        result = ops.remove(['0'])

        assert result.message == 'removed 1 packages, kept 1 packages'
        assert result.changes['generation'] == 3
        assert [e.store_paths for e in profile.load_manifest().elements] == [frozenset({paths[2]})]
        assert [e.position for e in ops.info()] == [0]

    def test_remove_by_store_path(self, profile, store, seed_profile, hello, tools):
        seed_profile([flake_element(hello, 'hello'), ManifestElement(store_paths=frozenset({tools}))])

        make_ops(profile, store, FakeResolver({})).remove([tools])

        assert [e.store_paths for e in profile.load_manifest().elements] == [frozenset({hello})]

    def test_no_match_keeps_generation(self, profile, store, seed_profile, hello):
        seeded = seed_profile([flake_element(hello, 'hello')])

        result = make_ops(profile, store, FakeResolver({})).remove(['nomatch'])

        assert result.message == 'removed 0 packages, kept 1 packages'
        assert result.store_path == seeded
        assert 'generation' not in result.changes
        assert len(profile.generations()) == 1

    def test_invalid_pattern_before_any_work(self, profile, store, seed_profile, hello):
        seeded = seed_profile([flake_element(hello, 'hello')])
        ops = make_ops(profile, store, FakeResolver({}))

        with patch.object(profile, 'load_manifest') as mock_load:
            with pytest.raises(InvalidPatternError):
                ops.remove(['('])

        mock_load.assert_not_called()
        assert profile.current_target() == seeded

    def test_positions_fixed_for_whole_pass(self):
        elements = [flake_element(f'/store/{n}', n) for n in ('a', 'b', 'c')]
        kept, removed = remove_elements(ProfileManifest(elements=elements), [ByIndex(0), ByIndex(1)])

        assert kept.elements == [elements[2]]
        assert removed == elements[:2]

    def test_index_past_end_selects_nothing(self):
        elements = [flake_element(f'/store/{n}', n) for n in ('a', 'b', 'c')]

        kept, removed = remove_elements(ProfileManifest(elements=elements), [ByIndex(3)])

        assert kept.elements == elements
        assert removed == []


class TestUpgrade:
    """Test ProfileOperations.upgrade."""

    def test_same_ref_is_noop(self, profile, store, seed_profile, hello):
        seeded = seed_profile([flake_element(hello, 'hello')])
        resolver = FakeResolver({'hello': hello})

        with patch.object(store, 'build_paths') as mock_build:
            result = make_ops(profile, store, resolver).upgrade(['hello'])

        assert result.message == 'upgraded 0 packages'
        assert resolver.calls == [('flake:nixpkgs', ['hello'])]
        mock_build.assert_not_called()
        assert result.store_path == seeded
        assert len(profile.generations()) == 1

    def test_new_ref_replaces_in_place(self, profile, store, seed_profile, hello, tools, make_package):
        seed_profile([flake_element(hello, 'hello'), flake_element(tools, 'tools')])
        new_hello = make_package('hello-2.12')
        resolver = FakeResolver({'hello': new_hello}, locked=NEWER)

        with patch.object(store, 'build_paths') as mock_build:
            result = make_ops(profile, store, resolver).upgrade(['hello'])

        mock_build.assert_called_once_with({DerivedPath(new_hello + '.drv')})
        assert result.message == 'upgraded 1 packages'
        assert result.changes['upgraded'] == [
            {'position': 0, 'attrPath': 'hello', 'from': LOCKED, 'to': NEWER},
        ]

        elements = profile.load_manifest().elements
        assert elements[0].store_paths == frozenset({new_hello})
        assert elements[0].source == ElementSource('flake:nixpkgs', NEWER, 'hello')
        assert elements[1] == flake_element(tools, 'tools')

    def test_immutable_original_is_skipped(self, profile, store, seed_profile, hello):
        seed_profile([flake_element(hello, 'hello', original=LOCKED)])
        resolver = FakeResolver({'hello': hello}, locked=NEWER)

        result = make_ops(profile, store, resolver).upgrade(['.*'])

        assert result.message == 'upgraded 0 packages'
        assert resolver.calls == []

    def test_elements_without_provenance_skipped(self, profile, store, seed_profile, tools):
        seed_profile([ManifestElement(store_paths=frozenset({tools}))])
        resolver = FakeResolver({})

        result = make_ops(profile, store, resolver).upgrade(['0'])

        assert result.message == 'upgraded 0 packages'
        assert resolver.calls == []

    def test_resolution_failure_leaves_profile(self, profile, store, seed_profile, hello):
        seeded = seed_profile([flake_element(hello, 'hello')])

        with pytest.raises(ResolutionError):
            make_ops(profile, store, FakeResolver({})).upgrade(['hello'])

        assert profile.current_target() == seeded

    def test_build_failure_leaves_profile(self, profile, store, seed_profile, hello, make_package):
        seeded = seed_profile([flake_element(hello, 'hello')])
        new_hello = make_package('hello-2.12')
        ops = make_ops(profile, store, FakeResolver({'hello': new_hello}, locked=NEWER))

        with patch.object(store, 'build_paths', side_effect=BuildFailureError([new_hello + '.drv!out'], 'boom')):
            with pytest.raises(BuildFailureError, match='boom'):
                ops.upgrade(['hello'])

        assert profile.current_target() == seeded
        assert [g for g, _ in profile.generations()] == [1]
        assert profile.load_manifest().elements == [flake_element(hello, 'hello')]


class TestInfo:
    """Test ProfileOperations.info."""

    def test_info_lines(self, profile, store, seed_profile, hello, tools):
        seed_profile([flake_element(hello, 'hello'), ManifestElement(store_paths=frozenset({tools}))])

        lines = [e.to_line() for e in make_ops(profile, store, FakeResolver({})).info()]

        assert lines == [
            f'0 flake:nixpkgs#hello {LOCKED}#hello {hello}',
            f'1 - - {tools}',
        ]

    def test_info_on_fresh_profile(self, profile, store):
        assert make_ops(profile, store, FakeResolver({})).info() == []
