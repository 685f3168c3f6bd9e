"""Tests for cli.py and profile_opr/cli.py - noun/verb dispatch and verb handlers."""

import json

import pytest
import yaml

from cli import main
from conftest import flake_element


@pytest.fixture
def driver_config(tmp_path, store_dir, monkeypatch):
    """Config file pointing the driver at the test store and profile."""
    for var in ('PROFILE_DRIVER_CONFIG', 'PROFILE_DRIVER_STORE_DIR', 'PROFILE_DRIVER_PROFILE'):
        monkeypatch.delenv(var, raising=False)
    path = tmp_path / 'config.yaml'
    path.write_text(yaml.safe_dump({
        'store_dir': str(store_dir),
        'state_dir': str(tmp_path / 'state'),
        'profile': str(tmp_path / 'profiles' / 'profile'),
        'build_command': ['true'],
        'registry_url': '',
    }))
    return path


class TestTopLevel:
    """Test top-level usage and dispatch."""

    def test_no_args_prints_usage(self, capsys):
        assert main([]) == 1
        assert 'Usage: profile-driver <noun> <action>' in capsys.readouterr().out

    def test_help(self, capsys):
        assert main(['--help']) == 0
        assert 'profile' in capsys.readouterr().out

    def test_version(self, capsys):
        assert main(['--version']) == 0
        assert capsys.readouterr().out.startswith('profile-driver ')

    def test_unknown_noun(self, capsys):
        assert main(['bogus']) == 1
        assert "Unknown command 'bogus'" in capsys.readouterr().out

    def test_profile_without_action(self, capsys):
        assert main(['profile']) == 1
        assert 'Actions:' in capsys.readouterr().out

    def test_profile_help(self):
        assert main(['profile', '--help']) == 0

    def test_unknown_profile_action(self, capsys):
        assert main(['profile', 'frob']) == 1
        assert "Unknown profile action 'frob'" in capsys.readouterr().out


class TestProfileVerbs:
    """Test profile verbs end to end against a temporary store."""

    def test_info_empty(self, driver_config, capsys):
        assert main(['profile', 'info', '--config', str(driver_config)]) == 0
        assert capsys.readouterr().out == ''

    def test_info_lines(self, driver_config, seed_profile, make_package, capsys):
        hello = make_package('hello')
        seed_profile([flake_element(hello, 'hello')])

        assert main(['profile', 'info', '--config', str(driver_config)]) == 0

        out = capsys.readouterr().out
        assert out.startswith('0 flake:nixpkgs#hello github:NixOS/nixpkgs/')
        assert out.rstrip().endswith(hello)

    def test_info_json(self, driver_config, seed_profile, make_package, capsys):
        hello = make_package('hello')
        seed_profile([flake_element(hello, 'hello')])

        assert main(['profile', 'info', '--config', str(driver_config), '--json-output']) == 0

        data = json.loads(capsys.readouterr().out)
        assert data['elements'][0]['storePaths'] == [hello]
        assert data['elements'][0]['position'] == 0

    def test_remove_json(self, driver_config, seed_profile, profile, make_package, capsys):
        hello = make_package('hello')
        seed_profile([flake_element(hello, 'hello')])

        rc = main(['profile', 'remove', '0', '--config', str(driver_config), '--json-output'])

        assert rc == 0
        output = json.loads(capsys.readouterr().out)
        assert output['verb'] == 'remove'
        assert output['message'] == 'removed 1 packages, kept 0 packages'
        assert output['changes']['generation'] == 2
        assert profile.load_manifest().elements == []

    def test_remove_dry_run(self, driver_config, seed_profile, profile, make_package):
        hello = make_package('hello')
        seeded = seed_profile([flake_element(hello, 'hello')])

        assert main(['profile', 'remove', '0', '--config', str(driver_config), '--dry-run']) == 0

        assert profile.current_target() == seeded
        assert len(profile.generations()) == 1

    def test_invalid_pattern(self, driver_config, capsys):
        assert main(['profile', 'remove', '(', '--config', str(driver_config)]) == 1
        assert 'E110' in capsys.readouterr().err

    def test_unsupported_installable(self, driver_config, profile, capsys):
        assert main(['profile', 'install', 'hello', '--config', str(driver_config)]) == 1

        assert "'profile install' does not support argument 'hello'" in capsys.readouterr().err
        assert profile.current_target() is None

    def test_install_requires_argument(self, driver_config):
        with pytest.raises(SystemExit):
            main(['profile', 'install', '--config', str(driver_config)])

    def test_bad_config(self, tmp_path, capsys):
        path = tmp_path / 'bad.yaml'
        path.write_text('unknown_key: 1\n')

        assert main(['profile', 'info', '--config', str(path)]) == 1
        assert 'Unknown config key' in capsys.readouterr().err


class TestConfigNoun:
    """Test 'config show'."""

    def test_show(self, driver_config, capsys):
        assert main(['config', 'show', str(driver_config)]) == 0

        out = capsys.readouterr().out
        assert out.startswith(f'# source: {driver_config}\n')
        shown = yaml.safe_load(out)
        assert shown['build_command'] == ['true']
        assert shown['registry_url'] == ''

    def test_show_missing_file(self, tmp_path, capsys):
        assert main(['config', 'show', str(tmp_path / 'nope.yaml')]) == 1
        assert 'Config file not found' in capsys.readouterr().err

    def test_usage(self):
        assert main(['config']) == 1
