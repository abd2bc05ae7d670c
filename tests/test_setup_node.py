"""Tests for setup_node.py."""

import sys
from pathlib import Path

import pytest

SCRIPTS_DIR = Path(__file__).parent.parent / 'scripts'
sys.path.insert(0, str(SCRIPTS_DIR))

import setup_node
from host_commands import CommandRunner, SetupAborted
from models import FirewallConfig, KeyPermissions, SetupFile
from node_config import load_saved_setup, save_setup_file, saved_config_path
from setup_node import build_parser, collect_firewall_config, collect_install_config, main, resolve_setup

ADDRESS = '0x' + 'f6' * 20


def scripted(*answers):
    queue = list(answers)

    def input_fn(prompt=''):
        if not queue:
            raise EOFError
        return queue.pop(0)
    return input_fn


@pytest.fixture
def config_file(tmp_path, make_config):
    path = tmp_path / 'node-setup.yaml'
    save_setup_file(path, SetupFile(install=make_config(), firewall=FirewallConfig(ssh_port=22)))
    return path


@pytest.fixture
def as_root(monkeypatch, host):
    """Run main() as root against the in-memory host."""
    monkeypatch.setattr('os.geteuid', lambda: 0)
    monkeypatch.setattr(setup_node, 'CommandRunner', lambda dry_run=False: host)
    return host


class TestCollectInstallConfig:
    """Tests for the interactive questions."""

    def test_menu_answers(self, tmp_path):
        config = collect_install_config('alice', input_fn=scripted('2', '3', '2'),
                                        install_path=str(tmp_path / 'chain') + '/')

        assert config.network == 'testnet'
        assert config.execution_client == 'erigon-pruned'
        assert config.consensus_client == 'prysm'
        assert config.install_path == tmp_path / 'chain'

    def test_invalid_choice_reprompts(self, tmp_path, capsys):
        config = collect_install_config('alice', input_fn=scripted('7', 'x', '1', '1', '1'),
                                        install_path=str(tmp_path))

        assert config.network == 'mainnet'
        assert capsys.readouterr().out.count('Invalid input') == 2

    def test_exit_choice(self, tmp_path):
        with pytest.raises(SetupAborted) as exc_info:
            collect_install_config('alice', input_fn=scripted('1', '0'), install_path=str(tmp_path))

        assert exc_info.value.exit_code == 0

    def test_firewall_questions(self, host):
        firewall = collect_firewall_config(host, input_fn=scripted('y', 'y', 'abc', '2222'))

        assert firewall.rpc_access is True
        assert firewall.ssh_port == 2222
        assert firewall.local_network is None


class TestMain:
    """Tests for main()."""

    def test_requires_root_without_dry_run(self, monkeypatch, config_file, capsys):
        monkeypatch.setattr('os.geteuid', lambda: 1000)

        assert main(['--config', str(config_file)]) == 1
        assert 'must be run as root' in capsys.readouterr().out

    def test_dry_run_changes_nothing(self, config_file, make_config, capsys):
        assert main(['--config', str(config_file), '--dry-run', '--skip-software']) == 0

        out = capsys.readouterr().out
        assert '[dry-run] useradd' in out
        assert 'Dry run complete!' in out
        assert not make_config().install_path.exists()

    def test_menu_exit_is_graceful(self, monkeypatch, tmp_path):
        monkeypatch.setenv('SUDO_USER', 'alice')

        assert main(['--dry-run'], input_fn=scripted(str(tmp_path / 'chain'), '0')) == 0

    def test_eof_aborts_with_error(self, monkeypatch):
        monkeypatch.setenv('SUDO_USER', 'alice')

        assert main(['--dry-run'], input_fn=scripted()) == 1

    def test_invalid_config_file(self, tmp_path):
        bad = tmp_path / 'bad.yaml'
        bad.write_text('install:\n  execution_client: besu\n')

        assert main(['--config', str(bad), '--dry-run']) == 1

    def test_full_run_is_idempotent(self, as_root, config_file, make_config, chown_calls):
        config = make_config()
        args = ['--config', str(config_file), '--skip-software', '--skip-pull']

        assert main(args) == 0
        jwt = (config.install_path / 'jwt.hex').read_text()
        launcher = (config.install_path / 'start_execution.sh').read_text()
        as_root.calls.clear()

        assert main(args) == 0

        assert as_root.commands('useradd') == []
        assert as_root.commands('groupadd') == []
        assert as_root.commands('usermod') == []
        assert (config.install_path / 'jwt.hex').read_text() == jwt
        assert (config.install_path / 'start_execution.sh').read_text() == launcher
        assert as_root.crontab.count('@reboot') == 2
        assert load_saved_setup(config.install_path).install == config

    def test_full_run_creates_accounts(self, as_root, config_file, chown_calls):
        assert main(['--config', str(config_file), '--skip-software', '--skip-pull']) == 0

        assert {'geth', 'lighthouse'} <= set(as_root.users)
        assert 'docker' in as_root.users['alice']
        assert ['ufw', '--force', 'enable'] in as_root.calls

    def test_failed_step_stops_setup(self, monkeypatch, config_file, make_config, chown_calls, capsys):
        from conftest import FakeHost
        failing = FakeHost(users={'alice': {'alice'}}, fail_on=[('useradd',)])
        monkeypatch.setattr('os.geteuid', lambda: 0)
        monkeypatch.setattr(setup_node, 'CommandRunner', lambda dry_run=False: failing)

        assert main(['--config', str(config_file), '--skip-software', '--skip-pull']) == 1

        assert not make_config().install_path.exists()
        assert failing.commands('ufw') == []
        assert 'Command failed' in capsys.readouterr().out


class TestInteractiveValidation:
    """Tests for answers that fail validation."""

    def test_relative_install_path_reprompts(self, monkeypatch, tmp_path, capsys):
        monkeypatch.setenv('SUDO_USER', 'alice')

        result = main(['--dry-run', '--skip-firewall', '--skip-software', '--skip-pull'],
                      input_fn=scripted('chain', str(tmp_path / 'chain'), '1', '1', '1'))

        assert result == 0
        out = capsys.readouterr().out
        assert 'Invalid path' in out
        assert f'Install path: {tmp_path / "chain"}' in out

    def test_invalid_main_user_is_reported(self, monkeypatch, tmp_path, capsys):
        monkeypatch.setenv('SUDO_USER', 'Not A User')

        result = main(['--dry-run', '--skip-firewall'], input_fn=scripted(str(tmp_path), '1', '1', '1'))

        assert result == 1
        out = capsys.readouterr().out
        assert 'Configuration validation: FAILED' in out
        assert 'main_user:' in out


class TestResolveSetup:
    """Tests for re-answering node questions over a saved configuration."""

    def test_keeps_validator_settings(self, monkeypatch, make_config):
        monkeypatch.setenv('SUDO_USER', 'alice')
        saved = make_config(withdrawal_address=ADDRESS, fee_recipient=ADDRESS, graffiti='node-1')
        saved.install_path.mkdir(parents=True)
        policy = KeyPermissions(deposit_mode=0o440)
        save_setup_file(saved_config_path(saved.install_path),
                        SetupFile(install=saved, key_permissions=policy))
        args = build_parser().parse_args(['--skip-firewall'])

        setup = resolve_setup(args, CommandRunner(dry_run=True),
                              input_fn=scripted(str(saved.install_path), 'n', '2', '2', '2'))

        assert setup.install.network == 'testnet'
        assert setup.install.execution_client == 'erigon'
        assert setup.install.withdrawal_address == ADDRESS
        assert setup.install.fee_recipient == ADDRESS
        assert setup.install.graffiti == 'node-1'
        assert setup.key_permissions == policy
