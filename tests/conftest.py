"""Shared fixtures: a scripted host for CommandRunner and a recording chown."""

import subprocess
import sys
from pathlib import Path

import pytest

SCRIPTS_DIR = Path(__file__).parent.parent / 'scripts'
sys.path.insert(0, str(SCRIPTS_DIR))

from host_commands import CommandError, CommandRunner
from models import InstallConfig


class FakeHost(CommandRunner):
    """CommandRunner that simulates users, groups and the crontab in memory.

    Every command is recorded in .calls. Commands whose leading words match
    an entry in fail_on exit with status 1.
    """

    def __init__(self, users=None, groups=None, crontab=None, fail_on=()):
        super().__init__(dry_run=False)
        self.users = {name: set(g) for name, g in (users or {}).items()}
        self.groups = set(groups or ())
        self.crontab = crontab
        self.fail_on = [tuple(f) for f in fail_on]
        self.calls = []

    def commands(self, name):
        return [c for c in self.calls if c[0] == name]

    def _result(self, cmd, rc, stdout=''):
        return subprocess.CompletedProcess(cmd, rc, stdout=stdout, stderr='' if rc == 0 else 'failed')

    def _simulate(self, cmd, input):
        name, args = cmd[0], cmd[1:]
        if name == 'id' and args[0] == '-u':
            return self._result(cmd, 0 if args[1] in self.users else 1)
        if name == 'id' and args[0] == '-nG':
            if args[1] not in self.users:
                return self._result(cmd, 1)
            return self._result(cmd, 0, ' '.join(sorted(self.users[args[1]])) + '\n')
        if name == 'getent':
            return self._result(cmd, 0 if args[1] in self.groups else 1)
        if name == 'groupadd':
            self.groups.add(args[-1])
        elif name == 'useradd':
            self.users[args[-1]] = {args[-1]}
        elif name == 'usermod':
            self.users[args[-1]].update(args[-2].split(','))
        elif name == 'crontab' and args == ['-l']:
            if self.crontab is None:
                return self._result(cmd, 1)
            return self._result(cmd, 0, self.crontab)
        elif name == 'crontab' and args == ['-']:
            self.crontab = input
        return self._result(cmd, 0)

    def run(self, *args, check=True, capture=True, input=None, cwd=None):
        cmd = [str(a) for a in args]
        self.calls.append(cmd)
        if any(tuple(cmd[:len(f)]) == f for f in self.fail_on):
            result = self._result(cmd, 1)
        else:
            result = self._simulate(cmd, input)
        if check and result.returncode != 0:
            raise CommandError(cmd, result.returncode, result.stderr)
        return result


@pytest.fixture
def host():
    return FakeHost(users={'alice': {'alice'}}, groups={'alice'})


@pytest.fixture
def chown_calls(monkeypatch):
    """Replace shutil.chown so tests can run unprivileged."""
    calls = []

    def fake_chown(path, user=None, group=None):
        calls.append((Path(path), user, group))

    monkeypatch.setattr('shutil.chown', fake_chown)
    return calls


@pytest.fixture
def make_config(tmp_path):
    def _make(**overrides):
        values = {
            'install_path': tmp_path / 'blockchain',
            'execution_client': 'geth',
            'consensus_client': 'lighthouse',
            'network': 'mainnet',
            'main_user': 'alice',
        }
        values.update(overrides)
        return InstallConfig(**values)
    return _make
