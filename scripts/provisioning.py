"""
Idempotent host provisioning: groups, accounts, directories and secrets.

Every function here is safe to re-run. Existing accounts only gain missing
group memberships, directories are created if missing and never removed,
and secrets are generated at most once. Privileged commands are checked;
the first failure raises CommandError and aborts the sequence.
"""

import os
import secrets
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterable, Optional

from clients import (
    DOCKER_GROUP,
    SHARED_SECRETS_GROUP,
    VALIDATOR_GROUP,
    get_consensus_account,
    get_execution_account,
    get_validator_account,
)
from host_commands import CommandRunner, PermissionReport
from models import HostAccount, InstallConfig

JWT_SECRET_NAME = 'jwt.hex'
JWT_SECRET_MODE = 0o640
WALLET_PASSWORD_NAME = 'pw.txt'
WALLET_PASSWORD_MODE = 0o640

INSTALL_DIR_MODE = 0o770
CLIENT_DIR_MODE = 0o750
VALIDATOR_DATA_DIR_MODE = 0o770
VALIDATOR_KEYS_DIR_MODE = 0o750


@dataclass(frozen=True)
class DirectorySpec:
    """A directory with the owner, group and mode consumers rely on."""
    path: Path
    owner: str
    group: str
    mode: int


@dataclass
class HostProbe:
    """Snapshot of host state taken before provisioning."""
    existing_accounts: set = field(default_factory=set)
    existing_groups: set = field(default_factory=set)
    existing_directories: set = field(default_factory=set)
    jwt_secret_present: bool = False
    docker_installed: bool = False


def node_accounts(config: InstallConfig) -> list[HostAccount]:
    """Accounts for the execution and consensus clients.

    Both share the secrets group so they can read jwt.hex.
    """
    groups = (DOCKER_GROUP, SHARED_SECRETS_GROUP)
    execution = get_execution_account(config.execution_client)
    consensus = get_consensus_account(config.consensus_client)
    return [
        HostAccount(username=execution, groups=groups),
        HostAccount(username=consensus, groups=groups),
    ]


def validator_accounts(config: InstallConfig) -> list[HostAccount]:
    return [
        HostAccount(username=get_validator_account(config.validator_client),
                    groups=(DOCKER_GROUP, VALIDATOR_GROUP)),
    ]


def node_directories(config: InstallConfig) -> list[DirectorySpec]:
    """Directory plan for execution and consensus client data."""
    root = config.install_path
    execution = get_execution_account(config.execution_client)
    consensus = get_consensus_account(config.consensus_client)
    return [
        DirectorySpec(root, config.main_user, DOCKER_GROUP, INSTALL_DIR_MODE),
        DirectorySpec(root / 'execution', execution, DOCKER_GROUP, CLIENT_DIR_MODE),
        DirectorySpec(root / 'execution' / execution, execution, DOCKER_GROUP, CLIENT_DIR_MODE),
        DirectorySpec(root / 'consensus', consensus, DOCKER_GROUP, CLIENT_DIR_MODE),
        DirectorySpec(root / 'consensus' / consensus, consensus, DOCKER_GROUP, CLIENT_DIR_MODE),
    ]


def validator_directories(config: InstallConfig) -> list[DirectorySpec]:
    """Directory plan for validator data and key material."""
    root = config.install_path
    validator = get_validator_account(config.validator_client)
    data_dir = 'validators' if config.validator_client == 'lighthouse' else 'wallet'
    return [
        DirectorySpec(root / data_dir, validator, VALIDATOR_GROUP, VALIDATOR_DATA_DIR_MODE),
        DirectorySpec(root / 'validator_keys', config.main_user, VALIDATOR_GROUP, VALIDATOR_KEYS_DIR_MODE),
    ]


def account_exists(runner: CommandRunner, username: str) -> bool:
    return runner.succeeds('id', '-u', username)


def group_exists(runner: CommandRunner, group: str) -> bool:
    return runner.succeeds('getent', 'group', group)


def get_account_groups(runner: CommandRunner, username: str) -> set[str]:
    """Current supplementary and primary groups of an account."""
    result = runner.run('id', '-nG', username, check=False)
    if result.returncode != 0:
        return set()
    return set((result.stdout or '').split())


def ensure_group(runner: CommandRunner, group: str) -> bool:
    """Create a group if missing. Returns True if it was created."""
    if group_exists(runner, group):
        return False
    runner.run('groupadd', group)
    return True


def ensure_account(runner: CommandRunner, account: HostAccount) -> bool:
    """Create an account if missing and add any missing group memberships.

    Group memberships are only ever added, never removed.

    Returns:
        True if the account was created on this call
    """
    for group in account.groups:
        ensure_group(runner, group)

    created = False
    if not account_exists(runner, account.username):
        runner.run('useradd', '--no-create-home', '--shell', '/bin/false', account.username)
        created = True

    missing = [g for g in account.groups if g not in get_account_groups(runner, account.username)]
    if missing:
        runner.run('usermod', '-aG', ','.join(missing), account.username)
    return created


def add_user_to_groups(runner: CommandRunner, username: str, groups: Iterable[str]) -> None:
    """Add an existing user (e.g. the operating user) to groups."""
    groups = list(groups)
    for group in groups:
        ensure_group(runner, group)
    missing = [g for g in groups if g not in get_account_groups(runner, username)]
    if missing:
        runner.run('usermod', '-aG', ','.join(missing), username)


def apply_ownership(path: Path, owner: str, group: str, mode: int, report: PermissionReport) -> None:
    """Set owner, group and mode on a single path, recording failures."""
    try:
        shutil.chown(path, user=owner, group=group)
    except (OSError, LookupError) as e:
        report.record(path, f'chown {owner}:{group}', e)
    try:
        os.chmod(path, mode)
    except OSError as e:
        report.record(path, f'chmod {oct(mode)}', e)


def ensure_directories(specs: Iterable[DirectorySpec], dry_run: bool = False) -> list[Path]:
    """Create missing directories and normalize owner/group/mode.

    Existing directories and their contents are left in place; only the
    directory's own ownership and mode are normalized.

    Returns:
        Directories that were created on this call

    Raises:
        PermissionNormalizationError: If any chown/chmod failed
    """
    created = []
    report = PermissionReport()
    for spec in specs:
        if dry_run:
            print(f"  [dry-run] ensure {spec.path} {spec.owner}:{spec.group} {oct(spec.mode)}")
            continue
        if not spec.path.is_dir():
            spec.path.mkdir(parents=True, exist_ok=True)
            created.append(spec.path)
        apply_ownership(spec.path, spec.owner, spec.group, spec.mode, report)
    report.raise_if_failed()
    return created


def write_secret(path: Path, content: str, mode: int) -> None:
    """Write a secret file created with its final mode (no readable window)."""
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
    with os.fdopen(fd, 'w', encoding='utf-8') as f:
        f.write(content)
    os.chmod(path, mode)


def ensure_jwt_secret(config: InstallConfig, regenerate: bool = False, dry_run: bool = False) -> bool:
    """Generate jwt.hex once and normalize its permissions.

    The execution account owns it; the shared group lets the consensus
    client read it.

    Returns:
        True if a new secret was written
    """
    jwt_path = config.install_path / JWT_SECRET_NAME
    owner = get_execution_account(config.execution_client)
    if dry_run:
        action = 'generate' if regenerate or not jwt_path.exists() else 'keep'
        print(f"  [dry-run] {action} {jwt_path} {owner}:{SHARED_SECRETS_GROUP} {oct(JWT_SECRET_MODE)}")
        return False

    generated = False
    if regenerate or not jwt_path.exists():
        write_secret(jwt_path, secrets.token_hex(32), JWT_SECRET_MODE)
        generated = True

    report = PermissionReport()
    apply_ownership(jwt_path, owner, SHARED_SECRETS_GROUP, JWT_SECRET_MODE, report)
    report.raise_if_failed()
    return generated


def ensure_wallet_password(
    config: InstallConfig,
    password: Optional[str] = None,
    password_source=None,
) -> bool:
    """Create the Prysm wallet password file once.

    Args:
        config: Install configuration
        password: Password to write; if None, password_source() is called
        password_source: Callable returning a password (only used if the
            file does not exist yet)

    Returns:
        True if the file was written on this call
    """
    wallet_dir = config.install_path / 'wallet'
    pw_path = wallet_dir / WALLET_PASSWORD_NAME
    validator = get_validator_account(config.validator_client)

    written = False
    if not pw_path.exists():
        if password is None:
            password = password_source()
        wallet_dir.mkdir(parents=True, exist_ok=True)
        write_secret(pw_path, password, WALLET_PASSWORD_MODE)
        written = True

    report = PermissionReport()
    apply_ownership(pw_path, validator, VALIDATOR_GROUP, WALLET_PASSWORD_MODE, report)
    report.raise_if_failed()
    return written


def normalize_tree(root: Path, owner: str, group: str, dir_mode: int,
                   file_mode: Optional[int] = None) -> None:
    """Normalize ownership below root without deleting anything.

    Raises:
        PermissionNormalizationError: If any chown/chmod failed
    """
    report = PermissionReport()
    if not root.exists():
        return
    apply_ownership(root, owner, group, dir_mode, report)
    for path in sorted(root.rglob('*')):
        if path.is_dir():
            apply_ownership(path, owner, group, dir_mode, report)
        elif file_mode is not None:
            apply_ownership(path, owner, group, file_mode, report)
        else:
            try:
                shutil.chown(path, user=owner, group=group)
            except (OSError, LookupError) as e:
                report.record(path, f'chown {owner}:{group}', e)
    report.raise_if_failed()


def probe_host(config: InstallConfig, runner: CommandRunner,
               accounts: Iterable[HostAccount] = (), directories: Iterable[DirectorySpec] = ()) -> HostProbe:
    """Detect which accounts, groups, directories and secrets already exist."""
    probe = HostProbe()
    accounts = list(accounts)
    groups = {g for a in accounts for g in a.groups}
    for account in accounts:
        if account_exists(runner, account.username):
            probe.existing_accounts.add(account.username)
    for group in groups:
        if group_exists(runner, group):
            probe.existing_groups.add(group)
    for spec in directories:
        if spec.path.is_dir():
            probe.existing_directories.add(spec.path)
    probe.jwt_secret_present = (config.install_path / JWT_SECRET_NAME).exists()
    probe.docker_installed = shutil.which('docker') is not None
    return probe


def provision_accounts(runner: CommandRunner, accounts: Iterable[HostAccount]) -> list[str]:
    """Ensure all accounts. Returns usernames created on this call."""
    created = []
    for account in accounts:
        if ensure_account(runner, account):
            created.append(account.username)
            print(f"  Created account {account.username} ({', '.join(account.groups)})")
        else:
            print(f"  Account {account.username} exists, group membership checked")
    return created
