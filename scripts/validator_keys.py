"""
Validator key generation, import and hardening.

Wraps the external staking-deposit-cli (deposit.sh) with a fixed argument
contract, copies key backups into place, imports keys into the validator
client and applies one explicit permission policy to the key files.
"""

import re
import shutil
from contextlib import contextmanager
from pathlib import Path
from typing import Callable, Optional

from clients import DEPOSIT_CLI_REPO, NETWORK_METADATA, VALIDATOR_CLIENT_METADATA
from host_commands import CommandRunner, MissingDependencyError, PermissionReport, SetupAborted
from models import ADDRESS_PATTERN, InstallConfig, KeyPermissions
from provisioning import apply_ownership

ADDRESS_RE = re.compile(ADDRESS_PATTERN)

DEPOSIT_CLI_DIR = 'staking-deposit-cli'
VALIDATOR_KEYS_DIR = 'validator_keys'

KEY_VARIANTS = {
    'generate': 'Generate new validator_keys (fresh)',
    'import': 'Import/Restore validator_keys from a Folder (from Offline generation or Backup)',
    'restore': 'Restore or Add from a Seed Phrase (Mnemonic) to current or initial setup',
}


def is_valid_address(address: str) -> bool:
    """Check 0x-prefixed 40 hex character address format."""
    return bool(ADDRESS_RE.match(address or ''))


def prompt_address(
    message: str = 'Please enter your Execution/Withdrawal-Wallet address: ',
    input_fn: Callable[[str], str] = input,
) -> str:
    """Prompt until a well-formed address is entered.

    An empty answer, EOF or Ctrl-C aborts.

    Raises:
        SetupAborted: If the operator aborts
    """
    while True:
        try:
            answer = input_fn(message).strip()
        except (EOFError, KeyboardInterrupt):
            raise SetupAborted('Address entry aborted.', exit_code=1)
        if not answer:
            raise SetupAborted('No address entered.', exit_code=1)
        if is_valid_address(answer):
            return answer
        print("Invalid address format. Please enter a valid PRC20 address (0x + 40 hex characters).")


def deposit_cli_path(config: InstallConfig) -> Path:
    return config.install_path / DEPOSIT_CLI_DIR


def ensure_deposit_cli(config: InstallConfig, runner: CommandRunner, repo_url: str = DEPOSIT_CLI_REPO) -> bool:
    """Clone the deposit CLI into the install path if absent, then install it.

    Returns:
        True if the repository was cloned on this call
    """
    cli_dir = deposit_cli_path(config)
    cloned = False
    if not (cli_dir / 'deposit.sh').exists():
        runner.run('git', 'clone', repo_url, cli_dir)
        cloned = True
    runner.run('./deposit.sh', 'install', cwd=cli_dir, capture=False)
    return cloned


def build_deposit_command(mode: str, config: InstallConfig, withdrawal_address: str) -> list[str]:
    """Build the deposit.sh argument list.

    Args:
        mode: 'new-mnemonic' or 'existing-mnemonic'
    """
    if mode not in ('new-mnemonic', 'existing-mnemonic'):
        raise ValueError(f"Unknown deposit mode: {mode}")
    if not is_valid_address(withdrawal_address):
        raise ValueError(f"Invalid withdrawal address: {withdrawal_address}")

    chain = NETWORK_METADATA[config.network]['deposit_chain']
    cmd = ['./deposit.sh', mode]
    if mode == 'new-mnemonic':
        cmd.append('--mnemonic_language=english')
    cmd.extend([
        f'--chain={chain}',
        f'--folder={config.install_path}',
        f'--eth1_withdrawal_address={withdrawal_address}',
    ])
    return cmd


def run_deposit_cli(mode: str, config: InstallConfig, withdrawal_address: str, runner: CommandRunner) -> None:
    """Run deposit.sh interactively (it prompts for the mnemonic and passwords)."""
    cli_dir = deposit_cli_path(config)
    if not runner.dry_run and not (cli_dir / 'deposit.sh').exists():
        raise MissingDependencyError(f"deposit.sh not found in {cli_dir}")
    runner.run(*build_deposit_command(mode, config, withdrawal_address), cwd=cli_dir, capture=False)


@contextmanager
def network_offline(runner: CommandRunner, enabled: bool):
    """Take networking down while the mnemonic is on screen, restore after."""
    if not enabled:
        yield
        return
    print("  Disabling network interfaces for key generation...")
    runner.run('nmcli', 'networking', 'off')
    try:
        yield
    finally:
        runner.run('nmcli', 'networking', 'on')
        print("  Network interfaces re-enabled")


def copy_key_backup(backup_root: Path, config: InstallConfig) -> bool:
    """Copy <backup_root>/validator_keys into the install path.

    Returns:
        True if files were copied, False if source and destination match

    Raises:
        FileNotFoundError: If the backup folder does not exist
    """
    source = Path(backup_root) / VALIDATOR_KEYS_DIR
    destination = config.install_path / VALIDATOR_KEYS_DIR
    if not source.is_dir():
        raise FileNotFoundError(f"No {VALIDATOR_KEYS_DIR} folder in {backup_root}")

    if source.resolve() == destination.resolve():
        print("Source and destination paths match. Skipping restore-copy; keys seem already in place.")
        print("Key import will still proceed...")
        return False

    shutil.copytree(source, destination, dirs_exist_ok=True)
    print("Keys successfully copied.")
    return True


def prompt_key_backup(config: InstallConfig, input_fn: Callable[[str], str] = input) -> bool:
    """Prompt for the backup root until it contains validator_keys, then copy.

    Raises:
        SetupAborted: If the operator aborts
    """
    print("Enter the path to the root directory which contains the 'validator_keys' backup-folder.")
    print("For example, if your 'validator_keys' folder is located in '/home/user/my_backup/validator_keys',")
    print("then provide the path '/home/user/my_backup'.")
    while True:
        try:
            answer = input_fn('Path to backup: ').strip()
        except (EOFError, KeyboardInterrupt):
            raise SetupAborted('Backup import aborted.', exit_code=1)
        if not answer:
            raise SetupAborted('No backup path entered.', exit_code=1)
        try:
            return copy_key_backup(Path(answer).expanduser(), config)
        except FileNotFoundError:
            print("Source directory does not exist. Please check the provided path and try again.")


def build_import_command(config: InstallConfig) -> list[str]:
    """docker run command importing validator_keys into the validator client."""
    network = NETWORK_METADATA[config.network]
    image = VALIDATOR_CLIENT_METADATA[config.validator_client][2]
    root = config.install_path

    if config.validator_client == 'lighthouse':
        return [
            'docker', 'run', '-it', '--rm', '--name', 'validator_import', '--network=host',
            '-v', f'{root}:/blockchain',
            image,
            'lighthouse', 'account', 'validator', 'import',
            '--directory=/blockchain/validator_keys',
            '--datadir=/blockchain',
            f"--network={network['lighthouse_flag']}",
        ]
    return [
        'docker', 'run', '-it', '--rm', '--name', 'validator_import',
        '-v', f'{root}/validator_keys:/keys',
        '-v', f'{root}/wallet:/wallet',
        image,
        'accounts', 'import',
        f"--{network['prysm_flag']}",
        '--keys-dir=/keys',
        '--wallet-dir=/wallet',
        '--wallet-password-file=/wallet/pw.txt',
        '--accept-terms-of-use',
    ]


def import_into_client(config: InstallConfig, runner: CommandRunner) -> None:
    print("\nImporting validator keys now\n")
    runner.run(*build_import_command(config), capture=False)


def key_file_mode(path: Path, policy: KeyPermissions) -> int:
    """Mode for a file under validator_keys according to policy."""
    name = path.name
    if name.startswith('keystore') and name.endswith('.json'):
        return policy.keystore_mode
    if name.startswith('deposit') and name.endswith('.json'):
        return policy.deposit_mode
    return policy.other_file_mode


def enforce_key_permissions(config: InstallConfig, policy: KeyPermissions, dry_run: bool = False) -> int:
    """Apply the key permission policy to everything under validator_keys.

    Files are owned by the operating user and the validator group. All
    failures are collected into a single report.

    Returns:
        Number of files processed

    Raises:
        PermissionNormalizationError: If any chown/chmod failed
    """
    keys_dir = config.install_path / VALIDATOR_KEYS_DIR
    if dry_run:
        print(f"  [dry-run] harden {keys_dir}: keystore {oct(policy.keystore_mode)}, "
              f"deposit {oct(policy.deposit_mode)}, dirs {oct(policy.directory_mode)}")
        return 0
    if not keys_dir.is_dir():
        return 0

    report = PermissionReport()
    owner = config.main_user
    count = 0
    apply_ownership(keys_dir, owner, policy.group, policy.directory_mode, report)
    for path in sorted(keys_dir.rglob('*')):
        if path.is_dir():
            apply_ownership(path, owner, policy.group, policy.directory_mode, report)
        else:
            apply_ownership(path, owner, policy.group, key_file_mode(path, policy), report)
            count += 1
    report.raise_if_failed()
    return count


def generate_new_keys(config: InstallConfig, runner: CommandRunner, withdrawal_address: str,
                      offline: bool = False) -> None:
    """Variant 1: fresh mnemonic."""
    print("\nStarting staking-cli to Generate the new validator_keys\n")
    with network_offline(runner, offline):
        run_deposit_cli('new-mnemonic', config, withdrawal_address, runner)


def restore_from_mnemonic(config: InstallConfig, runner: CommandRunner, withdrawal_address: str,
                          offline: bool = False) -> None:
    """Variant 3: re-derive keys from an existing seed phrase."""
    print("\nNow running staking-cli command to restore from your SeedPhrase (Mnemonic)\n")
    with network_offline(runner, offline):
        run_deposit_cli('existing-mnemonic', config, withdrawal_address, runner)


def obtain_keys(
    variant: str,
    config: InstallConfig,
    runner: CommandRunner,
    policy: KeyPermissions,
    input_fn: Callable[[str], str] = input,
    offline: bool = False,
    withdrawal_address: Optional[str] = None,
) -> None:
    """Run one key variant end to end: obtain, import, harden.

    Raises:
        ValueError: If variant is unknown
        SetupAborted: If the operator aborts a prompt
    """
    if variant not in KEY_VARIANTS:
        raise ValueError(f"Unknown key variant: {variant}")

    if variant in ('generate', 'restore'):
        address = withdrawal_address or config.withdrawal_address
        if not address:
            address = prompt_address(input_fn=input_fn)
        if variant == 'generate':
            generate_new_keys(config, runner, address, offline=offline)
        else:
            restore_from_mnemonic(config, runner, address, offline=offline)
    elif runner.dry_run:
        print(f"  [dry-run] copy <backup>/{VALIDATOR_KEYS_DIR} to {config.install_path / VALIDATOR_KEYS_DIR}")
    else:
        prompt_key_backup(config, input_fn=input_fn)

    import_into_client(config, runner)
    count = enforce_key_permissions(config, policy, dry_run=runner.dry_run)
    print(f"  Key permissions enforced on {count} file(s)")
