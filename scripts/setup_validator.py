#!/usr/bin/env python3
"""
Pulse Validator Setup

Sets up the validator client on a host prepared by setup_node.py:
generates, imports or restores validator keys through staking-deposit-cli,
imports them into the validator client, hardens key permissions and writes
start_validator.sh.

Usage:
    sudo python3 scripts/setup_validator.py [--install-path /blockchain]
    sudo python3 scripts/setup_validator.py --variant import --no-cron
"""

import argparse
import getpass
import os
import sys
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from clients import NETWORK_METADATA, VALIDATOR_CLIENT_METADATA, VALIDATOR_GROUP
from host_commands import CommandRunner, MissingDependencyError, SetupAborted, SetupError
from integration import register_reboot_jobs, run_monitoring_setup
from launchers import write_launcher
from models import InstallConfig, SetupFile
from node_config import (
    load_saved_setup,
    load_setup_file,
    print_validation_errors,
    save_setup_file,
    saved_config_path,
)
from prompts import ask, choose, confirm, require_confirmation
from provisioning import (
    VALIDATOR_DATA_DIR_MODE,
    add_user_to_groups,
    ensure_directories,
    ensure_wallet_password,
    normalize_tree,
    provision_accounts,
    validator_accounts,
    validator_directories,
)
from software import pull_images
from validator_keys import KEY_VARIANTS, ensure_deposit_cli, obtain_keys, prompt_address

MIN_WALLET_PASSWORD_LENGTH = 8
MAX_GRAFFITI_LENGTH = 32

WITHDRAWAL_WARNING = """
Attention:

The next step requires you to enter the wallet address that you would like to use for receiving
validator rewards while validating and withdrawing your funds when you exit the validator pool.
This is the Withdrawal- or Execution-Wallet (they are the same).

Make sure you have full access to this Wallet. Once set, it cannot be changed.
"""


def prompt_wallet_password(getpass_fn: Callable[[str], str] = getpass.getpass) -> str:
    """Ask for the Prysm wallet password twice until both entries match."""
    while True:
        try:
            password = getpass_fn('Enter a password for the Prysm wallet: ')
            again = getpass_fn('Confirm the password: ')
        except (EOFError, KeyboardInterrupt):
            raise SetupAborted('Password entry aborted.', exit_code=1)
        if len(password) < MIN_WALLET_PASSWORD_LENGTH:
            print(f"Password must be at least {MIN_WALLET_PASSWORD_LENGTH} characters.")
        elif password != again:
            print("Passwords do not match. Please try again.")
        else:
            return password


def prompt_graffiti(default: str = '', input_fn: Callable[[str], str] = input) -> str:
    """Ask for graffiti until it fits the validator limit."""
    while True:
        graffiti = ask(f'Enter your graffiti (max {MAX_GRAFFITI_LENGTH} characters)',
                       default=default or None, input_fn=input_fn)
        if len(graffiti) <= MAX_GRAFFITI_LENGTH:
            return graffiti
        print(f"Graffiti is {len(graffiti)} characters long. Please use at most {MAX_GRAFFITI_LENGTH}.")


def load_node_setup(args: argparse.Namespace) -> SetupFile:
    """Configuration written by setup_node.py (or given with --config).

    Raises:
        MissingDependencyError: If no node configuration exists
    """
    if args.config:
        return load_setup_file(Path(args.config))
    setup = load_saved_setup(Path(args.install_path))
    if setup is None:
        raise MissingDependencyError(
            f"No node configuration found at {saved_config_path(Path(args.install_path))}. "
            "Run setup_node.py first."
        )
    return setup


def collect_validator_config(base: InstallConfig, variant: str,
                             input_fn: Callable[[str], str] = input) -> InstallConfig:
    """Collect withdrawal address, fee recipient and graffiti.

    Builds the final, immutable InstallConfig for this run.

    Raises:
        SetupAborted: If the operator declines or aborts
    """
    withdrawal = base.withdrawal_address
    if variant in ('generate', 'restore'):
        print(WITHDRAWAL_WARNING)
        if variant == 'generate':
            require_confirmation(
                "I have read this information and confirm that I understand the importance "
                "of using the right Withdrawal-Wallet Address.", input_fn=input_fn)
        if withdrawal and confirm(f"Use the saved withdrawal address {withdrawal}?",
                                  input_fn=input_fn, default=True):
            pass
        else:
            withdrawal = prompt_address(input_fn=input_fn)

    fee_recipient = base.fee_recipient
    if fee_recipient and confirm(f"Keep fee-recipient address {fee_recipient}?", input_fn=input_fn, default=True):
        pass
    elif withdrawal and confirm("Use the withdrawal address as fee-recipient?", input_fn=input_fn, default=True):
        fee_recipient = withdrawal
    else:
        fee_recipient = prompt_address('Please enter your fee-recipient address: ', input_fn=input_fn)

    graffiti = prompt_graffiti(base.graffiti, input_fn=input_fn)

    return InstallConfig.model_validate({
        **base.model_dump(),
        'withdrawal_address': withdrawal,
        'fee_recipient': fee_recipient,
        'graffiti': graffiti,
    })


def run_validator_setup(setup: SetupFile, variant: str, runner: CommandRunner, args: argparse.Namespace,
                        input_fn: Callable[[str], str] = input,
                        getpass_fn: Callable[[str], str] = getpass.getpass) -> Path:
    """Run every validator setup step in order. Returns the launcher path.

    Raises:
        SetupError: On the first failed step; later steps are not run
    """
    config = setup.install
    dry_run = runner.dry_run

    print("\nSetting up validator account and folders...")
    provision_accounts(runner, validator_accounts(config))
    add_user_to_groups(runner, config.main_user, [VALIDATOR_GROUP])
    ensure_directories(validator_directories(config), dry_run=dry_run)

    if variant in ('generate', 'restore'):
        print("\nPreparing staking-deposit-cli...")
        ensure_deposit_cli(config, runner)

    if not args.skip_pull:
        pull_images(runner, [VALIDATOR_CLIENT_METADATA[config.validator_client][2]])

    if config.validator_client == 'prysm' and not dry_run:
        if ensure_wallet_password(config, password_source=lambda: prompt_wallet_password(getpass_fn)):
            print("  Prysm wallet password file created")

    obtain_keys(variant, config, runner, setup.key_permissions, input_fn=input_fn, offline=args.offline)

    print("\nGenerating start_validator.sh...")
    launcher = write_launcher(config, 'validator', dry_run=dry_run)

    if not dry_run:
        data_dir = validator_directories(config)[0]
        normalize_tree(data_dir.path, data_dir.owner, data_dir.group, VALIDATOR_DATA_DIR_MODE)

    if not args.no_cron:
        print("\nRegistering start_validator.sh with cron...")
        register_reboot_jobs(runner, [launcher])

    if not dry_run:
        save_setup_file(saved_config_path(config.install_path), setup)

    if args.monitoring_script:
        print("\nRunning Prometheus/Grafana monitoring setup...")
        run_monitoring_setup(runner, Path(args.monitoring_script))

    return launcher


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Set up a PulseChain validator client')
    parser.add_argument('--install-path', default='/blockchain',
                        help='Install path used by setup_node.py')
    parser.add_argument('--config', help='Path to node-setup.yaml (defaults to <install-path>/node-setup.yaml)')
    parser.add_argument('--variant', choices=sorted(KEY_VARIANTS),
                        help='Key variant: generate, import or restore (menu if omitted)')
    parser.add_argument('--offline', action='store_true',
                        help='Disable networking while the mnemonic is generated or entered')
    parser.add_argument('--skip-pull', action='store_true', help='Do not pull the validator image')
    parser.add_argument('--no-cron', action='store_true', help='Do not add an @reboot cron entry')
    parser.add_argument('--monitoring-script', help='Monitoring setup script to run afterwards')
    parser.add_argument('--dry-run', action='store_true',
                        help='Print the commands and files that would be written')
    return parser


def main(argv: Optional[list[str]] = None, input_fn: Callable[[str], str] = input,
         getpass_fn: Callable[[str], str] = getpass.getpass) -> int:
    args = build_parser().parse_args(argv)
    runner = CommandRunner(dry_run=args.dry_run)

    if not args.dry_run and os.geteuid() != 0:
        print("Error: setup_validator.py must be run as root (use sudo), or pass --dry-run")
        return 1

    try:
        node_setup = load_node_setup(args)
        print(f"Setting up a validator on {NETWORK_METADATA[node_setup.install.network]['display_name']}")
        variant = args.variant or choose('Validator Key Setup', list(KEY_VARIANTS.items()), input_fn=input_fn)
        install = collect_validator_config(node_setup.install, variant, input_fn=input_fn)
        setup = SetupFile(install=install, firewall=node_setup.firewall,
                          key_permissions=node_setup.key_permissions)
        launcher = run_validator_setup(setup, variant, runner, args, input_fn=input_fn, getpass_fn=getpass_fn)
    except SetupAborted as e:
        print(e)
        return e.exit_code
    except ValidationError as e:
        print_validation_errors(e)
        return 1
    except (SetupError, ValueError) as e:
        print(f"\nError: {e}")
        return 1

    print(f"\n{'='*60}")
    print("Validator setup complete!" if not args.dry_run else "Dry run complete!")
    print(f"{'='*60}")
    print(f"  Launcher: {launcher}")
    print("\nNote: Sync the chain fully before submitting your deposit_keys to prevent slashing;")
    print("      avoid using the same keys on multiple machines.")
    print("Due to changes in file permissions it is highly recommended to reboot the system now.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
