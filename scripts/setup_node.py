#!/usr/bin/env python3
"""
Pulse Node Setup

Installs and configures a PulseChain execution + consensus client pair:
- OS accounts and groups for each client
- Data directories, jwt.hex secret and permissions
- ufw firewall rules for the selected clients
- start_execution.sh / start_consensus.sh launchers
- cron @reboot entries and optional desktop shortcuts

Usage:
    sudo python3 scripts/setup_node.py [--config config/node-setup.yaml] [--dry-run]
"""

import argparse
import os
import sys
from pathlib import Path
from typing import Callable, Optional

from pydantic import ValidationError

from clients import (
    CONSENSUS_CLIENT_METADATA,
    DOCKER_GROUP,
    EXECUTION_CLIENT_METADATA,
    NETWORK_METADATA,
    get_client_images,
)
from firewall import apply_firewall, detect_local_network, plan_firewall_rules
from host_commands import CommandRunner, SetupAborted, SetupError
from integration import create_desktop_shortcut, register_reboot_jobs, start_launchers
from launchers import write_launcher
from models import FirewallConfig, InstallConfig, SetupFile
from node_config import (
    get_main_user,
    load_saved_setup,
    load_setup_file,
    print_validation_errors,
    save_setup_file,
    saved_config_path,
)
from prompts import ask, choose, confirm
from provisioning import (
    add_user_to_groups,
    ensure_directories,
    ensure_jwt_secret,
    node_accounts,
    node_directories,
    probe_host,
    provision_accounts,
)
from software import enable_time_sync, ensure_docker, install_base_packages, pull_images

DEFAULT_INSTALL_PATH = '/blockchain'


def ask_install_path(input_fn: Callable[[str], str] = input) -> str:
    """Ask for the install path until an absolute path is given."""
    while True:
        answer = ask('Enter the target path for node and client data',
                     default=DEFAULT_INSTALL_PATH, input_fn=input_fn)
        if answer.startswith('/'):
            return answer.rstrip('/') or '/'
        print("Invalid path. Please enter an absolute path, e.g. /blockchain.")


def collect_install_config(main_user: str, input_fn: Callable[[str], str] = input,
                           install_path: Optional[str] = None) -> InstallConfig:
    """Ask for network, clients and install path.

    Raises:
        SetupAborted: If the operator exits a menu
        pydantic.ValidationError: If the answers do not form a valid config
    """
    network = choose('Choose Network',
                     [(k, v['display_name']) for k, v in NETWORK_METADATA.items()], input_fn=input_fn)
    execution_client = choose('Choose an Execution Client',
                              [(k, v[0]) for k, v in EXECUTION_CLIENT_METADATA.items()], input_fn=input_fn)
    consensus_client = choose('Choose your Consensus Client',
                              [(k, v[0]) for k, v in CONSENSUS_CLIENT_METADATA.items()], input_fn=input_fn)
    if install_path is None:
        install_path = ask_install_path(input_fn)

    return InstallConfig(
        install_path=Path(install_path.rstrip('/') or '/'),
        execution_client=execution_client,
        consensus_client=consensus_client,
        network=network,
        main_user=main_user,
    )


def collect_firewall_config(runner: CommandRunner, input_fn: Callable[[str], str] = input) -> FirewallConfig:
    """Ask which access rules to add beyond the client ports."""
    local_network = detect_local_network(runner)
    restrict = False
    if local_network:
        restrict = confirm(f"Restrict RPC and SSH access to your local network ({local_network})?",
                           input_fn=input_fn, default=False)
    rpc_access = confirm("Enable RPC access on port 8545?", input_fn=input_fn, default=True)
    ssh_port = None
    if confirm("Enable SSH access to this server?", input_fn=input_fn, default=True):
        while True:
            answer = ask('Enter SSH port', default='22', input_fn=input_fn)
            if answer.isdigit() and 1 <= int(answer) <= 65535:
                ssh_port = int(answer)
                break
            print("Invalid port. Please enter a number between 1 and 65535.")

    return FirewallConfig(
        rpc_access=rpc_access,
        ssh_port=ssh_port,
        local_network=local_network if restrict else None,
    )


def carry_over_validator_settings(setup: SetupFile, saved: SetupFile) -> SetupFile:
    """Keep the validator answers and key policy of a previous run.

    Node questions are answered again; withdrawal address, fee recipient,
    graffiti and key_permissions belong to setup_validator.py.
    """
    install = InstallConfig.model_validate({
        **setup.install.model_dump(),
        'withdrawal_address': saved.install.withdrawal_address,
        'fee_recipient': saved.install.fee_recipient,
        'graffiti': saved.install.graffiti,
    })
    return SetupFile(install=install, firewall=setup.firewall, key_permissions=saved.key_permissions)


def resolve_setup(args: argparse.Namespace, runner: CommandRunner,
                  input_fn: Callable[[str], str] = input) -> SetupFile:
    """Load the setup from --config, a previous run, or interactive prompts."""
    if args.config:
        print(f"Loading configuration from {args.config}")
        return load_setup_file(Path(args.config))

    main_user = get_main_user()
    install_path = ask_install_path(input_fn)
    saved = load_saved_setup(Path(install_path))
    if saved is not None:
        print(f"Found existing configuration in {saved_config_path(Path(install_path))}")
        print(f"  Network: {saved.install.network}, clients: "
              f"{saved.install.execution_client} + {saved.install.consensus_client}")
        if confirm("Re-use this configuration?", input_fn=input_fn, default=True):
            return saved

    install = collect_install_config(main_user, input_fn=input_fn, install_path=install_path)
    firewall = FirewallConfig(enable=False) if args.skip_firewall else collect_firewall_config(runner, input_fn)
    if saved is not None:
        return carry_over_validator_settings(SetupFile(install=install, firewall=firewall), saved)
    return SetupFile(install=install, firewall=firewall)


def print_summary_header(setup: SetupFile) -> None:
    config = setup.install
    print(f"\n{'='*60}")
    print("Node configuration")
    print(f"{'='*60}")
    print(f"  Network: {NETWORK_METADATA[config.network]['display_name']}")
    print(f"  Execution client: {EXECUTION_CLIENT_METADATA[config.execution_client][0]}")
    print(f"  Consensus client: {CONSENSUS_CLIENT_METADATA[config.consensus_client][0]}")
    print(f"  Install path: {config.install_path}")
    print(f"  Operating user: {config.main_user}")


def run_node_setup(setup: SetupFile, runner: CommandRunner, args: argparse.Namespace) -> list[Path]:
    """Run every node setup step in order. Returns the launcher paths.

    Raises:
        SetupError: On the first failed step; later steps are not run
    """
    config = setup.install
    dry_run = runner.dry_run
    accounts = node_accounts(config)
    directories = node_directories(config)

    probe = probe_host(config, runner, accounts, directories)
    print("\nProbing host...")
    print(f"  Existing accounts: {sorted(probe.existing_accounts) or 'none'}")
    print(f"  Existing directories: {len(probe.existing_directories)} of {len(directories)}")
    print(f"  jwt.hex present: {probe.jwt_secret_present}")
    print(f"  Docker installed: {probe.docker_installed}")

    if not args.skip_software:
        print("\nInstalling software...")
        install_base_packages(runner)
        ensure_docker(runner)
        enable_time_sync(runner)

    print("\nSetting up user accounts and permissions...")
    provision_accounts(runner, accounts)
    add_user_to_groups(runner, config.main_user, [DOCKER_GROUP])

    print("\nCreating folders...")
    created = ensure_directories(directories, dry_run=dry_run)
    for path in created:
        print(f"  Created {path}")

    if ensure_jwt_secret(config, regenerate=args.regenerate_jwt, dry_run=dry_run):
        print("  jwt.hex secret generated")
    elif not dry_run:
        print("  jwt.hex secret kept, permissions normalized")

    if setup.firewall.enable and not args.skip_firewall:
        print("\nConfiguring firewall...")
        apply_firewall(runner, plan_firewall_rules(config, setup.firewall))

    if not args.skip_pull:
        print("\nPulling client images...")
        pull_images(runner, get_client_images(config.execution_client, config.consensus_client))

    print("\nGenerating launcher scripts...")
    launchers = []
    for role in ('execution', 'consensus'):
        path = write_launcher(config, role, dry_run=dry_run)
        launchers.append(path)
        print(f"  Created {path.name}")

    if not args.no_cron:
        print("\nRegistering launchers with cron...")
        register_reboot_jobs(runner, launchers)

    if args.shortcuts:
        print("\nCreating desktop shortcuts...")
        for path in launchers:
            if dry_run:
                print(f"  [dry-run] shortcut for {path.name}")
                continue
            shortcut = create_desktop_shortcut(path, path.stem, config.main_user)
            print(f"  Created {shortcut}")

    if not dry_run:
        save_setup_file(saved_config_path(config.install_path), setup)
        print(f"\n  Saved configuration to {saved_config_path(config.install_path)}")

    if args.start and not dry_run:
        print("\nStarting clients...")
        start_launchers(runner, launchers)

    return launchers


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Set up a PulseChain execution + consensus node')
    parser.add_argument('--config', help='Path to node-setup.yaml (skips interactive questions)')
    parser.add_argument('--dry-run', action='store_true',
                        help='Print the commands and files that would be written')
    parser.add_argument('--skip-software', action='store_true',
                        help='Skip apt package, Docker and NTP setup')
    parser.add_argument('--skip-firewall', action='store_true', help='Do not touch ufw')
    parser.add_argument('--skip-pull', action='store_true', help='Do not pull client images')
    parser.add_argument('--no-cron', action='store_true', help='Do not add @reboot cron entries')
    parser.add_argument('--shortcuts', action='store_true', help='Create desktop shortcuts for launchers')
    parser.add_argument('--start', action='store_true', help='Start the clients when setup finishes')
    parser.add_argument('--regenerate-jwt', action='store_true',
                        help='Replace an existing jwt.hex with a new secret')
    return parser


def main(argv: Optional[list[str]] = None, input_fn: Callable[[str], str] = input) -> int:
    args = build_parser().parse_args(argv)
    runner = CommandRunner(dry_run=args.dry_run)

    if not args.dry_run and os.geteuid() != 0:
        print("Error: setup_node.py must be run as root (use sudo), or pass --dry-run")
        return 1

    try:
        setup = resolve_setup(args, runner, input_fn=input_fn)
    except SetupAborted as e:
        print(e)
        return e.exit_code
    except ValidationError as e:
        if not args.config:
            print_validation_errors(e)
        return 1
    except (ValueError, FileNotFoundError) as e:
        print(f"Error: {e}")
        return 1

    print_summary_header(setup)
    if args.dry_run:
        print("\n=== DRY RUN - No changes will be made ===")

    try:
        launchers = run_node_setup(setup, runner, args)
    except SetupAborted as e:
        print(e)
        return e.exit_code
    except SetupError as e:
        print(f"\nError: {e}")
        print("Setup stopped; the host is left as the last successful step made it.")
        return 1

    print(f"\n{'='*60}")
    print("Node setup complete!" if not args.dry_run else "Dry run complete!")
    print(f"{'='*60}")
    for path in launchers:
        print(f"  Launcher: {path}")
    print("\nNext steps:")
    print(f"  1. Start the clients: {setup.install.install_path}/start_execution.sh "
          f"and {setup.install.install_path}/start_consensus.sh")
    print("  2. Set up a validator: sudo python3 scripts/setup_validator.py")
    print("  3. Reboot so new group memberships take effect")
    return 0


if __name__ == '__main__':
    sys.exit(main())
