"""
Render start_execution.sh, start_consensus.sh and start_validator.sh.

Each launcher is a fixed bash preamble plus one docker run command rendered
from a Jinja2 template. Output depends only on the install configuration,
so identical inputs produce byte-identical scripts.
"""

import os
import shlex
from pathlib import Path

from jinja2 import FileSystemLoader, StrictUndefined
from jinja2.sandbox import SandboxedEnvironment

from clients import (
    CONSENSUS_CLIENT_METADATA,
    DOCKER_GROUP,
    EXECUTION_CLIENT_METADATA,
    NETWORK_METADATA,
    VALIDATOR_CLIENT_METADATA,
)
from host_commands import PermissionReport
from models import InstallConfig
from provisioning import apply_ownership

DEFAULT_TEMPLATES_DIR = Path(__file__).parent.parent / 'templates'

LAUNCHER_MODE = 0o755

# role -> (script name, client metadata table, InstallConfig attribute)
LAUNCHER_ROLES = {
    'execution': ('start_execution.sh', EXECUTION_CLIENT_METADATA, 'execution_client'),
    'consensus': ('start_consensus.sh', CONSENSUS_CLIENT_METADATA, 'consensus_client'),
    'validator': ('start_validator.sh', VALIDATOR_CLIENT_METADATA, 'validator_client'),
}


def shell_quote(value) -> str:
    """Quote a value for safe use as a single shell word."""
    return shlex.quote(str(value))


def create_environment(templates_dir: Path = DEFAULT_TEMPLATES_DIR) -> SandboxedEnvironment:
    env = SandboxedEnvironment(
        loader=FileSystemLoader(templates_dir / 'launchers'),
        undefined=StrictUndefined,
        keep_trailing_newline=True,
    )
    env.filters['shquote'] = shell_quote
    return env


def build_launcher_context(config: InstallConfig, role: str) -> dict:
    """Values interpolated into a launcher template."""
    _, metadata, attr = LAUNCHER_ROLES[role]
    client = getattr(config, attr)
    display_name, account, image, _ = metadata[client]
    network = NETWORK_METADATA[config.network]

    return {
        'CLIENT': client,
        'CLIENT_NAME': display_name,
        'ACCOUNT': account,
        'IMAGE': image,
        'INSTALL_PATH': str(config.install_path),
        'NETWORK': config.network,
        'EXECUTION_FLAG': network['execution_flag'],
        'LIGHTHOUSE_FLAG': network['lighthouse_flag'],
        'PRYSM_FLAG': network['prysm_flag'],
        'CHECKPOINT_URL': network['checkpoint_url'],
        'PRUNED': client == 'erigon-pruned',
        'FEE_RECIPIENT': config.fee_recipient or '',
        'GRAFFITI': config.graffiti,
    }


def render_launcher(config: InstallConfig, role: str, templates_dir: Path = DEFAULT_TEMPLATES_DIR) -> str:
    """Render the launcher script text for a role.

    Raises:
        KeyError: If role is unknown
        ValueError: If a validator launcher is requested without fee recipient
    """
    if role not in LAUNCHER_ROLES:
        raise KeyError(f"Unknown launcher role: {role}")
    if role == 'validator' and not config.fee_recipient:
        raise ValueError("fee_recipient is required to render the validator launcher")

    _, metadata, attr = LAUNCHER_ROLES[role]
    template_name = metadata[getattr(config, attr)][3]
    env = create_environment(templates_dir)
    template = env.get_template(template_name)
    return template.render(**build_launcher_context(config, role))


def launcher_path(config: InstallConfig, role: str) -> Path:
    return config.install_path / LAUNCHER_ROLES[role][0]


def write_launcher(config: InstallConfig, role: str, templates_dir: Path = DEFAULT_TEMPLATES_DIR,
                   dry_run: bool = False) -> Path:
    """Render and write a launcher, replacing any previous version.

    The script is made executable and owned by the operating user and the
    docker group.

    Raises:
        PermissionNormalizationError: If chown/chmod failed
    """
    content = render_launcher(config, role, templates_dir)
    path = launcher_path(config, role)
    if dry_run:
        print(f"  [dry-run] write {path}:")
        for line in content.splitlines():
            print(f"    {line}")
        return path

    path.write_text(content, encoding='utf-8')
    report = PermissionReport()
    apply_ownership(path, config.main_user, DOCKER_GROUP, LAUNCHER_MODE, report)
    report.raise_if_failed()
    return path


def is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)
