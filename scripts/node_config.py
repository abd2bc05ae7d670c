"""
Load and save node-setup.yaml.

Loading uses PyYAML + pydantic validation. Saving uses ruamel.yaml so the
file written into the install path keeps a readable layout and a header
comment, and is replaced atomically.
"""

import getpass
import os
from pathlib import Path
from typing import Optional

import yaml
from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.comments import CommentedMap

from models import SetupFile, validate_setup_file

SAVED_CONFIG_NAME = 'node-setup.yaml'
SAVED_CONFIG_MODE = 0o640

CONFIG_HEADER = """\
Pulse node setup configuration
Written by setup_node.py; read back by setup_validator.py.
Edit and re-run setup_node.py --config <this file> to re-apply."""


def get_main_user() -> str:
    """Get the operating user, looking through sudo."""
    sudo_user = os.environ.get('SUDO_USER', '').strip()
    if sudo_user and sudo_user != 'root':
        return sudo_user
    return getpass.getuser()


def saved_config_path(install_path: Path) -> Path:
    return Path(install_path) / SAVED_CONFIG_NAME


def print_validation_errors(error: ValidationError) -> None:
    """Print one `loc: msg` line per failed field."""
    print("\n  Configuration validation: FAILED")
    print("  " + "-" * 50)
    for detail in error.errors():
        loc = ' -> '.join(str(x) for x in detail['loc'])
        print(f"  {loc}: {detail['msg']}")
    print("  " + "-" * 50)


def load_setup_file(config_file: Path) -> SetupFile:
    """Load and validate a setup configuration file.

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the file is empty or not a mapping
        pydantic.ValidationError: If validation fails
    """
    raw = yaml.safe_load(Path(config_file).read_text(encoding='utf-8'))
    if not isinstance(raw, dict):
        raise ValueError(f"{config_file} does not contain a YAML mapping")
    if 'install' not in raw:
        raise ValueError(f"Missing required key in {config_file.name}: install")

    try:
        setup = validate_setup_file(raw)
        print("  Configuration validation: PASSED")
    except ValidationError as e:
        print_validation_errors(e)
        raise

    return setup


def load_saved_setup(install_path: Path) -> Optional[SetupFile]:
    """Load the configuration saved by a previous run, if any."""
    path = saved_config_path(install_path)
    if not path.exists():
        return None
    return load_setup_file(path)


def setup_to_yaml_map(setup: SetupFile) -> CommentedMap:
    """Convert a SetupFile into a ruamel map with octal modes kept readable."""
    data = setup.model_dump(mode='json')
    root = CommentedMap()
    root.yaml_set_start_comment(CONFIG_HEADER)

    for section in ('install', 'firewall', 'key_permissions'):
        section_map = CommentedMap()
        for key, value in data[section].items():
            section_map[key] = value
        root[section] = section_map

    for key, value in list(root['key_permissions'].items()):
        if key.endswith('_mode'):
            root['key_permissions'].yaml_add_eol_comment(oct(value), key)
    return root


def save_setup_file(config_file: Path, setup: SetupFile) -> None:
    """Save the setup configuration atomically."""
    yaml_writer = YAML()
    yaml_writer.indent(mapping=2, sequence=4, offset=2)
    yaml_writer.default_flow_style = False

    config_file = Path(config_file)
    tmp_path = config_file.with_suffix('.yaml.tmp')
    with tmp_path.open('w', encoding='utf-8') as f:
        yaml_writer.dump(setup_to_yaml_map(setup), f)
    os.chmod(tmp_path, SAVED_CONFIG_MODE)
    tmp_path.replace(config_file)
