"""
Pydantic models for node setup configuration.

Validates the install configuration before any host state is touched,
catching bad addresses, unknown clients and relative paths early with
clear error messages.
"""

import ipaddress
from pathlib import Path
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from clients import CONSENSUS_CLIENT_METADATA, EXECUTION_CLIENT_METADATA, VALIDATOR_GROUP

ADDRESS_PATTERN = r'^0x[a-fA-F0-9]{40}$'

Network = Literal['mainnet', 'testnet']


class InstallConfig(BaseModel):
    """Configuration collected once per host and passed to every step."""
    model_config = ConfigDict(frozen=True)

    install_path: Path = Field(Path('/blockchain'), description="Root folder for node and client data")
    execution_client: str = Field(..., description="Execution client key (see EXECUTION_CLIENT_METADATA)")
    consensus_client: str = Field(..., description="Consensus client key (see CONSENSUS_CLIENT_METADATA)")
    network: Network = 'mainnet'
    main_user: str = Field(..., min_length=1, pattern=r'^[a-z_][a-z0-9_-]*\$?$',
                           description="Operating user that owns launchers")
    withdrawal_address: Optional[str] = Field(None, pattern=ADDRESS_PATTERN)
    fee_recipient: Optional[str] = Field(None, pattern=ADDRESS_PATTERN)
    graffiti: str = Field('', max_length=32)

    @field_validator('install_path')
    @classmethod
    def validate_install_path(cls, v: Path) -> Path:
        """Require an absolute path; launchers mount it into containers."""
        if not v.is_absolute():
            raise ValueError(f"install_path must be absolute, got '{v}'")
        return v

    @field_validator('execution_client')
    @classmethod
    def validate_execution_client(cls, v: str) -> str:
        if v not in EXECUTION_CLIENT_METADATA:
            raise ValueError(
                f"Invalid execution client '{v}'. Valid clients: {sorted(EXECUTION_CLIENT_METADATA)}"
            )
        return v

    @field_validator('consensus_client')
    @classmethod
    def validate_consensus_client(cls, v: str) -> str:
        if v not in CONSENSUS_CLIENT_METADATA:
            raise ValueError(
                f"Invalid consensus client '{v}'. Valid clients: {sorted(CONSENSUS_CLIENT_METADATA)}"
            )
        return v

    @field_validator('graffiti')
    @classmethod
    def validate_graffiti(cls, v: str) -> str:
        """Graffiti ends up in a single-line shell argument."""
        if '\n' in v or '\r' in v:
            raise ValueError("graffiti must be a single line")
        return v

    @property
    def validator_client(self) -> str:
        """Validator client family matches the consensus client."""
        return self.consensus_client


class HostAccount(BaseModel):
    """OS account running one client process."""
    model_config = ConfigDict(frozen=True)

    username: str = Field(..., min_length=1, pattern=r'^[a-z_][a-z0-9_-]*$')
    groups: tuple[str, ...] = ()


class KeyPermissions(BaseModel):
    """File modes applied to validator key material.

    Every key flow (generate, import, restore) applies the same policy.
    """
    keystore_mode: int = Field(0o440, ge=0, le=0o777)
    deposit_mode: int = Field(0o444, ge=0, le=0o777)
    other_file_mode: int = Field(0o440, ge=0, le=0o777)
    directory_mode: int = Field(0o750, ge=0, le=0o777)
    group: str = VALIDATOR_GROUP

    @field_validator('keystore_mode', 'other_file_mode')
    @classmethod
    def validate_not_world_readable(cls, v: int) -> int:
        """Signing keys must never be world-readable or writable."""
        if v & 0o007:
            raise ValueError(f"mode {oct(v)} grants access to other users")
        return v

    @field_validator('deposit_mode', 'directory_mode')
    @classmethod
    def validate_not_world_writable(cls, v: int) -> int:
        """Other users must not be able to replace key files."""
        if v & 0o002:
            raise ValueError(f"mode {oct(v)} lets other users write")
        return v


class FirewallConfig(BaseModel):
    """Firewall options beyond the client P2P ports."""
    enable: bool = True
    rpc_access: bool = False
    ssh_port: Optional[int] = Field(22, ge=1, le=65535)
    local_network: Optional[str] = Field(None, description="CIDR that RPC/SSH access is restricted to")

    @field_validator('local_network')
    @classmethod
    def validate_local_network(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        try:
            return str(ipaddress.ip_network(v, strict=False))
        except ValueError as e:
            raise ValueError(f"local_network must be a CIDR range: {e}") from e


class SetupFile(BaseModel):
    """Root model for node-setup.yaml."""
    install: InstallConfig
    firewall: FirewallConfig = Field(default_factory=FirewallConfig)
    key_permissions: KeyPermissions = Field(default_factory=KeyPermissions)


def validate_setup_file(config: dict) -> SetupFile:
    """Validate a setup configuration dictionary.

    Args:
        config: Raw configuration dictionary from YAML

    Returns:
        Validated SetupFile model

    Raises:
        pydantic.ValidationError: If validation fails
    """
    return SetupFile.model_validate(config)
