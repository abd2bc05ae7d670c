"""
Client metadata for PulseChain node setup.

Single source of truth for the supported execution, consensus and validator
clients: OS account, Docker image, launcher template and firewall ports.
"""

# Execution clients: (display_name, account, image, launcher_template)
EXECUTION_CLIENT_METADATA = {
    'geth': (
        'Geth (full node, faster sync time)',
        'geth',
        'registry.gitlab.com/pulsechaincom/go-pulse:latest',
        'geth.sh.j2',
    ),
    'erigon': (
        'Erigon (archive node, longer sync time)',
        'erigon',
        'registry.gitlab.com/pulsechaincom/erigon-pulse:latest',
        'erigon.sh.j2',
    ),
    'erigon-pruned': (
        'Erigon (pruned to keep the last 2000 blocks)',
        'erigon',
        'registry.gitlab.com/pulsechaincom/erigon-pulse:latest',
        'erigon.sh.j2',
    ),
}

# Consensus (beacon) clients: (display_name, account, image, launcher_template)
CONSENSUS_CLIENT_METADATA = {
    'lighthouse': (
        'Lighthouse',
        'lighthouse',
        'registry.gitlab.com/pulsechaincom/lighthouse-pulse:latest',
        'lighthouse-beacon.sh.j2',
    ),
    'prysm': (
        'Prysm',
        'prysm',
        'registry.gitlab.com/pulsechaincom/prysm-pulse/beacon-chain:latest',
        'prysm-beacon.sh.j2',
    ),
}

# Validator clients follow the consensus client family
VALIDATOR_CLIENT_METADATA = {
    'lighthouse': (
        'Lighthouse',
        'validator',
        'registry.gitlab.com/pulsechaincom/lighthouse-pulse:latest',
        'lighthouse-validator.sh.j2',
    ),
    'prysm': (
        'Prysm',
        'validator',
        'registry.gitlab.com/pulsechaincom/prysm-pulse/validator:latest',
        'prysm-validator.sh.j2',
    ),
}

NETWORK_METADATA = {
    'mainnet': {
        'display_name': 'PulseChain Mainnet',
        'execution_flag': 'pulsechain',
        'lighthouse_flag': 'pulsechain',
        'prysm_flag': 'pulsechain',
        'deposit_chain': 'pulsechain',
        'checkpoint_url': 'https://checkpoint.pulsechain.com',
    },
    'testnet': {
        'display_name': 'PulseChain Testnet v4',
        'execution_flag': 'pulsechain-testnet-v4',
        'lighthouse_flag': 'pulsechain_testnet_v4',
        'prysm_flag': 'pulsechain-testnet-v4',
        'deposit_chain': 'pulsechain-testnet-v4',
        'checkpoint_url': 'https://checkpoint.v4.testnet.pulsechain.com',
    },
}

# P2P ports opened per client: list of (port, protocol)
CLIENT_FIREWALL_PORTS = {
    'geth': [(30303, 'tcp'), (30303, 'udp')],
    'erigon': [
        (30303, 'tcp'), (30303, 'udp'),
        (30304, 'tcp'), (30304, 'udp'),
        (42069, 'tcp'), (42069, 'udp'),
        (4000, 'udp'), (4001, 'tcp'),
    ],
    'lighthouse': [(9000, 'tcp'), (9000, 'udp')],
    'prysm': [(13000, 'tcp'), (12000, 'udp')],
}
CLIENT_FIREWALL_PORTS['erigon-pruned'] = CLIENT_FIREWALL_PORTS['erigon']

RPC_PORT = 8545

DEPOSIT_CLI_REPO = 'https://gitlab.com/pulsechaincom/staking-deposit-cli.git'

# Groups shared between client accounts
DOCKER_GROUP = 'docker'
SHARED_SECRETS_GROUP = 'pls-shared'
VALIDATOR_GROUP = 'pls-validator'


def get_execution_account(client: str) -> str:
    """Get the OS account that runs an execution client."""
    return EXECUTION_CLIENT_METADATA[client][1]


def get_consensus_account(client: str) -> str:
    """Get the OS account that runs a consensus client."""
    return CONSENSUS_CLIENT_METADATA[client][1]


def get_validator_account(client: str) -> str:
    return VALIDATOR_CLIENT_METADATA[client][1]


def get_client_images(execution_client: str, consensus_client: str, include_validator: bool = False) -> list[str]:
    """List the Docker images needed for a client pair, without duplicates."""
    images = [
        EXECUTION_CLIENT_METADATA[execution_client][2],
        CONSENSUS_CLIENT_METADATA[consensus_client][2],
    ]
    if include_validator:
        images.append(VALIDATOR_CLIENT_METADATA[consensus_client][2])
    return list(dict.fromkeys(images))
