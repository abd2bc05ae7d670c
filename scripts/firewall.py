"""
Firewall rules for the selected client pair, applied with ufw.

Only the P2P ports of the chosen execution and consensus clients are
opened, plus RPC and SSH when requested.
"""

import ipaddress
from dataclasses import dataclass
from typing import Optional

from clients import CLIENT_FIREWALL_PORTS, RPC_PORT
from host_commands import CommandRunner
from models import FirewallConfig, InstallConfig


@dataclass(frozen=True)
class FirewallRule:
    port: int
    protocol: str
    source: Optional[str] = None
    comment: str = ''

    def to_ufw_args(self) -> list[str]:
        """ufw allow arguments for this rule."""
        if self.source:
            args = ['ufw', 'allow', 'from', self.source, 'to', 'any',
                    'port', str(self.port), 'proto', self.protocol]
        else:
            args = ['ufw', 'allow', f'{self.port}/{self.protocol}']
        if self.comment:
            args.extend(['comment', self.comment])
        return args


def client_rules(config: InstallConfig) -> list[FirewallRule]:
    """P2P rules for the selected execution/consensus pair only."""
    rules = []
    for client in (config.execution_client, config.consensus_client):
        for port, protocol in CLIENT_FIREWALL_PORTS[client]:
            rule = FirewallRule(port, protocol, comment=f'{client} p2p')
            if rule not in rules:
                rules.append(rule)
    return rules


def access_rules(firewall: FirewallConfig) -> list[FirewallRule]:
    """Optional RPC and SSH rules."""
    rules = []
    if firewall.rpc_access:
        rules.append(FirewallRule(RPC_PORT, 'tcp', source='127.0.0.1', comment='RPC Port'))
        if firewall.local_network:
            rules.append(FirewallRule(RPC_PORT, 'tcp', source=firewall.local_network,
                                      comment='RPC Port for private IP range'))
    if firewall.ssh_port:
        if firewall.local_network:
            rules.append(FirewallRule(firewall.ssh_port, 'tcp', source=firewall.local_network,
                                      comment='SSH Port for private IP range'))
        else:
            rules.append(FirewallRule(firewall.ssh_port, 'tcp', comment='SSH Port'))
    return rules


def plan_firewall_rules(config: InstallConfig, firewall: FirewallConfig) -> list[FirewallRule]:
    return client_rules(config) + access_rules(firewall)


def apply_firewall(runner: CommandRunner, rules: list[FirewallRule], enable: bool = True) -> None:
    """Set default policies, add rules and optionally enable ufw."""
    runner.run('ufw', 'default', 'deny', 'incoming')
    runner.run('ufw', 'default', 'allow', 'outgoing')
    for rule in rules:
        runner.run(*rule.to_ufw_args())
        print(f"  Allowed {rule.port}/{rule.protocol}" + (f" from {rule.source}" if rule.source else ''))
    if enable:
        runner.run('ufw', '--force', 'enable')
        print("  Firewall enabled")


def parse_local_network(ip_output: str) -> Optional[str]:
    """Extract the first global IPv4 network from `ip -o -f inet addr` output.

    Example line:
        2: eth0    inet 192.168.1.23/24 brd 192.168.1.255 scope global eth0
    """
    for line in ip_output.splitlines():
        parts = line.split()
        if 'inet' not in parts:
            continue
        address = parts[parts.index('inet') + 1]
        try:
            interface = ipaddress.ip_interface(address)
        except ValueError:
            continue
        if interface.ip.is_loopback:
            continue
        return str(interface.network)
    return None


def detect_local_network(runner: CommandRunner) -> Optional[str]:
    result = runner.run('ip', '-o', '-f', 'inet', 'addr', 'show', 'scope', 'global', check=False)
    if result.returncode != 0:
        return None
    return parse_local_network(result.stdout or '')
