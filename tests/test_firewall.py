"""Tests for firewall.py."""

import sys
from pathlib import Path

SCRIPTS_DIR = Path(__file__).parent.parent / 'scripts'
sys.path.insert(0, str(SCRIPTS_DIR))

from firewall import (
    FirewallRule,
    access_rules,
    apply_firewall,
    client_rules,
    detect_local_network,
    parse_local_network,
    plan_firewall_rules,
)
from models import FirewallConfig

IP_OUTPUT = """\
1: lo    inet 127.0.0.1/8 scope host lo\\       valid_lft forever preferred_lft forever
2: enp3s0    inet 192.168.1.23/24 brd 192.168.1.255 scope global dynamic enp3s0\\       valid_lft 86000sec
"""


class TestClientRules:
    """Tests for per-client port rules."""

    def test_geth_lighthouse_ports_only(self, make_config):
        rules = client_rules(make_config())

        assert {(r.port, r.protocol) for r in rules} == {
            (30303, 'tcp'), (30303, 'udp'), (9000, 'tcp'), (9000, 'udp'),
        }

    def test_erigon_prysm_ports(self, make_config):
        rules = client_rules(make_config(execution_client='erigon-pruned', consensus_client='prysm'))
        ports = {(r.port, r.protocol) for r in rules}

        assert (42069, 'udp') in ports
        assert (13000, 'tcp') in ports
        assert (12000, 'udp') in ports
        assert (9000, 'tcp') not in ports

    def test_rules_are_unique(self, make_config):
        rules = client_rules(make_config(execution_client='erigon'))

        assert len(rules) == len(set(rules))


class TestAccessRules:
    """Tests for RPC and SSH rules."""

    def test_defaults_open_ssh_only(self):
        rules = access_rules(FirewallConfig())

        assert rules == [FirewallRule(22, 'tcp', comment='SSH Port')]

    def test_rpc_and_ssh_restricted_to_local_network(self):
        rules = access_rules(FirewallConfig(rpc_access=True, ssh_port=2222, local_network='192.168.1.0/24'))

        assert FirewallRule(8545, 'tcp', source='127.0.0.1', comment='RPC Port') in rules
        assert all(r.source for r in rules)
        assert any(r.port == 2222 and r.source == '192.168.1.0/24' for r in rules)

    def test_no_ssh(self):
        assert access_rules(FirewallConfig(ssh_port=None)) == []


class TestFirewallRule:
    """Tests for ufw argument rendering."""

    def test_open_port(self):
        assert FirewallRule(9000, 'udp').to_ufw_args() == ['ufw', 'allow', '9000/udp']

    def test_source_restricted_with_comment(self):
        rule = FirewallRule(8545, 'tcp', source='10.0.0.0/8', comment='RPC Port')

        assert rule.to_ufw_args() == [
            'ufw', 'allow', 'from', '10.0.0.0/8', 'to', 'any', 'port', '8545', 'proto', 'tcp',
            'comment', 'RPC Port',
        ]


class TestApplyFirewall:
    """Tests for apply_firewall."""

    def test_defaults_then_rules_then_enable(self, host, make_config):
        rules = plan_firewall_rules(make_config(), FirewallConfig())

        apply_firewall(host, rules)

        assert host.calls[0] == ['ufw', 'default', 'deny', 'incoming']
        assert host.calls[1] == ['ufw', 'default', 'allow', 'outgoing']
        assert host.calls[-1] == ['ufw', '--force', 'enable']
        assert len(host.calls) == len(rules) + 3

    def test_without_enable(self, host):
        apply_firewall(host, [], enable=False)

        assert ['ufw', '--force', 'enable'] not in host.calls


class TestLocalNetwork:
    """Tests for local network detection."""

    def test_parse_skips_loopback(self):
        assert parse_local_network(IP_OUTPUT) == '192.168.1.0/24'

    def test_parse_empty(self):
        assert parse_local_network('') is None

    def test_detect_failure_returns_none(self):
        from conftest import FakeHost
        failing = FakeHost(fail_on=[('ip',)])

        assert detect_local_network(failing) is None
