"""Tests for local address detection."""

import socket
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from node_agent.netinfo import default_route_ip, detect_local_ip


def addr(family, address):
    return SimpleNamespace(family=family, address=address)


def up(isup=True):
    return SimpleNamespace(isup=isup)


def udp_socket(local_address=None, error=None):
    sock = MagicMock()
    if error is not None:
        sock.connect.side_effect = error
    sock.getsockname.return_value = (local_address, 40000)
    factory = MagicMock()
    factory.return_value.__enter__.return_value = sock
    return factory, sock


@pytest.fixture
def no_route():
    with patch("node_agent.netinfo.default_route_ip", return_value=None):
        yield


# =============================================================================
# Default route
# =============================================================================


class TestDefaultRoute:
    def test_prefers_route_source_over_bridge(self):
        factory, sock = udp_socket("10.0.0.9")
        addrs = {
            "docker0": [addr(socket.AF_INET, "172.17.0.1")],
            "eth0":    [addr(socket.AF_INET, "10.0.0.9")],
        }
        stats = {"docker0": up(), "eth0": up()}

        with patch("node_agent.netinfo.socket.socket", factory), \
             patch("node_agent.netinfo.psutil.net_if_addrs", return_value=addrs), \
             patch("node_agent.netinfo.psutil.net_if_stats", return_value=stats):
            assert detect_local_ip() == "10.0.0.9"

        sock.connect.assert_called_once()
        sock.send.assert_not_called()

    def test_unreachable_network(self):
        factory, _ = udp_socket(error=OSError("Network is unreachable"))
        with patch("node_agent.netinfo.socket.socket", factory):
            assert default_route_ip() is None

    def test_unspecified_source_is_ignored(self):
        factory, _ = udp_socket("0.0.0.0")
        with patch("node_agent.netinfo.socket.socket", factory):
            assert default_route_ip() is None


# =============================================================================
# Interface scan fallback
# =============================================================================


class TestInterfaceScan:
    def test_skips_loopback_down_and_ipv6(self, no_route):
        addrs = {
            "lo":   [addr(socket.AF_INET, "127.0.0.1")],
            "eth0": [addr(socket.AF_INET, "10.0.0.9")],
            "docker0": [addr(socket.AF_INET6, "fe80::1"), addr(socket.AF_INET, "169.254.3.3")],
            "eth1": [addr(socket.AF_INET6, "2001:db8::5"), addr(socket.AF_INET, "192.168.1.100")],
        }
        stats = {"lo": up(), "eth0": up(False), "docker0": up(), "eth1": up()}

        with patch("node_agent.netinfo.psutil.net_if_addrs", return_value=addrs), \
             patch("node_agent.netinfo.psutil.net_if_stats", return_value=stats):
            assert detect_local_ip() == "192.168.1.100"

    def test_bridges_sort_after_physical_interfaces(self, no_route):
        addrs = {
            "br-1a2b":  [addr(socket.AF_INET, "172.18.0.1")],
            "cni0":     [addr(socket.AF_INET, "10.244.0.1")],
            "docker0":  [addr(socket.AF_INET, "172.17.0.1")],
            "ens5":     [addr(socket.AF_INET, "10.0.0.9")],
        }
        stats = {name: up() for name in addrs}

        with patch("node_agent.netinfo.psutil.net_if_addrs", return_value=addrs), \
             patch("node_agent.netinfo.psutil.net_if_stats", return_value=stats):
            assert detect_local_ip() == "10.0.0.9"

    def test_bridge_used_when_nothing_else(self, no_route):
        addrs = {"docker0": [addr(socket.AF_INET, "172.17.0.1")]}
        with patch("node_agent.netinfo.psutil.net_if_addrs", return_value=addrs), \
             patch("node_agent.netinfo.psutil.net_if_stats", return_value={"docker0": up()}):
            assert detect_local_ip() == "172.17.0.1"

    def test_nothing_suitable(self, no_route):
        with patch("node_agent.netinfo.psutil.net_if_addrs", return_value={"lo": [addr(socket.AF_INET, "127.0.0.1")]}), \
             patch("node_agent.netinfo.psutil.net_if_stats", return_value={"lo": up()}):
            assert detect_local_ip() is None

    def test_psutil_failure(self, no_route):
        with patch("node_agent.netinfo.psutil.net_if_addrs", side_effect=OSError("no /proc")):
            assert detect_local_ip() is None
