"""Tests for health report construction."""

import json

import pytest

from helpers import FakeTransport, gpu
from node_agent.errors import ConnectionFailure, DecodeFailure, HttpStatusError
from node_agent.health import (
    REPORT_TOPIC,
    REPORT_VERSION,
    HealthReport,
    HealthStatus,
    compute_health,
)
from node_agent.inventory import InventoryResponse

PUBKEY = "a" * 64


class TestComputeHealth:
    @pytest.mark.asyncio
    async def test_available(self, h100_inventory):
        report = await compute_health(FakeTransport(h100_inventory), PUBKEY, "10.0.0.5")

        assert report.status is HealthStatus.AVAILABLE
        assert report.http_status == 200
        assert report.identities == frozenset({PUBKEY})
        assert report.location == "10.0.0.5"
        assert report.version == REPORT_VERSION
        assert report.topic == REPORT_TOPIC

    @pytest.mark.asyncio
    async def test_metadata_describes_inventory(self):
        inv = InventoryResponse(
            gpus=[gpu("NVIDIA H100", slot="0"), gpu("NVIDIA H100", slot="1", is_free=False)],
            allow_attach_all=False,
        )
        report = await compute_health(FakeTransport(inv), PUBKEY)

        meta = json.loads(report.metadata)
        assert meta["gpu_count"] == 2 == len(inv.gpus)
        assert meta["allow_attach_all"] is False
        assert meta["gpus"][1] == {
            "slot": "1",
            "product_id": "10de:2330",
            "description": "NVIDIA H100",
            "is_free": False,
        }

    @pytest.mark.asyncio
    async def test_metadata_is_compact(self, h100_inventory):
        report = await compute_health(FakeTransport(h100_inventory), PUBKEY)
        assert '"gpu_count":1' in report.metadata

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error,text", [
        (HttpStatusError(503), "HTTP error: 503"),
        (ConnectionFailure("connection refused"), "Connection error: connection refused"),
        (DecodeFailure("expected value"), "Parse error: expected value"),
    ])
    async def test_unavailable(self, error, text):
        report = await compute_health(FakeTransport(error), PUBKEY, None)

        assert report.status is HealthStatus.UNAVAILABLE
        assert report.http_status == 503
        assert report.metadata == text
        assert report.identities == frozenset({PUBKEY})
        assert report.location is None

    @pytest.mark.asyncio
    async def test_every_call_probes(self, h100_inventory):
        transport = FakeTransport(h100_inventory, ConnectionFailure("gone"))

        first  = await compute_health(transport, PUBKEY)
        second = await compute_health(transport, PUBKEY)

        assert transport.calls == 2
        assert first.status is HealthStatus.AVAILABLE
        assert second.status is HealthStatus.UNAVAILABLE


class TestHealthReport:
    def test_wire_format(self):
        report = HealthReport(
            identities=frozenset({PUBKEY}),
            status=HealthStatus.UNAVAILABLE,
            metadata="HTTP error: 502",
            location="192.168.1.100",
        )

        assert report.to_dict() == {
            "version":    "1.0.0",
            "topic":      "dstack-gpu-monitor",
            "pubkeys":    [PUBKEY],
            "status":     "unavailable",
            "metadata":   "HTTP error: 502",
            "ip_address": "192.168.1.100",
        }

    def test_nulls_survive_json(self):
        report = HealthReport(identities=frozenset({PUBKEY}), status=HealthStatus.AVAILABLE)
        wire = json.loads(json.dumps(report.to_dict()))

        assert wire["metadata"] is None
        assert wire["ip_address"] is None
        assert HealthReport.from_dict(wire) == report

    def test_round_trip(self):
        report = HealthReport(
            identities=frozenset({PUBKEY}),
            status=HealthStatus.AVAILABLE,
            metadata='{"gpu_count":0,"gpus":[],"allow_attach_all":true}',
            location="10.1.2.3",
        )
        assert HealthReport.from_dict(json.loads(json.dumps(report.to_dict()))) == report

    def test_identities_cannot_be_empty(self):
        with pytest.raises(ValueError):
            HealthReport(identities=frozenset(), status=HealthStatus.AVAILABLE)

    def test_report_is_frozen(self):
        report = HealthReport(identities=frozenset({PUBKEY}), status=HealthStatus.AVAILABLE)
        with pytest.raises(AttributeError):
            report.status = HealthStatus.UNAVAILABLE
