"""
Health Reports
==============

Builds the availability report served on ``GET /health``.

Every call performs exactly one fresh probe; nothing is cached, so two
reports built milliseconds apart can disagree. A failed probe never raises
out of here: it becomes an ``unavailable`` report whose metadata carries
the error text.
"""

from __future__ import annotations
import json
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Iterable, Optional

from .errors import TransportError
from .inventory import InventoryResponse

if TYPE_CHECKING:
    from .transport import InventoryTransport

log = logging.getLogger(__name__)

REPORT_VERSION = "1.0.0"
REPORT_TOPIC   = "dstack-gpu-monitor"


class HealthStatus(str, Enum):
    AVAILABLE   = "available"
    UNAVAILABLE = "unavailable"


@dataclass(frozen=True)
class HealthReport:
    identities: frozenset
    status:     HealthStatus
    metadata:   Optional[str] = None
    location:   Optional[str] = None
    version:    str = REPORT_VERSION
    topic:      str = REPORT_TOPIC

    def __post_init__(self):
        if not self.identities:
            raise ValueError("a health report needs at least one identity")

    @property
    def http_status(self) -> int:
        return 200 if self.status is HealthStatus.AVAILABLE else 503

    def to_dict(self) -> dict:
        """Wire form, as served on /health."""
        return {
            "version":    self.version,
            "topic":      self.topic,
            "pubkeys":    sorted(self.identities),
            "status":     self.status.value,
            "metadata":   self.metadata,
            "ip_address": self.location,
        }

    @classmethod
    def from_dict(cls, raw: dict) -> "HealthReport":
        return cls(
            identities = frozenset(raw["pubkeys"]),
            status     = HealthStatus(raw["status"]),
            metadata   = raw.get("metadata"),
            location   = raw.get("ip_address"),
            version    = raw["version"],
            topic      = raw["topic"],
        )


def inventory_metadata(inventory: InventoryResponse) -> str:
    """Compact JSON summary of a successful probe."""
    return json.dumps(
        {
            "gpu_count":        inventory.gpu_count,
            "gpus":             [g.to_dict() for g in inventory.gpus],
            "allow_attach_all": inventory.allow_attach_all,
        },
        separators=(",", ":"),
    )


def build_report(
    identities: Iterable[str],
    status:     HealthStatus,
    metadata:   Optional[str],
    location:   Optional[str],
) -> HealthReport:
    return HealthReport(
        identities = frozenset(identities),
        status     = status,
        metadata   = metadata,
        location   = location,
    )


async def compute_health(
    transport: "InventoryTransport",
    identity:  str,
    location:  Optional[str] = None,
) -> HealthReport:
    try:
        inventory = await transport.probe_inventory()
    except TransportError as e:
        log.error(f"Failed to connect to dstack: {e}")
        return build_report([identity], HealthStatus.UNAVAILABLE, str(e), location)

    log.info(f"DStack is available with {inventory.gpu_count} GPUs")
    return build_report([identity], HealthStatus.AVAILABLE, inventory_metadata(inventory), location)
