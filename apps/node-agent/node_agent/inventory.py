"""
GPU Inventory
=============

The shape of the dstack guest agent's ``ListGpus`` answer, and the startup
helper that turns it into a node type string for the registry
(``node-H100x8``, ``CPU``, ``Unknown``).

Inventories are decoded fresh on every probe and never cached.
"""

from __future__ import annotations
import asyncio
import json
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Union

from .errors import DecodeFailure, TransportError

if TYPE_CHECKING:
    from .transport import InventoryTransport

log = logging.getLogger(__name__)

CPU_NODE_TYPE     = "CPU"
UNKNOWN_NODE_TYPE = "Unknown"

# Checked against the first GPU's description, in this order
KNOWN_GPU_MODELS = ("H200", "H100", "B200")

DEFAULT_MAX_ATTEMPTS = 5
DEFAULT_RETRY_DELAY  = 2.0


def _require(raw: dict, key: str, kind: type) -> Any:
    if key not in raw:
        raise DecodeFailure(f"missing field `{key}`")
    value = raw[key]
    # bool is a subclass of int; only exact JSON types are accepted
    if type(value) is not kind:
        raise DecodeFailure(
            f"invalid type for `{key}`: expected {kind.__name__}, got {type(value).__name__}"
        )
    return value


# ─── GPU Record ───────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GpuRecord:
    slot: str               # PCI slot, e.g. "0000:18:00.0"
    product_id: str         # PCI vendor:device id
    description: str        # e.g. "NVIDIA Corporation GH100 [H100 SXM5 80GB]"
    is_free: bool

    @classmethod
    def from_dict(cls, raw: Any) -> "GpuRecord":
        if not isinstance(raw, dict):
            raise DecodeFailure(f"expected GPU object, got {type(raw).__name__}")
        return cls(
            slot        = _require(raw, "slot", str),
            product_id  = _require(raw, "product_id", str),
            description = _require(raw, "description", str),
            is_free     = _require(raw, "is_free", bool),
        )

    def to_dict(self) -> dict:
        return {
            "slot":        self.slot,
            "product_id":  self.product_id,
            "description": self.description,
            "is_free":     self.is_free,
        }


# ─── Inventory Response ───────────────────────────────────────────────────────

@dataclass(frozen=True)
class InventoryResponse:
    gpus: list[GpuRecord] = field(default_factory=list)
    allow_attach_all: bool = False

    @property
    def gpu_count(self) -> int:
        return len(self.gpus)

    @classmethod
    def from_dict(cls, raw: Any) -> "InventoryResponse":
        if not isinstance(raw, dict):
            raise DecodeFailure(f"expected inventory object, got {type(raw).__name__}")
        gpus = _require(raw, "gpus", list)
        return cls(
            gpus             = [GpuRecord.from_dict(g) for g in gpus],
            allow_attach_all = _require(raw, "allow_attach_all", bool),
        )

    @classmethod
    def from_json(cls, body: Union[str, bytes]) -> "InventoryResponse":
        """Decode a raw response body. Raises DecodeFailure on any problem."""
        try:
            raw = json.loads(body)
        except (ValueError, UnicodeDecodeError) as e:
            raise DecodeFailure(str(e)) from e
        return cls.from_dict(raw)

    def to_dict(self) -> dict:
        return {
            "gpus":             [g.to_dict() for g in self.gpus],
            "allow_attach_all": self.allow_attach_all,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())


# ─── Node Type ────────────────────────────────────────────────────────────────

def derive_node_type(inventory: InventoryResponse) -> str:
    """
    Map an inventory to the registry's node type string.

    Only the first GPU's description is inspected; the count is the total
    number of GPU records, matching or not.
    """
    if not inventory.gpus:
        return CPU_NODE_TYPE

    description = inventory.gpus[0].description
    for model in KNOWN_GPU_MODELS:
        if model in description:
            return f"node-{model}x{inventory.gpu_count}"

    return UNKNOWN_NODE_TYPE


async def resolve_node_type(
    transport:    "InventoryTransport",
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    retry_delay:  float = DEFAULT_RETRY_DELAY,
    sleep:        Callable[[float], Awaitable[Any]] = asyncio.sleep,
) -> str:
    """
    Probe the backend until it answers, then derive the node type.

    Attempts are strictly sequential with a fixed ``retry_delay`` between
    them. Running out of attempts is not fatal: the node just describes
    itself as ``Unknown``.
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    for attempt in range(1, max_attempts + 1):
        try:
            inventory = await transport.probe_inventory()
        except TransportError as e:
            log.warning(f"Node type probe {attempt}/{max_attempts} failed: {e}")
            if attempt < max_attempts:
                await sleep(retry_delay)
            continue

        node_type = derive_node_type(inventory)
        log.info(f"Resolved node type {node_type} from {inventory.gpu_count} GPU(s)")
        return node_type

    log.warning(f"Could not reach the backend after {max_attempts} attempt(s) — node type {UNKNOWN_NODE_TYPE}")
    return UNKNOWN_NODE_TYPE
