"""Test doubles shared across the node agent tests."""

from node_agent.inventory import GpuRecord


class FakeTransport:
    """
    Replays ``results`` one per probe; the last one repeats forever.
    Exceptions in ``results`` are raised instead of returned.
    """

    def __init__(self, *results):
        self.results = list(results)
        self.calls   = 0
        self.closed  = False

    async def probe_inventory(self):
        self.calls += 1
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def close(self):
        self.closed = True


def gpu(description="NVIDIA H100 80GB HBM3", slot="0000:18:00.0", is_free=True):
    return GpuRecord(slot=slot, product_id="10de:2330", description=description, is_free=is_free)


INVENTORY_PAYLOAD = {
    "gpus": [
        {"slot": "0", "product_id": "X", "description": "NVIDIA H100", "is_free": True},
    ],
    "allow_attach_all": True,
}
