"""
Shared pytest fixtures for node agent tests.
"""

import copy
import shutil
import tempfile

import pytest

from helpers import INVENTORY_PAYLOAD, gpu
from node_agent.inventory import InventoryResponse


@pytest.fixture
def h100_inventory():
    return InventoryResponse(gpus=[gpu()], allow_attach_all=True)


@pytest.fixture
def inventory_payload():
    return copy.deepcopy(INVENTORY_PAYLOAD)


@pytest.fixture
def socket_dir():
    # Short path: Unix socket paths are limited to ~108 bytes
    path = tempfile.mkdtemp(prefix="na-")
    yield path
    shutil.rmtree(path, ignore_errors=True)
