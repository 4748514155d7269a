"""Tests for the persistent node keypair."""

import os
import stat

import pytest

from node_agent.errors import IdentityError
from node_agent.identity import KEY_FILENAME, load_or_create_identity


def test_creates_key_once(tmp_path):
    data_dir = tmp_path / "data"

    first  = load_or_create_identity(data_dir)
    second = load_or_create_identity(data_dir)

    key_file = data_dir / KEY_FILENAME
    assert key_file.read_text() == first.secret_hex
    assert stat.S_IMODE(os.stat(key_file).st_mode) == 0o600
    assert len(first.pubkey) == 64
    assert second.pubkey == first.pubkey


def test_known_vector(tmp_path):
    # Secret key 1 → the secp256k1 generator point
    (tmp_path / KEY_FILENAME).write_text("0" * 63 + "1\n")
    identity = load_or_create_identity(tmp_path)
    assert identity.pubkey == "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"


def test_secret_not_in_repr(tmp_path):
    identity = load_or_create_identity(tmp_path)
    assert identity.secret_hex not in repr(identity)


@pytest.mark.parametrize("content", ["nsec1notsupported", "zz" * 32, "0" * 64])
def test_malformed_key(tmp_path, content):
    (tmp_path / KEY_FILENAME).write_text(content)
    with pytest.raises(IdentityError):
        load_or_create_identity(tmp_path)
