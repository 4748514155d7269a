"""
Node Identity
=============

The node's persistent secp256k1 keypair. The secret key lives as 64 hex
characters in ``<data_dir>/key`` and is created on first start. The public
identifier is the x-only public key in hex, the form the message network
and the registry use.
"""

from __future__ import annotations
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path

from cryptography.hazmat.primitives.asymmetric import ec

from .errors import IdentityError

log = logging.getLogger(__name__)

KEY_FILENAME = "key"

_SECRET_HEX = re.compile(r"^[0-9a-fA-F]{64}$")


@dataclass(frozen=True)
class NodeIdentity:
    secret_hex: str
    pubkey: str

    def __repr__(self) -> str:
        return f"NodeIdentity(pubkey={self.pubkey!r})"


def _from_secret(secret_hex: str) -> NodeIdentity:
    if not _SECRET_HEX.match(secret_hex):
        raise IdentityError("secret key must be 64 hex characters")
    try:
        key = ec.derive_private_key(int(secret_hex, 16), ec.SECP256K1())
    except ValueError as e:
        raise IdentityError(f"invalid secret key: {e}") from e
    x = key.public_key().public_numbers().x
    return NodeIdentity(secret_hex=secret_hex.lower(), pubkey=f"{x:064x}")


def generate_identity() -> NodeIdentity:
    key = ec.generate_private_key(ec.SECP256K1())
    return _from_secret(f"{key.private_numbers().private_value:064x}")


def load_or_create_identity(data_dir: Path) -> NodeIdentity:
    keys_file = Path(data_dir) / KEY_FILENAME

    if keys_file.exists():
        log.info(f"Loading existing keypair from {keys_file}")
        try:
            secret = keys_file.read_text().strip()
        except OSError as e:
            raise IdentityError(f"cannot read {keys_file}: {e}") from e
        return _from_secret(secret)

    log.info("Generating new keypair")
    identity = generate_identity()
    try:
        keys_file.parent.mkdir(parents=True, exist_ok=True)
        keys_file.write_text(identity.secret_hex)
        os.chmod(keys_file, 0o600)
    except OSError as e:
        raise IdentityError(f"cannot write {keys_file}: {e}") from e

    log.info(f"Saved new keypair to {keys_file}")
    log.info(f"Public key: {identity.pubkey}")
    return identity
