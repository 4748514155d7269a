"""
Node Agent
==========

The health sidecar that runs next to the dstack guest agent on a GPU node.

What it does:
  1. Load (or create) the node's secp256k1 keypair
  2. Probe the local dstack backend over HTTP or a Unix socket
  3. Derive the node type from the GPU inventory (e.g. node-H100x8)
  4. Register the node with the fleet registry, if one is configured
  5. Serve GET /health: one fresh probe per request, 200 or 503

Failure model:
  - Backend down       → /health answers 503 with the error in metadata
  - Node type unknown  → keep going as "Unknown"
  - Registry check down → try to register anyway
  - Registration fails → exit 1; an unregistered node is useless

Requirements:
  pip install aiohttp requests psutil cryptography

Usage:
  python -m node_agent.agent --dstack-url unix:///var/run/dstack.sock \\
      --registry-url https://registry.example --owner-address 0x…
"""

__version__ = "1.0.0"
