"""
Node Agent — Main Daemon
========================

The entry point for the node-side health sidecar.

Startup sequence:
  1. Load config (file, env, CLI)
  2. Load or create the node keypair
  3. Pick the backend transport (HTTP or Unix socket)
  4. Work out the node type (explicit, or from the GPU inventory when registering)
  5. Register with the fleet registry (POST /workers) if one is configured
  6. Serve GET /health until SIGINT / SIGTERM

Exit codes:
  0  clean shutdown
  1  registration failed, the node key could not be loaded, or the
     listen address could not be bound
  2  bad configuration
"""

from __future__ import annotations
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Optional, Sequence

from aiohttp import web

from .config import AgentConfig, parse_config
from .errors import ConfigError, IdentityError, RegistrationError
from .identity import NodeIdentity, load_or_create_identity
from .inventory import resolve_node_type
from .netinfo import detect_local_ip
from .registration import RegistrationState, RegistryClient, ensure_registered
from .server import AppContext, create_app
from .transport import InventoryTransport, make_transport

# ─── Logging ──────────────────────────────────────────────────────────────────

def setup_logging(level: Optional[str] = None):
    requested = (level or os.getenv("LOG_LEVEL", "INFO")).strip().upper()
    valid     = isinstance(logging.getLevelName(requested), int)
    logging.basicConfig(
        level  = requested if valid else "INFO",
        format = "[%(asctime)s] %(levelname)s %(name)s — %(message)s",
        datefmt= "%Y-%m-%dT%H:%M:%S",
    )
    if not valid:
        log.warning(f"Unknown log level {requested!r}, using INFO")

log = logging.getLogger("node_agent.agent")

EXIT_FATAL        = 1
EXIT_CONFIG_ERROR = 2

# ─── Node Agent ───────────────────────────────────────────────────────────────

class NodeAgent:
    def __init__(self, config: AgentConfig, registry_client: Optional[RegistryClient] = None):
        self.config          = config
        self.registry_client = registry_client

        self.identity:  Optional[NodeIdentity] = None
        self.node_type: Optional[str] = None
        self.transport: Optional[InventoryTransport] = None
        self._runner:   Optional[web.AppRunner] = None
        self._stopped   = asyncio.Event()

    # ─── Node Type ────────────────────────────────────────────────────────────

    async def _node_type(self) -> Optional[str]:
        if self.config.node_type:
            log.info(f"Node type: {self.config.node_type} (configured)")
            return self.config.node_type
        if not self.config.registration_enabled:
            # Only the registration body uses it
            return None
        return await resolve_node_type(self.transport)

    # ─── Registration ─────────────────────────────────────────────────────────

    async def _register(self) -> Optional[RegistrationState]:
        if not self.config.registration_enabled:
            log.info("No registry configured — skipping worker registration")
            return None

        log.info("Worker registration is required to communicate with the message network")
        client = self.registry_client or RegistryClient(
            self.config.registry_url,
            timeout = self.config.registry_timeout,
        )
        # requests is blocking; nothing else runs yet, but keep the loop free
        state = await asyncio.to_thread(
            ensure_registered,
            client,
            self.identity.pubkey,
            self.config.owner_address,
            self.node_type,
        )
        log.info("Worker registration completed successfully")
        return state

    # ─── Lifecycle ────────────────────────────────────────────────────────────

    async def start(self):
        cfg = self.config
        log.info("Starting DStack Backend Monitor")
        log.info(f"Listen address: {cfg.listen_addr}")
        log.info(f"DStack URL config: {cfg.dstack_url}")
        log.info(f"Data directory: {cfg.data_dir}")
        log.info(f"Registry URL: {cfg.registry_url or '-'}")

        self.identity = load_or_create_identity(Path(cfg.data_dir))
        log.info(f"Public key: {self.identity.pubkey}")

        self.transport = make_transport(cfg.endpoint, cfg.probe_timeout)
        try:
            self.node_type = await self._node_type()
            await self._register()
        except BaseException:
            await self.transport.close()
            raise

        location = cfg.advertise_ip or detect_local_ip()
        app = create_app(AppContext(
            transport = self.transport,
            identity  = self.identity.pubkey,
            location  = location,
        ))

        host, port = cfg.listen_host_port
        self._runner = web.AppRunner(app)
        try:
            await self._runner.setup()
            await web.TCPSite(self._runner, host, port).start()
        except BaseException:
            await self.shutdown()
            raise
        log.info(f"Backend listening on {host}:{port}")

    async def shutdown(self):
        if self._runner is not None:
            # Runner cleanup also closes the transport session
            await self._runner.cleanup()
            self._runner = None
        elif self.transport is not None:
            await self.transport.close()

    def stop(self):
        self._stopped.set()

    async def run(self):
        await self.start()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            try:
                loop.add_signal_handler(sig, self.stop)
            except NotImplementedError:
                pass  # Not available on this platform; Ctrl+C still raises

        try:
            await self._stopped.wait()
        finally:
            log.info("Shutting down…")
            await self.shutdown()
            log.info("Agent exited cleanly.")


# ─── Entry Point ──────────────────────────────────────────────────────────────

def main(argv: Optional[Sequence[str]] = None):
    setup_logging()

    try:
        config = parse_config(argv)
    except ConfigError as e:
        log.error(f"Configuration error: {e}")
        sys.exit(EXIT_CONFIG_ERROR)

    agent = NodeAgent(config)
    try:
        asyncio.run(agent.run())
    except RegistrationError as e:
        log.error(f"Worker registration failed: {e}")
        log.error("Cannot start service without successful registration")
        log.error("Worker must be registered to communicate with the message network")
        sys.exit(EXIT_FATAL)
    except IdentityError as e:
        log.error(f"Failed to load or create the node keypair: {e}")
        sys.exit(EXIT_FATAL)
    except OSError as e:
        log.error(f"Failed to start the health server on {config.listen_addr}: {e}")
        sys.exit(EXIT_FATAL)
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    main()
