"""
Worker Registration
===================

Makes sure this node is registered with the fleet registry before it
starts serving health reports.

  1. GET  {registry}/permissions/{pubkey}   → already registered? done.
  2. POST {registry}/workers                → register.

The check is fail-open: a registry that cannot be reached, answers with an
error, or answers with something unparsable is treated as "not registered",
and registration is attempted anyway. The register step is fail-fatal: if
it does not succeed the node is unusable and the agent exits.
"""

from __future__ import annotations
import logging
from enum import Enum
from typing import Optional

import requests

from .errors import RegistrationError, RegistryUnavailable

log = logging.getLogger(__name__)

ALLOW_ALL_MODE = "AllowAll"

DEFAULT_REGISTRY_TIMEOUT = 10.0


def _is_success(resp: requests.Response) -> bool:
    return 200 <= resp.status_code < 300


# ─── Registry Client ──────────────────────────────────────────────────────────

class RegistryClient:
    def __init__(
        self,
        registry_url: str,
        session:      Optional[requests.Session] = None,
        timeout:      float = DEFAULT_REGISTRY_TIMEOUT,
    ):
        self.registry_url = registry_url.rstrip("/")
        self.session      = session or requests.Session()
        self.timeout      = timeout

    def is_registered(self, pubkey: str) -> bool:
        """
        True only when the registry positively reports write mode AllowAll.
        Raises RegistryUnavailable if the registry cannot be reached.
        """
        url = f"{self.registry_url}/permissions/{pubkey}"
        log.info(f"Checking worker registration status at: {url}")

        try:
            resp = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            log.error(f"Failed to check registration status: {e}")
            raise RegistryUnavailable(str(e)) from e

        if not _is_success(resp):
            log.info(f"Worker not registered (status: {resp.status_code})")
            return False

        try:
            mode = resp.json()["write"]["mode"]
        except (ValueError, KeyError, TypeError) as e:
            log.error(f"Failed to parse permission response: {e!r}")
            return False

        registered = mode == ALLOW_ALL_MODE
        log.info(f"Worker registration status: registered={registered} (mode={mode})")
        return registered

    def register(self, pubkey: str, owner: str, node_type: str):
        url = f"{self.registry_url}/workers"
        log.info(f"Registering worker at: {url}")
        log.info(f"Registration data: pubkey={pubkey}, owner={owner}, node_type={node_type}")

        try:
            resp = self.session.post(
                url,
                json    = {"pubkey": pubkey, "owner": owner, "node_type": node_type},
                timeout = self.timeout,
            )
        except requests.RequestException as e:
            log.error(f"Failed to send registration request: {e}")
            raise RegistrationError(f"Registration request failed: {e}") from e

        if not _is_success(resp):
            log.error(f"Failed to register worker: status={resp.status_code}, error={resp.text}")
            raise RegistrationError(
                f"Registration failed: {resp.status_code} - {resp.text}",
                status = resp.status_code,
                body   = resp.text,
            )

        log.info("Worker registered successfully")


# ─── Workflow ─────────────────────────────────────────────────────────────────

class RegistrationState(str, Enum):
    UNKNOWN            = "unknown"
    CHECKING           = "checking"
    ALREADY_REGISTERED = "already_registered"
    NEEDS_REGISTRATION = "needs_registration"
    CHECK_FAILED       = "check_failed"
    REGISTERING        = "registering"
    DONE               = "done"
    FATAL_FAILURE      = "fatal_failure"


class RegistrationWorkflow:
    """
    One-shot check-then-register run. ``history`` lists every state entered,
    in order, starting with UNKNOWN.
    """

    def __init__(self, client: RegistryClient, pubkey: str, owner: str, node_type: str):
        self.client    = client
        self.pubkey    = pubkey
        self.owner     = owner
        self.node_type = node_type
        self.state     = RegistrationState.UNKNOWN
        self.history   = [RegistrationState.UNKNOWN]

    def _enter(self, state: RegistrationState):
        self.state = state
        self.history.append(state)

    def run(self) -> RegistrationState:
        """
        Returns ALREADY_REGISTERED or DONE.
        Raises RegistrationError (state FATAL_FAILURE) if registering fails.
        """
        log.info("Ensuring worker is registered...")
        self._enter(RegistrationState.CHECKING)

        try:
            registered = self.client.is_registered(self.pubkey)
        except RegistryUnavailable as e:
            log.error(f"Failed to check registration status, attempting registration anyway: {e}")
            self._enter(RegistrationState.CHECK_FAILED)
        else:
            if registered:
                log.info("Worker is already registered, skipping registration")
                self._enter(RegistrationState.ALREADY_REGISTERED)
                return self.state
            log.info("Worker is not registered, proceeding with registration")
            self._enter(RegistrationState.NEEDS_REGISTRATION)

        self._enter(RegistrationState.REGISTERING)
        try:
            self.client.register(self.pubkey, self.owner, self.node_type)
        except RegistrationError:
            self._enter(RegistrationState.FATAL_FAILURE)
            raise

        self._enter(RegistrationState.DONE)
        return self.state


def ensure_registered(client: RegistryClient, pubkey: str, owner: str, node_type: str) -> RegistrationState:
    return RegistrationWorkflow(client, pubkey, owner, node_type).run()
