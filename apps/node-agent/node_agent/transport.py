"""
Inventory Transport
===================

Sends the one query this agent makes to the dstack guest agent,
``GET /prpc/ListGpus?json``, over either plain HTTP or a Unix domain socket.

The endpoint is chosen once, from the configured URL:

  unix:///var/run/dstack.sock   → UnixSocketTransport
  http://localhost:19060        → HttpTransport

Both transports keep a single aiohttp ClientSession that every concurrent
probe shares. There is no retry here; callers decide whether to try again.
"""

from __future__ import annotations
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, Union

import aiohttp

from .errors import (
    ConfigError,
    ConnectionFailure,
    HttpStatusError,
    RequestBuildError,
)
from .inventory import InventoryResponse

log = logging.getLogger(__name__)

UNIX_PREFIX    = "unix://"
INVENTORY_PATH = "/prpc/ListGpus?json"

# Virtual host used for requests that travel over the socket
UNIX_VIRTUAL_HOST = "127.0.0.1"

DEFAULT_PROBE_TIMEOUT = 5.0


# ─── Endpoint ─────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class HttpEndpoint:
    base_url: str


@dataclass(frozen=True)
class UnixSocketEndpoint:
    path: str


Endpoint = Union[HttpEndpoint, UnixSocketEndpoint]


def parse_endpoint(url: str) -> Endpoint:
    """Select the endpoint kind from the configured connection string."""
    url = (url or "").strip()
    if not url:
        raise ConfigError("backend URL is empty")

    if url.startswith(UNIX_PREFIX):
        path = url[len(UNIX_PREFIX):]
        if not path:
            raise ConfigError(f"no socket path in {url!r}")
        return UnixSocketEndpoint(path=path)

    return HttpEndpoint(base_url=url.rstrip("/"))


# ─── Transports ───────────────────────────────────────────────────────────────

class InventoryTransport(ABC):
    """Common probe logic. Subclasses only say where the request goes."""

    def __init__(self, timeout: Optional[float] = DEFAULT_PROBE_TIMEOUT):
        # 0 / None means no deadline at all
        self._timeout = aiohttp.ClientTimeout(total=timeout or None)
        self._session: Optional[aiohttp.ClientSession] = None

    @property
    @abstractmethod
    def endpoint(self) -> Endpoint:
        ...

    @abstractmethod
    def _request_url(self) -> str:
        ...

    def _request_headers(self) -> dict:
        return {}

    def _make_connector(self) -> Optional[aiohttp.BaseConnector]:
        return None

    def _describe(self) -> str:
        return self._request_url()

    def _get_session(self) -> aiohttp.ClientSession:
        # Created lazily so it binds to the running event loop
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                connector = self._make_connector(),
                timeout   = self._timeout,
            )
        return self._session

    async def probe_inventory(self) -> InventoryResponse:
        """
        Query the backend once.

        Raises one of ConnectionFailure, HttpStatusError, DecodeFailure or
        RequestBuildError; all are TransportError subclasses.
        """
        log.info(f"Checking dstack health via {self._describe()}")
        session = self._get_session()

        try:
            async with session.get(self._request_url(), headers=self._request_headers()) as resp:
                if not 200 <= resp.status < 300:
                    raise HttpStatusError(resp.status)
                body = await resp.read()
        except aiohttp.InvalidURL as e:
            raise RequestBuildError(str(e)) from e
        except aiohttp.ClientError as e:
            raise ConnectionFailure(str(e) or type(e).__name__) from e
        except asyncio.TimeoutError as e:
            raise ConnectionFailure(f"timed out after {self._timeout.total}s") from e
        except ValueError as e:
            raise RequestBuildError(str(e)) from e

        return InventoryResponse.from_json(body)

    async def close(self):
        if self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None


class HttpTransport(InventoryTransport):
    def __init__(self, endpoint: HttpEndpoint, timeout: Optional[float] = DEFAULT_PROBE_TIMEOUT):
        super().__init__(timeout)
        self._endpoint = endpoint

    @property
    def endpoint(self) -> HttpEndpoint:
        return self._endpoint

    def _request_url(self) -> str:
        return f"{self._endpoint.base_url}{INVENTORY_PATH}"

    def _describe(self) -> str:
        return f"HTTP at: {self._request_url()}"


class UnixSocketTransport(InventoryTransport):
    def __init__(self, endpoint: UnixSocketEndpoint, timeout: Optional[float] = DEFAULT_PROBE_TIMEOUT):
        super().__init__(timeout)
        self._endpoint = endpoint

    @property
    def endpoint(self) -> UnixSocketEndpoint:
        return self._endpoint

    def _request_url(self) -> str:
        return f"http://{UNIX_VIRTUAL_HOST}{INVENTORY_PATH}"

    def _request_headers(self) -> dict:
        return {"Host": UNIX_VIRTUAL_HOST}

    def _make_connector(self) -> aiohttp.BaseConnector:
        return aiohttp.UnixConnector(path=self._endpoint.path)

    def _describe(self) -> str:
        return f"Unix socket at: {self._endpoint.path}"


def make_transport(endpoint: Endpoint, timeout: Optional[float] = DEFAULT_PROBE_TIMEOUT) -> InventoryTransport:
    if isinstance(endpoint, UnixSocketEndpoint):
        log.info(f"Using Unix socket connection: {endpoint.path}")
        return UnixSocketTransport(endpoint, timeout)
    log.info(f"Using HTTP connection: {endpoint.base_url}")
    return HttpTransport(endpoint, timeout)
