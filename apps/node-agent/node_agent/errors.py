"""
Errors
======

Every failure the agent reports is one of these. Library exceptions
(aiohttp, requests, json) are translated at the module that talks to the
library, so callers only ever catch NodeAgentError subclasses.
"""

from __future__ import annotations
from typing import Optional


class NodeAgentError(Exception):
    """Base class for all node agent errors."""


class ConfigError(NodeAgentError):
    """Invalid or missing configuration."""


class IdentityError(NodeAgentError):
    """The node keypair could not be loaded or created."""


# ─── Transport ────────────────────────────────────────────────────────────────

class TransportError(NodeAgentError):
    """
    An inventory probe failed. ``str(err)`` is the human-readable text that
    ends up in the health report metadata, so each subclass fixes its prefix.
    """

    prefix = "Transport error"

    def __init__(self, detail: str):
        super().__init__(detail)
        self.detail = detail

    def __str__(self) -> str:
        return f"{self.prefix}: {self.detail}"


class ConnectionFailure(TransportError):
    prefix = "Connection error"


class DecodeFailure(TransportError):
    prefix = "Parse error"


class RequestBuildError(TransportError):
    prefix = "Request error"


class HttpStatusError(TransportError):
    prefix = "HTTP error"

    def __init__(self, status: int):
        super().__init__(str(status))
        self.status = status


# ─── Registry ─────────────────────────────────────────────────────────────────

class RegistryUnavailable(NodeAgentError):
    """The registry could not be reached at the network level."""


class RegistrationError(NodeAgentError):
    """The registry refused, or never received, the registration request."""

    def __init__(self, message: str, status: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body   = body
