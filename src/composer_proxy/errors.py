"""Exception hierarchy for the proxy core.

Every failure that can reach a client is a :class:`ProxyError`. The HTTP
layer maps each subclass to its own status so that an unreachable upstream,
a version missing from provider metadata and an unparseable upstream payload
stay distinguishable.
"""

from __future__ import annotations

from typing import Optional


class ProxyError(Exception):
    """Base class for proxy failures."""

    status = 500


class TransportError(ProxyError):
    """Upstream was unreachable or answered with a non-success status."""

    status = 502

    def __init__(self, url: str, reason: str, upstream_status: Optional[int] = None):
        self.url = url
        self.reason = reason
        self.upstream_status = upstream_status
        detail = f" ({upstream_status})" if upstream_status is not None else ""
        super().__init__(f"Failed to fetch {url}{detail}: {reason}")

    @property
    def is_not_found(self) -> bool:
        """True when upstream itself reported the resource missing."""
        return self.upstream_status in (404, 410)


class NotFoundInMetadata(ProxyError):
    """Requested package or version is absent from the provider document."""

    status = 404

    def __init__(self, vendor: str, project: str, version: Optional[str] = None):
        self.vendor = vendor
        self.project = project
        self.version = version
        target = f"{vendor}/{project}"
        if version is not None:
            target = f"{target} {version}"
        super().__init__(f"{target} not found in provider metadata")


class MalformedUpstreamContent(ProxyError):
    """Transport succeeded but the payload could not be used."""

    status = 502


class ContractViolation(ProxyError):
    """Programming error in routing, e.g. an unknown asset kind."""

    status = 500
