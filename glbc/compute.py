"""Cloud resource records used by the L7 load balancer controller.

These mirror the shapes of the GCE compute resources that make up an
HTTP(S) load balancer: forwarding rule -> target proxy -> url map ->
backend service.
"""

from __future__ import annotations

from dataclasses import dataclass, field


class GoogleAPIError(Exception):
    """An error reported by the cloud API, carrying an HTTP status code."""

    def __init__(self, code: int, message: str = "") -> None:
        super().__init__(f"googleapi: Error {code}: {message}" if message else f"googleapi: got HTTP response code {code}")
        self.code = code
        self.message = message


@dataclass
class BackendService:
    """A backend service that a url map routes traffic to."""

    name: str = ""
    self_link: str = ""


@dataclass
class ForwardingRule:
    """A global forwarding rule pointing an IP and port range at a proxy."""

    name: str = ""
    ip_address: str = ""
    target: str = ""
    port_range: str = ""
    ip_protocol: str = ""
    self_link: str = ""


@dataclass
class HostRule:
    """Associates a set of hosts with a path matcher."""

    hosts: list[str] = field(default_factory=list)
    path_matcher: str = ""
    description: str = ""


@dataclass
class PathRule:
    """Maps a set of paths to a backend service link."""

    paths: list[str] = field(default_factory=list)
    service: str = ""


@dataclass
class PathMatcher:
    """A named collection of path rules with a default service."""

    name: str = ""
    default_service: str = ""
    description: str = ""
    path_rules: list[PathRule] = field(default_factory=list)


@dataclass
class UrlMap:
    """Routes requests to backend services by host and path."""

    name: str = ""
    default_service: str = ""
    self_link: str = ""
    host_rules: list[HostRule] = field(default_factory=list)
    path_matchers: list[PathMatcher] = field(default_factory=list)


@dataclass
class TargetHttpProxy:
    """An HTTP proxy that hands requests to a url map."""

    name: str = ""
    url_map: str = ""
    self_link: str = ""


@dataclass
class TargetHttpsProxy:
    """An HTTPS proxy that terminates TLS and hands requests to a url map."""

    name: str = ""
    url_map: str = ""
    ssl_certificates: list[str] = field(default_factory=list)
    self_link: str = ""


@dataclass
class SslCertificate:
    """A TLS certificate and its private key."""

    name: str = ""
    certificate: str = ""
    private_key: str = ""
    self_link: str = ""


@dataclass
class Address:
    """A reserved global static IP address."""

    name: str = ""
    address: str = ""
    self_link: str = ""