"""A single L7 load balancer and the cloud resources that make it up.

The load balancer is not a cloud resource itself. It is built from a chain
of resources: forwarding rule -> target proxy -> url map -> backend service,
plus an optional static IP and TLS certificate.
"""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Callable
from dataclasses import dataclass
from http import HTTPStatus
from typing import Any, TypeVar

from glbc.compute import (
    Address,
    BackendService,
    ForwardingRule,
    GoogleAPIError,
    HostRule,
    PathMatcher,
    PathRule,
    SslCertificate,
    TargetHttpProxy,
    TargetHttpsProxy,
    UrlMap,
)
from glbc.utils import GCEURLMap, Namer, compare_links, ignore_http_not_found, is_http_error_code

log = logging.getLogger(__name__)

# The cloud API matches a host rule to a path matcher by name.
HOST_RULE_PREFIX = "host"
# Host used when none is given; a valid host value for the cloud.
DEFAULT_HOST = "*"
# Path used when none is given; a valid path for the cloud.
DEFAULT_PATH = "/*"

TARGET_PROXY_PREFIX = "k8s-tp"
TARGET_HTTPS_PROXY_PREFIX = "k8s-tps"
SSL_CERT_PREFIX = "k8s-ssl"
FORWARDING_RULE_PREFIX = "k8s-fw"
HTTPS_FORWARDING_RULE_PREFIX = "k8s-fws"
URL_MAP_PREFIX = "k8s-um"
HTTP_DEFAULT_PORT_RANGE = "80-80"
HTTPS_DEFAULT_PORT_RANGE = "443-443"

_T = TypeVar("_T")


def _lookup(getter: Callable[[str], _T], name: str) -> _T | None:
    """Fetch a resource by name, treating any lookup failure as absence."""
    try:
        return getter(name)
    except (LookupError, GoogleAPIError):
        return None


@dataclass
class TLSCerts:
    """PEM encoded TLS material."""

    key: str = ""
    cert: str = ""
    chain: str = ""


@dataclass
class L7RuntimeInfo:
    """What the controller wants a load balancer to look like."""

    name: str = ""
    # Desired IP of the load balancer, eg from a static IP.
    ip: str = ""
    # Certificates to terminate TLS with.
    tls: TLSCerts | None = None
    # Name of an existing cloud certificate to use instead of tls.
    tls_name: str = ""
    # Whether to serve on :80.
    allow_http: bool = False
    # Name of a global static IP whose address the forwarding rules use.
    static_ip_name: str = ""

    def __str__(self) -> str:
        return self.name


def resource_name_from_link(link: str) -> str:
    """The name part of a resource link: its last path segment."""
    return link.split("/")[-1]


def name_for_path_matcher(host_rule: str) -> str:
    """A valid path matcher name derived from a (possibly regex) host rule."""
    return HOST_RULE_PREFIX + hashlib.md5(host_rule.encode()).hexdigest()


def maps_equal(a: UrlMap, b: UrlMap) -> bool:
    """Whether two url maps route identically, in the same order."""
    if a.default_service != b.default_service:
        return False
    if len(a.host_rules) != len(b.host_rules):
        return False
    for ha, hb in zip(a.host_rules, b.host_rules):
        if (ha.description, ha.hosts, ha.path_matcher) != (hb.description, hb.hosts, hb.path_matcher):
            return False
    if len(a.path_matchers) != len(b.path_matchers):
        return False
    for pa, pb in zip(a.path_matchers, b.path_matchers):
        if (pa.default_service, pa.description, pa.name) != (pb.default_service, pb.description, pb.name):
            return False
        if len(pa.path_rules) != len(pb.path_rules):
            return False
        for ra, rb in zip(pa.path_rules, pb.path_rules):
            if ra.paths != rb.paths or ra.service != rb.service:
                return False
    return True


class L7:
    """One L7 load balancer and the cloud resources backing it."""

    def __init__(
        self,
        runtime_info: L7RuntimeInfo,
        name: str,
        cloud: Any,
        default_backend: BackendService | None,
        namer: Namer,
    ) -> None:
        self.runtime_info = runtime_info
        self.name = name
        self.cloud = cloud
        self.default_backend = default_backend
        self.namer = namer
        self.um: UrlMap | None = None
        self.tp: TargetHttpProxy | None = None
        self.tps: TargetHttpsProxy | None = None
        self.fw: ForwardingRule | None = None
        self.fws: ForwardingRule | None = None
        self.ip: Address | None = None
        self.ssl_cert: SslCertificate | None = None
        # The certificate previously attached to the https proxy; certs cannot
        # be updated in place, so it is deleted only after the proxy switched.
        self.old_ssl_cert: SslCertificate | None = None

    def _resource_name(self, prefix: str) -> str:
        return self.namer.truncate(f"{prefix}-{self.name}")

    # Url map and proxies

    def _check_url_map(self) -> None:
        if self.default_backend is None:
            raise RuntimeError("cannot create urlmap without default backend")
        url_map_name = self._resource_name(URL_MAP_PREFIX)
        url_map = _lookup(self.cloud.get_url_map, url_map_name)
        if url_map is not None:
            log.debug("Url map %s already exists", url_map.name)
            self.um = url_map
            return
        log.info("Creating url map %s for backend %s", url_map_name, self.default_backend.name)
        self.um = self.cloud.create_url_map(self.default_backend, url_map_name)

    def _check_proxy(self) -> None:
        if self.um is None:
            raise RuntimeError("cannot create proxy without urlmap")
        proxy_name = self._resource_name(TARGET_PROXY_PREFIX)
        proxy = _lookup(self.cloud.get_target_http_proxy, proxy_name)
        if proxy is None:
            log.info("Creating new http proxy for urlmap %s", self.um.name)
            self.tp = self.cloud.create_target_http_proxy(self.um, proxy_name)
            return
        if not compare_links(proxy.url_map, self.um.self_link):
            log.info(
                "Proxy %s has the wrong url map, setting %s overwriting %s",
                proxy.name, self.um.self_link, proxy.url_map,
            )
            self.cloud.set_url_map_for_target_http_proxy(proxy, self.um)
        self.tp = proxy

    # Certificates

    def _delete_old_ssl_cert(self) -> None:
        old, current = self.old_ssl_cert, self.ssl_cert
        if old is None or current is None or old.name == current.name or not old.name.startswith(SSL_CERT_PREFIX):
            return
        log.info("Cleaning up old SSL Certificate %s, current name %s", old.name, current.name)
        with ignore_http_not_found():
            self.cloud.delete_ssl_certificate(old.name)
        self.old_ssl_cert = None

    def _use_pre_shared_cert(self) -> bool:
        """Use the named existing certificate, if one is named; True if so."""
        cert_name = self.runtime_info.tls_name
        if not cert_name:
            return False
        cert = self.cloud.get_ssl_certificate(cert_name)
        if cert is None:
            raise LookupError(f"cannot find existing sslCertificate {cert_name} for {self.name}")
        log.info("Using existing sslCertificate %s for %s", cert_name, self.name)
        self.ssl_cert = cert
        return True

    def _ssl_cert_link_in_use(self) -> str:
        proxy = _lookup(self.cloud.get_target_https_proxy, self._resource_name(TARGET_HTTPS_PROXY_PREFIX))
        if proxy is not None and proxy.ssl_certificates:
            return proxy.ssl_certificates[0]
        return ""

    def _populate_ssl_cert(self) -> None:
        if self.ssl_cert is not None:
            expected = self.ssl_cert.name
        else:
            expected = resource_name_from_link(self._ssl_cert_link_in_use())
        if not expected:
            return
        try:
            self.ssl_cert = self.cloud.get_ssl_certificate(expected)
        except Exception:
            self.ssl_cert = None
            with ignore_http_not_found():
                raise

    def _next_certificate_name(self) -> str:
        # The certificate name flip-flops between these two on every update.
        primary = self.namer.truncate(f"{SSL_CERT_PREFIX}-{self.name}")
        secondary = self.namer.truncate(f"{SSL_CERT_PREFIX}-1-{self.name}")
        if self.ssl_cert is not None and self.ssl_cert.name == primary:
            return secondary
        return primary

    def _check_ssl_cert(self) -> None:
        if self._use_pre_shared_cert():
            return
        self._populate_ssl_cert()
        tls = self.runtime_info.tls
        if tls is None:
            raise RuntimeError(f"no TLS certificates for {self.name}")
        # The private key is write only, so only certificates are compared.
        if self.ssl_cert is not None and tls.cert == self.ssl_cert.certificate:
            return
        new_name = self._next_certificate_name()
        # A certificate with this name should be unused by now; remove it.
        try:
            with ignore_http_not_found():
                self.cloud.delete_ssl_certificate(new_name)
        except Exception as err:
            raise RuntimeError(
                f"unable to delete ssl certificate with name {new_name!r}, expected it to be unused. err: {err}"
            ) from err
        log.info("Creating new sslCertificate %s for %s", new_name, self.name)
        cert = self.cloud.create_ssl_certificate(
            SslCertificate(name=new_name, certificate=tls.cert, private_key=tls.key)
        )
        self.old_ssl_cert = self.ssl_cert
        self.ssl_cert = cert

    def _check_https_proxy(self) -> None:
        if self.ssl_cert is None:
            log.debug("No SSL certificates for %s, will not create HTTPS proxy.", self.name)
            return
        if self.um is None:
            raise RuntimeError(f"no UrlMap for {self.name}, will not create HTTPS proxy")
        proxy_name = self._resource_name(TARGET_HTTPS_PROXY_PREFIX)
        proxy = _lookup(self.cloud.get_target_https_proxy, proxy_name)
        if proxy is None:
            log.info("Creating new https proxy for urlmap %s", self.um.name)
            self.tps = self.cloud.create_target_https_proxy(self.um, self.ssl_cert, proxy_name)
            return
        if not compare_links(proxy.url_map, self.um.self_link):
            log.info(
                "Https proxy %s has the wrong url map, setting %s overwriting %s",
                proxy.name, self.um.self_link, proxy.url_map,
            )
            self.cloud.set_url_map_for_target_https_proxy(proxy, self.um)
        cert_link = proxy.ssl_certificates[0] if proxy.ssl_certificates else ""
        if not compare_links(cert_link, self.ssl_cert.self_link):
            log.info(
                "Https proxy %s has the wrong ssl certs, setting %s overwriting %s",
                proxy.name, self.ssl_cert.self_link, cert_link,
            )
            self.cloud.set_ssl_certificate_for_target_https_proxy(proxy, self.ssl_cert)
        self.tps = proxy

    # Forwarding rules and IPs

    def _check_forwarding_rule(self, name: str, proxy_link: str, ip: str, port_range: str) -> ForwardingRule:
        fw = _lookup(self.cloud.get_global_forwarding_rule, name)
        if fw is not None and ((ip and fw.ip_address != ip) or fw.port_range != port_range):
            log.warning(
                "Recreating forwarding rule %s(%s), so it has %s(%s)", fw.ip_address, fw.port_range, ip, port_range
            )
            with ignore_http_not_found():
                self.cloud.delete_global_forwarding_rule(name)
            fw = None
        if fw is None:
            log.info(
                "Creating forwarding rule for proxy %s and ip %s:%s",
                resource_name_from_link(proxy_link), ip, port_range,
            )
            fw = self.cloud.create_global_forwarding_rule(proxy_link, ip, name, port_range)
        if compare_links(fw.target, proxy_link):
            log.debug("Forwarding rule %s already exists", fw.name)
        else:
            log.info(
                "Forwarding rule %s has the wrong proxy, setting %s overwriting %s", fw.name, fw.target, proxy_link
            )
            self.cloud.set_proxy_for_global_forwarding_rule(fw.name, proxy_link)
        return fw

    def _effective_ip(self) -> tuple[str, bool]:
        """The IP for the forwarding rules and whether the controller manages it."""
        static_ip_name = self.runtime_info.static_ip_name
        if static_ip_name:
            try:
                addr = self.cloud.get_global_address(static_ip_name)
            except (LookupError, GoogleAPIError) as err:
                addr, reason = None, err
            else:
                reason = None
            if addr is None:
                log.warning(
                    "The given static IP name %s doesn't translate to an existing global static IP, "
                    "ignoring it and allocating a new IP: %s",
                    static_ip_name, reason,
                )
            else:
                return addr.address, False
        if self.ip is not None:
            return self.ip.address, True
        return "", True

    def _check_http_forwarding_rule(self) -> None:
        if self.tp is None:
            raise RuntimeError("cannot create forwarding rule without proxy")
        address, _ = self._effective_ip()
        self.fw = self._check_forwarding_rule(
            self._resource_name(FORWARDING_RULE_PREFIX), self.tp.self_link, address, HTTP_DEFAULT_PORT_RANGE
        )

    def _check_https_forwarding_rule(self) -> None:
        if self.tps is None:
            log.debug("No https target proxy for %s, not created https forwarding rule", self.name)
            return
        address, _ = self._effective_ip()
        self.fws = self._check_forwarding_rule(
            self._resource_name(HTTPS_FORWARDING_RULE_PREFIX), self.tps.self_link, address, HTTPS_DEFAULT_PORT_RANGE
        )

    def _check_static_ip(self) -> None:
        if self.fw is None or not self.fw.ip_address:
            raise RuntimeError("will not create static IP without a forwarding rule")
        address, manage = self._effective_ip()
        if not manage:
            log.debug("Not managing user specified static IP %s", address)
            return
        static_ip_name = self._resource_name(FORWARDING_RULE_PREFIX)
        ip = _lookup(self.cloud.get_global_address, static_ip_name)
        if ip is None:
            log.info("Creating static ip %s", static_ip_name)
            try:
                self.cloud.reserve_global_address(Address(name=static_ip_name, address=self.fw.ip_address))
            except GoogleAPIError as err:
                if is_http_error_code(err, HTTPStatus.CONFLICT) or is_http_error_code(err, HTTPStatus.BAD_REQUEST):
                    log.debug(
                        "IP %s(%s) is already reserved, assuming it is OK to use.",
                        self.fw.ip_address, static_ip_name,
                    )
                    return
                raise
            ip = self.cloud.get_global_address(static_ip_name)
        self.ip = ip

    # Orchestration

    def edge_hop(self) -> None:
        """Create or repair every cloud resource this load balancer needs."""
        self._check_url_map()
        info = self.runtime_info
        wants_https = info.tls is not None or bool(info.tls_name)
        if info.allow_http:
            self._check_proxy()
            self._check_http_forwarding_rule()
        # Promote the ephemeral IP to a static one only when both are served.
        if info.allow_http and wants_https:
            log.debug("checking static ip for %s", self.name)
            self._check_static_ip()
        if wants_https:
            log.debug("validating https for %s", self.name)
            self._check_ssl_cert()
            self._check_https_proxy()
            self._check_https_forwarding_rule()
            self._delete_old_ssl_cert()

    def get_ip(self) -> str:
        """The IP of the http forwarding rule, else of the https one, else ''."""
        if self.fw is not None:
            return self.fw.ip_address
        if self.fws is not None:
            return self.fws.ip_address
        return ""

    def update_url_map(self, ingress_rules: GCEURLMap) -> None:
        """Replace the url map's routing with host -> path -> backend rules.

        Each host gets its own path matcher. The default backend entry of
        ingress_rules, if present, is consumed and used as the default
        service of the map and of every path matcher.
        """
        if self.um is None:
            raise RuntimeError("cannot add url without an urlmap")
        default = ingress_rules.get_default_backend()
        if default is not None:
            self.um.default_service = default.self_link
        else:
            self.um.default_service = self.default_backend.self_link

        self.um.host_rules = []
        self.um.path_matchers = []
        for hostname, url_to_backend in ingress_rules.items():
            matcher_name = name_for_path_matcher(hostname)
            self.um.host_rules.append(HostRule(hosts=[hostname], path_matcher=matcher_name))
            self.um.path_matchers.append(
                PathMatcher(
                    name=matcher_name,
                    default_service=self.um.default_service,
                    path_rules=[
                        PathRule(paths=[expr], service=backend.self_link)
                        for expr, backend in url_to_backend.items()
                    ],
                )
            )

        old_map = _lookup(self.cloud.get_url_map, self.um.name)
        if old_map is not None and maps_equal(old_map, self.um):
            log.info("UrlMap for l7 %s is unchanged", self.name)
            return
        log.debug("Updating URLMap: %r", self.name)
        self.um = self.cloud.update_url_map(self.um)

    def cleanup(self) -> None:
        """Delete this load balancer's resources in dependency order.

        Backends and health checks are shared and left alone; a pre-shared
        certificate named by tls_name is not deleted.
        """
        if self.fw is not None:
            log.info("Deleting global forwarding rule %s", self.fw.name)
            with ignore_http_not_found():
                self.cloud.delete_global_forwarding_rule(self.fw.name)
            self.fw = None
        if self.fws is not None:
            log.info("Deleting global forwarding rule %s", self.fws.name)
            with ignore_http_not_found():
                self.cloud.delete_global_forwarding_rule(self.fws.name)
            self.fws = None
        if self.ip is not None:
            log.info("Deleting static IP %s(%s)", self.ip.name, self.ip.address)
            with ignore_http_not_found():
                self.cloud.delete_global_address(self.ip.name)
            self.ip = None
        if self.tps is not None:
            log.info("Deleting target https proxy %s", self.tps.name)
            with ignore_http_not_found():
                self.cloud.delete_target_https_proxy(self.tps.name)
            self.tps = None
        if self.ssl_cert is not None and not self.runtime_info.tls_name:
            log.info("Deleting sslcert %s", self.ssl_cert.name)
            with ignore_http_not_found():
                self.cloud.delete_ssl_certificate(self.ssl_cert.name)
            self.ssl_cert = None
        if self.tp is not None:
            log.info("Deleting target http proxy %s", self.tp.name)
            with ignore_http_not_found():
                self.cloud.delete_target_http_proxy(self.tp.name)
            self.tp = None
        if self.um is not None:
            log.info("Deleting url map %s", self.um.name)
            with ignore_http_not_found():
                self.cloud.delete_url_map(self.um.name)
            self.um = None

    def backend_names(self) -> list[str]:
        """Sorted names of the backends the url map refers to."""
        if self.um is None:
            return []
        names = {
            resource_name_from_link(rule.service)
            for matcher in self.um.path_matchers
            for rule in matcher.path_rules
        }
        names.add(resource_name_from_link(self.um.default_service))
        names.discard("")
        return sorted(names)