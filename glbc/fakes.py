"""In-memory stand-in for the cloud API that manages L7 load balancer resources."""

from __future__ import annotations

import itertools
from collections.abc import Iterable, Mapping
from typing import Any

from glbc.compute import (
    Address,
    BackendService,
    ForwardingRule,
    SslCertificate,
    TargetHttpProxy,
    TargetHttpsProxy,
    UrlMap,
)
from glbc.utils import DEFAULT_BACKEND_KEY

TARGET_PROXY_PREFIX = "k8s-tp"
TARGET_HTTPS_PROXY_PREFIX = "k8s-tps"
FORWARDING_RULE_PREFIX = "k8s-fw"
HTTPS_FORWARDING_RULE_PREFIX = "k8s-fws"
URL_MAP_PREFIX = "k8s-um"

_ip_counter = itertools.count(1)


def _next_test_ip() -> str:
    return f"0.0.0.{next(_ip_counter)}"


def _find(items: Iterable[Any], name: str) -> Any | None:
    return next((item for item in items if item.name == name), None)


class FakeLoadBalancers:
    """Keeps load balancer resources in lists and records every call made.

    ``name`` is inserted into the names of the resources this fake expects,
    eg: the forwarding rule of load balancer ``name`` is ``k8s-fw-name``.
    """

    def __init__(self, name: str) -> None:
        self.name = name
        self.fw: list[ForwardingRule] = []
        self.um: list[UrlMap] = []
        self.tp: list[TargetHttpProxy] = []
        self.tps: list[TargetHttpsProxy] = []
        self.ip: list[Address] = []
        self.certs: list[SslCertificate] = []
        self.calls: list[str] = []

    def fw_name(self, https: bool) -> str:
        """Expected name of the (https) forwarding rule."""
        prefix = HTTPS_FORWARDING_RULE_PREFIX if https else FORWARDING_RULE_PREFIX
        return f"{prefix}-{self.name}"

    def um_name(self) -> str:
        """Expected name of the url map."""
        return f"{URL_MAP_PREFIX}-{self.name}"

    def tp_name(self, https: bool) -> str:
        """Expected name of the (https) target proxy."""
        prefix = TARGET_HTTPS_PROXY_PREFIX if https else TARGET_PROXY_PREFIX
        return f"{prefix}-{self.name}"

    def __str__(self) -> str:
        lines = [f"Loadbalancer {self.name},\nforwarding rules:\n"]
        lines.extend(f"\t{fw.name}\n" for fw in self.fw)
        lines.append("Target proxies\n")
        lines.extend(f"\t{tp.name}\n" for tp in self.tp)
        lines.append("UrlMaps\n")
        for um in self.um:
            lines.append(f"{um.name}\n")
            lines.append("\tHost Rules:\n")
            lines.extend(f"\t\t{host_rule!r}\n" for host_rule in um.host_rules)
            lines.append("\tPath Matcher:\n")
            for matcher in um.path_matchers:
                lines.append(f"\t\t{matcher.name}\n")
                lines.extend(f"\t\t\t{rule!r}\n" for rule in matcher.path_rules)
        return "".join(lines)

    # Forwarding rules

    def get_global_forwarding_rule(self, name: str) -> ForwardingRule:
        """The forwarding rule called name; LookupError if there is none."""
        self.calls.append("GetGlobalForwardingRule")
        rule = _find(self.fw, name)
        if rule is None:
            raise LookupError(f"forwarding rule {name} not found")
        return rule

    def create_global_forwarding_rule(
        self, proxy_link: str, ip: str, name: str, port_range: str
    ) -> ForwardingRule:
        """Create a forwarding rule, allocating an IP when none is given."""
        self.calls.append("CreateGlobalForwardingRule")
        if not ip:
            ip = _next_test_ip()
        rule = ForwardingRule(
            name=name,
            ip_address=ip,
            target=proxy_link,
            port_range=port_range,
            ip_protocol="TCP",
            self_link=name,
        )
        self.fw.append(rule)
        return rule

    def set_proxy_for_global_forwarding_rule(self, forwarding_rule_name: str, proxy_link: str) -> None:
        """Point every forwarding rule with the given name at proxy_link."""
        self.calls.append("SetProxyForGlobalForwardingRule")
        for rule in self.fw:
            if rule.name == forwarding_rule_name:
                rule.target = proxy_link

    def delete_global_forwarding_rule(self, name: str) -> None:
        """Remove forwarding rules called name."""
        self.calls.append("DeleteGlobalForwardingRule")
        self.fw = [rule for rule in self.fw if rule.name != name]

    def get_forwarding_rules_with_ips(self, ips: Iterable[str]) -> list[ForwardingRule]:
        """All forwarding rules whose IP is among ips."""
        self.calls.append("GetForwardingRulesWithIPs")
        wanted = set(ips)
        return [rule for rule in self.fw if rule.ip_address in wanted]

    # Url maps

    def get_url_map(self, name: str) -> UrlMap:
        """The url map called name; LookupError if there is none."""
        self.calls.append("GetUrlMap")
        url_map = _find(self.um, name)
        if url_map is None:
            raise LookupError(f"url map {name} not found")
        return url_map

    def create_url_map(self, backend: BackendService, name: str) -> UrlMap:
        """Create a url map defaulting to backend."""
        self.calls.append("CreateUrlMap")
        url_map = UrlMap(name=name, default_service=backend.self_link, self_link=self.um_name())
        self.um.append(url_map)
        return url_map

    def update_url_map(self, url_map: UrlMap) -> UrlMap | None:
        """Replace the url map of the same name; None if there is none."""
        self.calls.append("UpdateUrlMap")
        for index, existing in enumerate(self.um):
            if existing.name == url_map.name:
                self.um[index] = url_map
                return url_map
        return None

    def delete_url_map(self, name: str) -> None:
        """Remove url maps called name."""
        self.calls.append("DeleteUrlMap")
        self.um = [url_map for url_map in self.um if url_map.name != name]

    # Target HTTP proxies

    def get_target_http_proxy(self, name: str) -> TargetHttpProxy:
        """The target http proxy called name; LookupError if there is none."""
        self.calls.append("GetTargetHttpProxy")
        proxy = _find(self.tp, name)
        if proxy is None:
            raise LookupError(f"target http proxy {name} not found")
        return proxy

    def create_target_http_proxy(self, url_map: UrlMap, name: str) -> TargetHttpProxy:
        """Create a target http proxy for url_map."""
        self.calls.append("CreateTargetHttpProxy")
        proxy = TargetHttpProxy(name=name, url_map=url_map.self_link, self_link=name)
        self.tp.append(proxy)
        return proxy

    def delete_target_http_proxy(self, name: str) -> None:
        """Remove target http proxies called name."""
        self.calls.append("DeleteTargetHttpProxy")
        self.tp = [proxy for proxy in self.tp if proxy.name != name]

    def set_url_map_for_target_http_proxy(self, proxy: TargetHttpProxy, url_map: UrlMap) -> None:
        """Point the named target http proxy at url_map."""
        self.calls.append("SetUrlMapForTargetHttpProxy")
        for existing in self.tp:
            if existing.name == proxy.name:
                existing.url_map = url_map.self_link

    # Target HTTPS proxies

    def get_target_https_proxy(self, name: str) -> TargetHttpsProxy:
        """The target https proxy called name; LookupError if there is none."""
        self.calls.append("GetTargetHttpsProxy")
        proxy = _find(self.tps, name)
        if proxy is None:
            raise LookupError(f"target https proxy {name} not found")
        return proxy

    def create_target_https_proxy(
        self, url_map: UrlMap, cert: SslCertificate, name: str
    ) -> TargetHttpsProxy:
        """Create a target https proxy for url_map terminating with cert."""
        self.calls.append("CreateTargetHttpsProxy")
        proxy = TargetHttpsProxy(
            name=name,
            url_map=url_map.self_link,
            ssl_certificates=[cert.self_link],
            self_link=name,
        )
        self.tps.append(proxy)
        return proxy

    def delete_target_https_proxy(self, name: str) -> None:
        """Remove target https proxies called name."""
        self.calls.append("DeleteTargetHttpsProxy")
        self.tps = [proxy for proxy in self.tps if proxy.name != name]

    def set_url_map_for_target_https_proxy(self, proxy: TargetHttpsProxy, url_map: UrlMap) -> None:
        """Point the named target https proxy at url_map."""
        self.calls.append("SetUrlMapForTargetHttpsProxy")
        for existing in self.tps:
            if existing.name == proxy.name:
                existing.url_map = url_map.self_link

    def set_ssl_certificate_for_target_https_proxy(
        self, proxy: TargetHttpsProxy, cert: SslCertificate
    ) -> None:
        """Make cert the only certificate of the named proxy."""
        self.calls.append("SetSslCertificateForTargetHttpsProxy")
        found = False
        for existing in self.tps:
            if existing.name == proxy.name:
                existing.ssl_certificates = [cert.self_link]
                found = True
        if not found:
            raise LookupError(f"failed to find proxy {proxy.name}")

    # Url map verification

    def check_url_map(self, l7: Any, expected_map: Mapping[str, Mapping[str, str]]) -> None:
        """Assert that the url map of l7 routes exactly as expected_map says.

        expected_map maps host -> path -> service link; the entry
        DEFAULT_BACKEND_KEY -> DEFAULT_BACKEND_KEY names the default service.
        """
        self.calls.append("CheckURLMap")
        url_map = l7.um
        self.get_url_map(url_map.name)
        remaining = {host: dict(paths) for host, paths in expected_map.items()}

        default_service = ""
        default_hosts = remaining.pop(DEFAULT_BACKEND_KEY, None)
        if default_hosts is not None:
            default_service = default_hosts.get(DEFAULT_BACKEND_KEY, "")
        if default_service and url_map.default_service != default_service:
            raise AssertionError(
                f"Expected default backend {default_service} found {url_map.default_service}"
            )

        for matcher in url_map.path_matchers:
            hostname = ""
            for host_rule in url_map.host_rules:
                if matcher.name != host_rule.path_matcher:
                    continue
                if len(host_rule.hosts) != 1:
                    raise AssertionError(f"Unexpected hosts in hostrules {host_rule!r}")
                if default_service and matcher.default_service != default_service:
                    raise AssertionError(
                        f"Expected default backend {default_service} found {matcher.default_service}"
                    )
                hostname = host_rule.hosts[0]
                break
            for rule in matcher.path_rules:
                if len(rule.paths) != 1:
                    raise AssertionError(f"Unexpected rule in pathrules {rule!r}")
                path = rule.paths[0]
                host_map = remaining.get(hostname)
                if host_map is None:
                    raise AssertionError(f"Expected map for host {hostname}")
                if path not in host_map:
                    raise AssertionError(f"Expected rule {path} in host map")
                if host_map[path] != rule.service:
                    raise AssertionError(f"Expected service {host_map[path]} found {rule.service}")
                del host_map[path]
                if not host_map:
                    del remaining[hostname]

        if remaining:
            raise AssertionError(f"Untranslated entries {remaining!r}")

    # Static IPs

    def reserve_global_address(self, addr: Address) -> None:
        """Reserve a static IP."""
        self.calls.append("ReserveGlobalAddress")
        self.ip.append(addr)

    def get_global_address(self, name: str) -> Address:
        """The static IP called name; LookupError if there is none."""
        self.calls.append("GetGlobalAddress")
        addr = _find(self.ip, name)
        if addr is None:
            raise LookupError(f"static IP {name} not found")
        return addr

    def delete_global_address(self, name: str) -> None:
        """Release static IPs called name."""
        self.calls.append("DeleteGlobalAddress")
        self.ip = [addr for addr in self.ip if addr.name != name]

    # SSL certificates

    def get_ssl_certificate(self, name: str) -> SslCertificate:
        """The certificate called name; LookupError if there is none."""
        self.calls.append("GetSslCertificate")
        cert = _find(self.certs, name)
        if cert is None:
            raise LookupError(f"cert {name} not found")
        return cert

    def create_ssl_certificate(self, cert: SslCertificate) -> SslCertificate:
        """Store cert, setting its self link to its name."""
        self.calls.append("CreateSslCertificate")
        cert.self_link = cert.name
        self.certs.append(cert)
        return cert

    def delete_ssl_certificate(self, name: str) -> None:
        """Remove certificates called name."""
        self.calls.append("DeleteSslCertificate")
        self.certs = [cert for cert in self.certs if cert.name != name]