from types import SimpleNamespace

import pytest

from glbc.compute import (
    Address,
    BackendService,
    HostRule,
    PathMatcher,
    PathRule,
    SslCertificate,
)
from glbc.fakes import FakeLoadBalancers
from glbc.utils import DEFAULT_BACKEND_KEY


@pytest.fixture
def fake():
    return FakeLoadBalancers("test")


def test_expected_names(fake):
    assert fake.fw_name(False) == "k8s-fw-test"
    assert fake.fw_name(True) == "k8s-fws-test"
    assert fake.um_name() == "k8s-um-test"
    assert fake.tp_name(False) == "k8s-tp-test"
    assert fake.tp_name(True) == "k8s-tps-test"


def test_forwarding_rule_round_trip(fake):
    rule = fake.create_global_forwarding_rule("proxy", "1.2.3.4", "fw", "80-80")
    got = fake.get_global_forwarding_rule("fw")
    assert got is rule
    assert got.ip_address == "1.2.3.4"
    assert got.target == "proxy"
    assert got.port_range == "80-80"
    assert got.ip_protocol == "TCP"
    assert got.self_link == "fw"


def test_forwarding_rule_allocates_ip(fake):
    first = fake.create_global_forwarding_rule("proxy", "", "a", "80-80")
    second = fake.create_global_forwarding_rule("proxy", "", "b", "80-80")
    assert first.ip_address.startswith("0.0.0.")
    assert second.ip_address.startswith("0.0.0.")
    assert first.ip_address != second.ip_address


def test_forwarding_rule_missing_raises(fake):
    with pytest.raises(LookupError, match="forwarding rule nope not found"):
        fake.get_global_forwarding_rule("nope")


def test_set_proxy_and_delete_forwarding_rule(fake):
    fake.create_global_forwarding_rule("old", "1.1.1.1", "fw", "80-80")
    fake.set_proxy_for_global_forwarding_rule("fw", "new")
    assert fake.get_global_forwarding_rule("fw").target == "new"
    fake.delete_global_forwarding_rule("fw")
    assert fake.fw == []
    with pytest.raises(LookupError):
        fake.get_global_forwarding_rule("fw")


def test_forwarding_rules_with_ips(fake):
    fake.create_global_forwarding_rule("p", "1.1.1.1", "a", "80-80")
    fake.create_global_forwarding_rule("p", "2.2.2.2", "b", "80-80")
    fake.create_global_forwarding_rule("p", "3.3.3.3", "c", "80-80")
    found = fake.get_forwarding_rules_with_ips(["1.1.1.1", "3.3.3.3"])
    assert [rule.name for rule in found] == ["a", "c"]


def test_url_map_round_trip(fake):
    backend = BackendService(name="be", self_link="be-link")
    url_map = fake.create_url_map(backend, "um")
    assert fake.get_url_map("um") is url_map
    assert url_map.default_service == "be-link"
    assert url_map.self_link == fake.um_name()


def test_update_url_map(fake):
    fake.create_url_map(BackendService(self_link="a"), "um")
    replacement = fake.get_url_map("um")
    replacement.default_service = "b"
    assert fake.update_url_map(replacement) is replacement
    assert fake.get_url_map("um").default_service == "b"


def test_update_missing_url_map_returns_none(fake):
    url_map = fake.create_url_map(BackendService(self_link="a"), "um")
    fake.delete_url_map("um")
    assert fake.update_url_map(url_map) is None
    with pytest.raises(LookupError, match="url map um not found"):
        fake.get_url_map("um")


def test_target_http_proxy(fake):
    url_map = fake.create_url_map(BackendService(self_link="a"), "um")
    proxy = fake.create_target_http_proxy(url_map, "tp")
    assert fake.get_target_http_proxy("tp").url_map == url_map.self_link
    url_map.self_link = "other"
    fake.set_url_map_for_target_http_proxy(proxy, url_map)
    assert fake.get_target_http_proxy("tp").url_map == "other"
    fake.delete_target_http_proxy("tp")
    with pytest.raises(LookupError):
        fake.get_target_http_proxy("tp")


def test_target_https_proxy(fake):
    url_map = fake.create_url_map(BackendService(self_link="a"), "um")
    cert = fake.create_ssl_certificate(SslCertificate(name="c1"))
    proxy = fake.create_target_https_proxy(url_map, cert, "tps")
    assert fake.get_target_https_proxy("tps").ssl_certificates == ["c1"]
    new_cert = fake.create_ssl_certificate(SslCertificate(name="c2"))
    fake.set_ssl_certificate_for_target_https_proxy(proxy, new_cert)
    assert fake.get_target_https_proxy("tps").ssl_certificates == ["c2"]
    url_map.self_link = "um2"
    fake.set_url_map_for_target_https_proxy(proxy, url_map)
    assert fake.get_target_https_proxy("tps").url_map == "um2"
    fake.delete_target_https_proxy("tps")
    with pytest.raises(LookupError):
        fake.get_target_https_proxy("tps")


def test_set_cert_for_missing_proxy_raises(fake):
    url_map = fake.create_url_map(BackendService(self_link="a"), "um")
    cert = fake.create_ssl_certificate(SslCertificate(name="c"))
    proxy = fake.create_target_https_proxy(url_map, cert, "tps")
    fake.delete_target_https_proxy("tps")
    with pytest.raises(LookupError, match="failed to find proxy tps"):
        fake.set_ssl_certificate_for_target_https_proxy(proxy, cert)


def test_ssl_certificate_self_link_is_name(fake):
    cert = fake.create_ssl_certificate(SslCertificate(name="k8s-ssl-test", certificate="cert"))
    assert cert.self_link == "k8s-ssl-test"
    assert fake.get_ssl_certificate("k8s-ssl-test").certificate == "cert"
    fake.delete_ssl_certificate("k8s-ssl-test")
    with pytest.raises(LookupError, match="cert k8s-ssl-test not found"):
        fake.get_ssl_certificate("k8s-ssl-test")


def test_global_address(fake):
    fake.reserve_global_address(Address(name="ip", address="1.2.3.4"))
    assert fake.get_global_address("ip").address == "1.2.3.4"
    fake.delete_global_address("ip")
    with pytest.raises(LookupError, match="static IP ip not found"):
        fake.get_global_address("ip")


def test_calls_are_recorded(fake):
    fake.create_url_map(BackendService(self_link="a"), "um")
    fake.get_url_map("um")
    fake.delete_url_map("um")
    assert fake.calls == ["CreateUrlMap", "GetUrlMap", "DeleteUrlMap"]


def test_str_lists_resources(fake):
    fake.create_global_forwarding_rule("p", "1.1.1.1", "fw-a", "80-80")
    url_map = fake.create_url_map(BackendService(self_link="a"), "um-a")
    fake.create_target_http_proxy(url_map, "tp-a")
    text = str(fake)
    assert text.startswith("Loadbalancer test,\nforwarding rules:\n")
    assert "\tfw-a\n" in text
    assert "\ttp-a\n" in text
    assert "um-a\n" in text


def _l7_with_map(fake):
    url_map = fake.create_url_map(BackendService(self_link="default"), "um")
    url_map.host_rules = [HostRule(hosts=["foo.example.com"], path_matcher="pm")]
    url_map.path_matchers = [
        PathMatcher(
            name="pm",
            default_service="default",
            path_rules=[
                PathRule(paths=["/foo1"], service="foo1svc"),
                PathRule(paths=["/foo2"], service="foo2svc"),
            ],
        )
    ]
    return SimpleNamespace(um=url_map)


def test_check_url_map_accepts_matching(fake):
    l7 = _l7_with_map(fake)
    expected = {
        DEFAULT_BACKEND_KEY: {DEFAULT_BACKEND_KEY: "default"},
        "foo.example.com": {"/foo1": "foo1svc", "/foo2": "foo2svc"},
    }
    fake.check_url_map(l7, expected)
    assert "CheckURLMap" in fake.calls
    assert expected["foo.example.com"] == {"/foo1": "foo1svc", "/foo2": "foo2svc"}


def test_check_url_map_wrong_service(fake):
    l7 = _l7_with_map(fake)
    expected = {"foo.example.com": {"/foo1": "foo1svc", "/foo2": "wrong"}}
    with pytest.raises(AssertionError) as info:
        fake.check_url_map(l7, expected)
    assert "Expected service wrong found foo2svc" in str(info.value)
    assert "CheckURLMap" in fake.calls


def test_check_url_map_untranslated(fake):
    l7 = _l7_with_map(fake)
    expected = {
        "foo.example.com": {"/foo1": "foo1svc", "/foo2": "foo2svc"},
        "bar.example.com": {"/bar1": "bar1svc"},
    }
    with pytest.raises(AssertionError) as info:
        fake.check_url_map(l7, expected)
    message = str(info.value)
    assert "Untranslated entries" in message
    assert "bar.example.com" in message
    assert "foo.example.com" not in message
    assert fake.calls == ["CreateUrlMap", "CheckURLMap", "GetUrlMap"]


def test_check_url_map_wrong_default(fake):
    l7 = _l7_with_map(fake)
    expected = {DEFAULT_BACKEND_KEY: {DEFAULT_BACKEND_KEY: "other"}}
    with pytest.raises(AssertionError) as info:
        fake.check_url_map(l7, expected)
    assert "Expected default backend other found default" in str(info.value)
    assert "CheckURLMap" in fake.calls