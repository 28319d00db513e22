# glbc

Building blocks for managing L7 (HTTP and HTTPS) cloud load balancers. The package
keeps the set of cloud resources that make up a load balancer (URL map, target
proxies, forwarding rules, static IP and SSL certificate) in line with what an
Ingress asks for.

## What is inside

- `glbc.compute`: the resource records (`UrlMap`, `HostRule`, `PathMatcher`,
  `PathRule`, `ForwardingRule`, `TargetHttpProxy`, `TargetHttpsProxy`,
  `SslCertificate`, `Address`, `BackendService`) and `GoogleAPIError`, an
  exception carrying an HTTP status `code` and a `message`.
- `glbc.utils`: `Namer`, which builds and parses resource names for a cluster
  (`lb_name`, `be_name`, `be_port`, `ig_name`, `fr_suffix`, `fr_name`,
  `parse_name`, `name_belongs_to_cluster`, `truncate`, and the thread-safe
  `cluster_name` / `firewall_name` properties); `GCEURLMap`, a host → path →
  backend mapping with `get_default_backend` and `put_default_backend`; the
  `ignore_http_not_found()` context manager; and `is_http_error_code`,
  `is_not_found_error`, `is_in_use_by_error`, `fake_not_found_error` and
  `compare_links`.
- `glbc.pools`: `InMemoryPool` and `CloudListingPool`, thread-safe key/value
  pools. `CloudListingPool` refills itself from a lister callable on a
  background thread every `relist_period` seconds (pass `start=False` to refill
  only by calling `replenish_pool()`); `stop()` or a `with` block ends the thread.
- `glbc.configmaps`: `ConfigMapStore`, an in-memory store of `ConfigMap`
  objects keyed by `namespace/name`, and `ConfigMapVault`, which keeps string
  values in a single config map. `new_fake_config_map_vault` gives you a vault
  over a fresh store.
- `glbc.fakes`: `FakeLoadBalancers`, an in-memory cloud that records every call
  in `calls` and raises `LookupError` for missing resources; `check_url_map`
  raises `AssertionError` when a load balancer's URL map does not match an
  expected host → path → service mapping.
- `glbc.l7`: `L7`, a single load balancer (`edge_hop`, `update_url_map`,
  `cleanup`, `get_ip`, `backend_names`), plus `TLSCerts`, `L7RuntimeInfo`,
  `maps_equal`, `name_for_path_matcher` and `resource_name_from_link`.
- `glbc.pool`: `L7s`, the pool that syncs, garbage-collects and shuts down load
  balancers, and `get_lb_annotations` / `gce_resource_name`.

## Installing

```
pip install .
```

To run the tests:

```
pip install ".[test]"
pytest
```

## Example

```python
from glbc.utils import Namer

namer = Namer("uid123", "uid123")
namer.lb_name("default/web")        # 'default-web--uid123'
namer.be_name(30001)                # 'k8s-be-30001--uid123'
namer.parse_name("k8s-fw-default-web--uid123").cluster_name  # 'uid123'
```

A vault that stores the cluster UID:

```python
from glbc.configmaps import new_fake_config_map_vault

vault = new_fake_config_map_vault("kube-system", "ingress-uid")
vault.put("uid", "abc")
vault.get("uid")      # 'abc'
vault.get("missing")  # None
```

Building a load balancer against the in-memory cloud. `L7s` needs a default
backend pool offering `add(node_port)`, `get(port)`, `delete(port)` and
`shutdown()`, and a node port object with a `port` attribute:

```python
from types import SimpleNamespace

from glbc.compute import BackendService
from glbc.fakes import FakeLoadBalancers
from glbc.l7 import L7RuntimeInfo
from glbc.pool import L7s
from glbc.utils import Namer


class DefaultBackends:
    def add(self, node_port): pass
    def get(self, port): return BackendService(name="k8s-be-3000", self_link="k8s-be-3000")
    def delete(self, port): pass
    def shutdown(self): pass


cloud = FakeLoadBalancers("test")
pool = L7s(cloud, DefaultBackends(), SimpleNamespace(port=3000), Namer())
pool.sync([L7RuntimeInfo(name="test", allow_http=True)])
pool.get("test").get_ip()   # the forwarding rule's address
pool.shutdown()             # deletes every load balancer
```

## What this package does not do

- It has no command-line program, health endpoint or long-running controller
  loop; it is a library to be driven by your own code.
- It contains no client for a real cloud API. `L7` and `L7s` work against any
  object offering the same methods as `FakeLoadBalancers`, which is the only
  implementation included.
- `ConfigMapStore` keeps config maps in memory only; nothing is persisted or
  sent to a cluster API server.
- It does not manage backend services, instance groups or health checks; the
  default backend pool handed to `L7s` must be supplied by the caller.