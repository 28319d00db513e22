"""The pool of L7 load balancers kept in step with the controller's wishes."""

from __future__ import annotations

import json
import logging
from collections.abc import Iterable, Mapping
from typing import Any

from glbc.compute import BackendService
from glbc.l7 import L7, L7RuntimeInfo
from glbc.pools import InMemoryPool
from glbc.utils import K8S_ANNOTATION_PREFIX, Namer

log = logging.getLogger(__name__)


class L7s:
    """Creates, updates and garbage collects L7 load balancers.

    ``default_backend_pool`` manages the backend service of the default
    backend; it must offer ``add(node_port)``, ``get(port)``,
    ``delete(port)`` and ``shutdown()``. ``default_backend_node_port`` is
    the service port of that backend and carries a ``port`` attribute.
    """

    def __init__(
        self,
        cloud: Any,
        default_backend_pool: Any,
        default_backend_node_port: Any,
        namer: Namer,
    ) -> None:
        self.cloud = cloud
        self.snapshotter = InMemoryPool()
        self.default_backend: BackendService | None = None
        self.default_backend_pool = default_backend_pool
        self.default_backend_node_port = default_backend_node_port
        self.namer = namer

    def _create(self, runtime_info: L7RuntimeInfo) -> L7:
        if self.default_backend is None:
            log.warning("Creating l7 without a default backend")
        return L7(
            runtime_info,
            self.namer.lb_name(runtime_info.name),
            self.cloud,
            self.default_backend,
            self.namer,
        )

    def get(self, name: str) -> L7:
        """The load balancer for name; LookupError if it is not in the pool."""
        name = self.namer.lb_name(name)
        lb = self.snapshotter.get(name)
        if lb is None:
            raise LookupError(f"loadbalancer {name} not in pool")
        return lb

    def add(self, runtime_info: L7RuntimeInfo) -> None:
        """Get or create a load balancer and make its cloud resources valid."""
        name = self.namer.lb_name(runtime_info.name)
        try:
            lb = self.get(name)
        except LookupError:
            log.info("Creating l7 %s", name)
            lb = self._create(runtime_info)
        else:
            if lb.runtime_info != runtime_info:
                log.info("LB %s runtime info changed, old %r new %r", lb.name, lb.runtime_info, runtime_info)
                lb.runtime_info = runtime_info
        # Keep the lb in the pool even when building it fails part way, so
        # whatever was created is still garbage collected later.
        try:
            lb.edge_hop()
        finally:
            self.snapshotter.add(name, lb)

    def delete(self, name: str) -> None:
        """Tear down the load balancer for name and drop it from the pool."""
        name = self.namer.lb_name(name)
        lb = self.get(name)
        log.info("Deleting lb %s", name)
        lb.cleanup()
        self.snapshotter.delete(name)

    def sync(self, runtime_infos: Iterable[L7RuntimeInfo]) -> None:
        """Create missing load balancers and validate existing ones."""
        runtime_infos = list(runtime_infos)
        log.debug("Syncing loadbalancers %s", [str(info) for info in runtime_infos])
        if runtime_infos:
            # The default backend is created lazily, only once an Ingress exists.
            self.default_backend_pool.add(self.default_backend_node_port)
            self.default_backend = self.default_backend_pool.get(self.default_backend_node_port.port)
        for runtime_info in runtime_infos:
            self.add(runtime_info)

    def gc(self, names: Iterable[str]) -> None:
        """Delete every load balancer not named in names.

        With no names left, the default backend is torn down as well.
        """
        names = list(names)
        known = {self.namer.lb_name(name) for name in names}
        for name in self.snapshotter.snapshot():
            if name in known:
                continue
            log.debug("GCing loadbalancer %s", name)
            self.delete(name)
        if not names:
            self.default_backend_pool.delete(self.default_backend_node_port.port)
            self.default_backend = None

    def shutdown(self) -> None:
        """Delete all load balancers and shut the default backend pool down."""
        self.gc([])
        self.default_backend_pool.shutdown()
        log.info("Loadbalancer pool shutdown.")


def get_lb_annotations(
    l7: L7, existing: dict[str, str] | None, backend_pool: Any
) -> dict[str, str]:
    """Record the resources of l7 and its backends' status in annotations.

    ``backend_pool.status(name)`` gives the status of a backend. The
    annotations are written into ``existing`` (a new dict if None), which is
    returned.
    """
    if existing is None:
        existing = {}
    backend_state = {name: backend_pool.status(name) for name in l7.backend_names()}
    try:
        json_backend_state = json.dumps(backend_state, sort_keys=True, separators=(",", ":"))
    except (TypeError, ValueError):
        json_backend_state = "Unknown"

    def key(resource: str) -> str:
        return f"{K8S_ANNOTATION_PREFIX}/{resource}"

    existing[key("url-map")] = l7.um.name
    # http resources are absent unless allow_http, https ones unless TLS.
    optional = (
        ("forwarding-rule", l7.fw),
        ("target-proxy", l7.tp),
        ("https-forwarding-rule", l7.fws),
        ("https-target-proxy", l7.tps),
        ("static-ip", l7.ip),
        ("ssl-cert", l7.ssl_cert),
    )
    for resource, value in optional:
        if value is not None:
            existing[key(resource)] = value.name
    existing[key("backends")] = json_backend_state
    return existing


def gce_resource_name(annotations: Mapping[str, str], resource_name: str) -> str:
    """The cloud resource name recorded in an Ingress's annotations, or ''."""
    return annotations.get(f"{K8S_ANNOTATION_PREFIX}/{resource_name}", "")