"""Shared naming, url-map and error helpers for the L7 controller."""

from __future__ import annotations

import contextlib
import enum
import logging
import re
import threading
from collections.abc import Iterator
from dataclasses import dataclass
from http import HTTPStatus

from glbc.compute import BackendService, GoogleAPIError

log = logging.getLogger(__name__)

BACKEND_PREFIX = "k8s-be"
_BACKEND_REGEX = re.compile(r"k8s-be-([0-9]+).*")
IG_PREFIX = "k8s-ig"
GLOBAL_FIREWALL_SUFFIX = "l7"
CLUSTER_NAME_DELIMITER = "--"
ALPHA_NUMERIC_CHAR = "0"
NAME_LEN_LIMIT = 62

# Key used to carry the default backend through a url map; not a valid host.
DEFAULT_BACKEND_KEY = "DefaultBackend"
# Prefix of the annotations that record debug information on an Ingress.
K8S_ANNOTATION_PREFIX = "ingress.kubernetes.io"

FakeIngressRuleValueMap = dict[str, str]


class PoolOperation(enum.IntEnum):
    """Operations recorded against a sync pool."""

    ADD = 0
    REMOVE = 1
    SYNC = 2
    GET = 3
    CREATE = 4
    UPDATE = 5
    DELETE = 6
    ADD_INSTANCES = 7
    REMOVE_INSTANCES = 8


class AppProtocol(str, enum.Enum):
    """Protocol a service speaks."""

    HTTP = "HTTP"
    HTTPS = "HTTPS"


@dataclass
class NameComponents:
    """Parts of a resource name built by the namer."""

    cluster_name: str = ""
    resource: str = ""
    metadata: str = ""


class Namer:
    """Centralised, thread-safe naming of cluster resources."""

    def __init__(self, cluster_name: str = "", firewall_name: str = "") -> None:
        self._lock = threading.Lock()
        self._cluster_name = ""
        self._firewall_name = ""
        self.cluster_name = cluster_name
        self.firewall_name = firewall_name

    @property
    def cluster_name(self) -> str:
        with self._lock:
            return self._cluster_name

    @cluster_name.setter
    def cluster_name(self, name: str) -> None:
        with self._lock:
            if CLUSTER_NAME_DELIMITER in name:
                tokens = name.split(CLUSTER_NAME_DELIMITER)
                log.warning("Given name %s contains %s, taking last token in: %s", name, CLUSTER_NAME_DELIMITER, tokens)
                name = tokens[-1]
            log.info("Changing cluster name from %s to %s", self._cluster_name, name)
            self._cluster_name = name

    @property
    def firewall_name(self) -> str:
        """The firewall name, falling back to the cluster name when unset."""
        with self._lock:
            return self._firewall_name or self._cluster_name

    @firewall_name.setter
    def firewall_name(self, name: str) -> None:
        with self._lock:
            if self._firewall_name != name:
                log.info("Changing firewall name from %s to %s", self._firewall_name, name)
                self._firewall_name = name

    def truncate(self, key: str) -> str:
        """Cut key to the GCE name length limit, keeping a legal last character."""
        if len(key) > NAME_LEN_LIMIT:
            return key[:NAME_LEN_LIMIT] + ALPHA_NUMERIC_CHAR
        return key

    def _decorate_name(self, name: str) -> str:
        cluster_name = self.cluster_name
        if not cluster_name:
            return name
        return self.truncate(f"{name}{CLUSTER_NAME_DELIMITER}{cluster_name}")

    def parse_name(self, name: str) -> NameComponents:
        """Split a namer-generated resource name into its components."""
        parts = name.split(CLUSTER_NAME_DELIMITER)
        uid = parts[-1] if len(parts) >= 2 else ""
        dashed = name.split("-")
        resource = dashed[1] if len(dashed) >= 2 else ""
        return NameComponents(cluster_name=uid, resource=resource)

    def name_belongs_to_cluster(self, name: str) -> bool:
        """Whether name is tagged with this cluster's UID."""
        if not name.startswith("k8s-"):
            return False
        parts = name.split(CLUSTER_NAME_DELIMITER)
        cluster_name = self.cluster_name
        if len(parts) == 1:
            return cluster_name == ""
        if len(parts) > 2:
            return False
        return parts[1] == cluster_name

    def be_name(self, port: int) -> str:
        """Name of the backend for a node port."""
        return self._decorate_name(f"{BACKEND_PREFIX}-{port}")

    def be_port(self, be_name: str) -> str:
        """Port encoded in a backend name; ValueError if there is none."""
        match = _BACKEND_REGEX.search(be_name)
        if match is None:
            raise ValueError(f"unable to lookup port for {be_name}")
        return match.group(1)

    def ig_name(self) -> str:
        """Name of the cluster's single instance group."""
        return self._decorate_name(IG_PREFIX)

    def fr_suffix(self) -> str:
        """Controller-specific suffix of the firewall rule."""
        firewall_name = self.firewall_name
        if not firewall_name:
            return GLOBAL_FIREWALL_SUFFIX
        return self.truncate(f"{GLOBAL_FIREWALL_SUFFIX}{CLUSTER_NAME_DELIMITER}{firewall_name}")

    def fr_name(self, suffix: str) -> str:
        """Full firewall rule name for a suffix."""
        return f"k8s-fw-{suffix}"

    def lb_name(self, key: str) -> str:
        """Load balancer name for a key, usually an Ingress namespace/name."""
        parts = key.split(CLUSTER_NAME_DELIMITER)
        scrubbed = key.replace("/", "-")
        cluster_name = self.cluster_name
        if not cluster_name or parts[-1] == cluster_name:
            return scrubbed
        return self.truncate(f"{scrubbed}{CLUSTER_NAME_DELIMITER}{cluster_name}")


class GCEURLMap(dict[str, dict[str, "BackendService | None"]]):
    """Nested mapping of hostname -> path -> backend service."""

    def get_default_backend(self) -> BackendService | None:
        """Remove and return the default backend, if any."""
        hosts = self.pop(DEFAULT_BACKEND_KEY, None)
        if hosts is None:
            return None
        return hosts.pop(DEFAULT_BACKEND_KEY, None)

    def put_default_backend(self, backend: BackendService | None) -> None:
        """Replace the default backend with the given one."""
        self[DEFAULT_BACKEND_KEY] = {DEFAULT_BACKEND_KEY: backend}

    def __str__(self) -> str:
        lines = []
        for host, paths in self.items():
            lines.append(f"{host}\n")
            for url, backend in paths.items():
                lines.append(f"\t{url}: " + ("No backend\n" if backend is None else f"{backend.name}\n"))
        return "".join(lines)


def fake_not_found_error() -> GoogleAPIError:
    """A not-found API error."""
    return GoogleAPIError(HTTPStatus.NOT_FOUND)


def is_http_error_code(err: BaseException | None, code: int) -> bool:
    """Whether err is an API error with the given HTTP status code."""
    return isinstance(err, GoogleAPIError) and err.code == code


@contextlib.contextmanager
def ignore_http_not_found() -> Iterator[None]:
    """Suppress API not-found errors raised inside the block."""
    try:
        yield
    except GoogleAPIError as err:
        if err.code != HTTPStatus.NOT_FOUND:
            raise


def is_in_use_by_error(err: BaseException | None) -> bool:
    """Whether err reports a resource still used by another resource."""
    return (
        isinstance(err, GoogleAPIError)
        and err.code == HTTPStatus.BAD_REQUEST
        and "being used by" in err.message
    )


def is_not_found_error(err: BaseException | None) -> bool:
    """Whether err is an API not-found error."""
    return is_http_error_code(err, HTTPStatus.NOT_FOUND)


def compare_links(l1: str, l2: str) -> bool:
    """Whether two self links are equal and non-empty."""
    return l1 == l2 and l1 != ""