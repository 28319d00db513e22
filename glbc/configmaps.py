"""Config-map backed storage for cluster-wide identifiers."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field

log = logging.getLogger(__name__)

# Key used in config maps to store the cluster UID.
UID_DATA_KEY = "uid"
# Key used in config maps to store the provider UID that keeps firewalls unique.
PROVIDER_DATA_KEY = "provider-uid"
# Namespace holding system config maps.
NAMESPACE_SYSTEM = "kube-system"


@dataclass
class ConfigMap:
    """A named, namespaced string-to-string mapping."""

    name: str = ""
    namespace: str = ""
    data: dict[str, str] = field(default_factory=dict)


def _object_key(obj: ConfigMap) -> str:
    if obj.namespace:
        return f"{obj.namespace}/{obj.name}"
    return obj.name


class ConfigMapStore:
    """An in-memory store of config maps keyed by namespace/name."""

    def __init__(self) -> None:
        self._items: dict[str, ConfigMap] = {}
        self._lock = threading.Lock()

    def add(self, obj: ConfigMap) -> None:
        """Store obj, replacing any config map with the same key."""
        with self._lock:
            self._items[_object_key(obj)] = obj

    def update(self, obj: ConfigMap) -> None:
        """Replace the stored config map with obj."""
        with self._lock:
            self._items[_object_key(obj)] = obj

    def delete(self, obj: ConfigMap) -> None:
        """Remove obj from the store; missing objects are ignored."""
        with self._lock:
            self._items.pop(_object_key(obj), None)

    def get_by_key(self, key: str) -> ConfigMap | None:
        """The config map stored under key, or None."""
        with self._lock:
            return self._items.get(key)


class ConfigMapVault:
    """Stores single string values, such as the cluster UID, in one config map."""

    def __init__(self, store: ConfigMapStore, namespace: str, name: str) -> None:
        self.store = store
        self.namespace = namespace
        self.name = name
        self._lock = threading.Lock()

    @property
    def _key(self) -> str:
        return f"{self.namespace}/{self.name}"

    def get(self, key: str) -> str | None:
        """The value stored under key, or None if the map or key is missing."""
        config_map = self.store.get_by_key(self._key)
        if config_map is None:
            return None
        with self._lock:
            if key in config_map.data:
                return config_map.data[key]
        log.info("Found config map %s but it doesn't contain key %s: %s", self._key, key, config_map.data)
        return None

    def put(self, key: str, value: str) -> None:
        """Store value under key, creating the config map if needed."""
        with self._lock:
            map_key = self._key
            existing = self.store.get_by_key(map_key)
            if existing is not None:
                if key in existing.data and existing.data[key] == value:
                    return
                if key in existing.data:
                    log.info(
                        "Configmap %s has key %s but wrong value %s, updating to %s",
                        map_key, key, existing.data[key], value,
                    )
                else:
                    log.info("Configmap %s will be updated with %s = %s", map_key, key, value)
                data = dict(existing.data)
                data[key] = value
                updated = ConfigMap(name=self.name, namespace=self.namespace, data=data)
                try:
                    self.store.update(updated)
                except Exception as err:
                    raise RuntimeError(f"failed to update {map_key}: {err}") from err
            else:
                created = ConfigMap(name=self.name, namespace=self.namespace, data={key: value})
                try:
                    self.store.add(created)
                except Exception as err:
                    raise RuntimeError(f"failed to add {map_key}: {err}") from err
            log.info("Successfully stored key %s = %s in config map %s", key, value, map_key)

    def delete(self) -> None:
        """Delete the whole config map backing this vault."""
        config_map = self.store.get_by_key(self._key)
        if config_map is None:
            log.warning("Couldn't find item %s in vault, unable to delete", self._key)
            return
        self.store.delete(config_map)


def new_fake_config_map_vault(namespace: str, name: str) -> ConfigMapVault:
    """A vault over a purely in-memory store."""
    return ConfigMapVault(ConfigMapStore(), namespace, name)