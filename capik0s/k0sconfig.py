"""Building and adjusting the k0s ClusterConfig carried by a control plane."""

from __future__ import annotations

import copy
from dataclasses import dataclass
from typing import Any

DEFAULT_K0S_SUFFIX = "k0s.0"
DEFAULT_K0S_VERSION = "v1.27.9+k0s.0"

K0S_CONFIG_API_VERSION = "k0s.k0sproject.io/v1beta1"
K0S_CONFIG_KIND = "ClusterConfig"

_MISSING = object()


@dataclass
class ClusterNetwork:
    """Network settings of a cluster: pod and service CIDR blocks and the service domain."""

    pods: list[str] | None = None
    services: list[str] | None = None
    service_domain: str = ""


def _is_empty(value: Any) -> bool:
    if value is None or value is False:
        return True
    if isinstance(value, (str, dict, list)):
        return not value
    if isinstance(value, (int, float)):
        return value == 0
    return False


def _merge(dst: dict[str, Any], src: dict[str, Any]) -> None:
    """Fill keys of *dst* that are missing or empty from *src*, recursing into maps."""
    for key, src_value in src.items():
        if key in dst:
            dst_value = dst[key]
            if isinstance(dst_value, dict) and isinstance(src_value, dict):
                _merge(dst_value, src_value)
                continue
            if not _is_empty(dst_value):
                continue
        dst[key] = copy.deepcopy(src_value)


def _nested(obj: dict[str, Any], *path: str) -> tuple[Any, bool]:
    current: Any = obj
    for depth, key in enumerate(path):
        if not isinstance(current, dict):
            raise ValueError(
                f"{'.'.join(path[:depth])} accessor error: {current!r} is not a map"
            )
        current = current.get(key, _MISSING)
        if current is _MISSING:
            return None, False
    return current, True


def _set_nested(obj: dict[str, Any], value: Any, *path: str) -> None:
    current = obj
    for depth, key in enumerate(path[:-1]):
        child = current.get(key)
        if child is None:
            child = current[key] = {}
        elif not isinstance(child, dict):
            raise ValueError(
                f"value cannot be set because {'.'.join(path[: depth + 1])} is not a map"
            )
        current = child
    current[path[-1]] = value


def enrich_k0s_config_with_cluster_data(
    cluster_network: ClusterNetwork | None,
    k0s_config: dict[str, Any] | None,
) -> dict[str, Any] | None:
    """Fill network settings of the k0s config from the cluster, keeping values already set."""
    if cluster_network is None:
        return k0s_config

    network: dict[str, Any] = {}
    if cluster_network.pods is not None:
        network["podCIDR"] = ",".join(cluster_network.pods)
    if cluster_network.services is not None:
        network["serviceCIDR"] = ",".join(cluster_network.services)
    if cluster_network.service_domain:
        network["clusterDomain"] = cluster_network.service_domain

    if k0s_config is None:
        k0s_config = {}

    _merge(
        k0s_config,
        {
            "apiVersion": K0S_CONFIG_API_VERSION,
            "kind": K0S_CONFIG_KIND,
            "spec": {"network": network},
        },
    )
    return k0s_config


def reconcile_k0s_config(
    k0s_config: dict[str, Any] | None,
    endpoint_host: str,
    tunneling_server_address: str = "",
) -> dict[str, Any] | None:
    """Point the API of the k0s config at the control plane endpoint.

    Without node-local load balancing the endpoint becomes the external
    address; with it, the endpoint is prepended to the SANs. A tunneling
    server address is appended to the SANs as well.
    """
    if k0s_config is None:
        return None

    nllb_enabled, found = _nested(
        k0s_config, "spec", "network", "nodeLocalLoadBalancing", "enabled"
    )
    if found and not isinstance(nllb_enabled, bool):
        raise ValueError(
            f"error getting nodeLocalLoadBalancing: {nllb_enabled!r} is not a bool"
        )

    if not (found and nllb_enabled):
        _set_nested(k0s_config, endpoint_host, "spec", "api", "externalAddress")
    else:
        sans = [endpoint_host]
        try:
            existing, sans_found = _nested(k0s_config, "spec", "api", "sans")
        except ValueError:
            existing, sans_found = None, False
        if (
            sans_found
            and isinstance(existing, list)
            and all(isinstance(item, str) for item in existing)
        ):
            sans.extend(existing)
        _set_nested(k0s_config, sans, "spec", "api", "sans")

    if tunneling_server_address:
        existing, sans_found = _nested(k0s_config, "spec", "api", "sans")
        if sans_found and existing is not None and not isinstance(existing, list):
            raise ValueError(f"error getting sans from config: {existing!r} is not a list")
        sans = list(existing or [])
        sans.append(tunneling_server_address)
        _set_nested(k0s_config, sans, "spec", "api", "sans")

    return k0s_config


def normalize_version(version: str) -> str:
    """Apply the default version and make sure the k0s build suffix is present."""
    if not version:
        version = DEFAULT_K0S_VERSION
    if "+k0s." not in version:
        version = f"{version}+{DEFAULT_K0S_SUFFIX}"
    return version