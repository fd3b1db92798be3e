"""Manifests for the frp tunneling server that fronts a k0s control plane."""

from __future__ import annotations

import base64
from collections.abc import Mapping
from typing import Any

FRPS_IMAGE = "snowdreamtech/frps:0.51.3"
FRPS_CONFIG_KEY = "frps.ini"
FRPS_API_PORT = 7000
FRPS_TUNNEL_PORT = 6443
MODE_PROXY = "proxy"

CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"
CLUSTER_SECRET_TYPE = "cluster.x-k8s.io/secret"


def frps_config(token: str, mode: str) -> str:
    """Return the frps.ini contents for the given tunneling mode."""
    if mode == MODE_PROXY:
        return (
            "\n[common]\n"
            "bind_port = 7000\n"
            "tcpmux_httpconnect_port = 6443\n"
            "authentication_method = token\n"
            f"token = {token}\n"
        )
    return (
        "\n[common]\n"
        "bind_port = 7000\n"
        "authentication_method = token\n"
        f"token = {token}\n"
    )


def _config_map_name(name: str) -> str:
    return f"{name}-frps-config"


def _selector(name: str) -> dict[str, str]:
    return {"k0smotron_cluster": name, "app": "frps"}


def frps_config_map(name: str, namespace: str, config: str) -> dict[str, Any]:
    """Build the ConfigMap holding the frps configuration of control plane *name*."""
    return {
        "apiVersion": "v1",
        "kind": "ConfigMap",
        "metadata": {"name": _config_map_name(name), "namespace": namespace},
        "data": {FRPS_CONFIG_KEY: config},
    }


def frps_deployment(name: str, namespace: str) -> dict[str, Any]:
    """Build the Deployment that runs frps for control plane *name*."""
    cm_name = _config_map_name(name)
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": {"name": f"{name}-frps", "namespace": namespace},
        "spec": {
            "selector": {"matchLabels": _selector(name)},
            "template": {
                "metadata": {"labels": _selector(name)},
                "spec": {
                    "volumes": [
                        {
                            "name": cm_name,
                            "configMap": {
                                "name": cm_name,
                                "items": [
                                    {"key": FRPS_CONFIG_KEY, "path": FRPS_CONFIG_KEY}
                                ],
                            },
                        }
                    ],
                    "containers": [
                        {
                            "name": "frps",
                            "image": FRPS_IMAGE,
                            "imagePullPolicy": "IfNotPresent",
                            "ports": [
                                {
                                    "name": "api",
                                    "protocol": "TCP",
                                    "containerPort": FRPS_API_PORT,
                                },
                                {
                                    "name": "tunnel",
                                    "protocol": "TCP",
                                    "containerPort": FRPS_TUNNEL_PORT,
                                },
                            ],
                            "volumeMounts": [
                                {
                                    "name": cm_name,
                                    "mountPath": "/etc/frp/frps.ini",
                                    "subPath": FRPS_CONFIG_KEY,
                                }
                            ],
                        }
                    ],
                },
            },
        },
    }


def _service_port(name: str, port: int, node_port: int) -> dict[str, Any]:
    entry: dict[str, Any] = {
        "name": name,
        "protocol": "TCP",
        "port": port,
        "targetPort": port,
    }
    if node_port:
        entry["nodePort"] = node_port
    return entry


def frps_service(
    name: str,
    namespace: str,
    server_node_port: int,
    tunneling_node_port: int,
) -> dict[str, Any]:
    """Build the NodePort Service exposing frps; a node port of 0 is left to the cluster."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": {"name": f"{name}-frps", "namespace": namespace},
        "spec": {
            "selector": _selector(name),
            "ports": [
                _service_port("api", FRPS_API_PORT, server_node_port),
                _service_port("tunnel", FRPS_TUNNEL_PORT, tunneling_node_port),
            ],
            "type": "NodePort",
        },
    }


def frp_token_secret(cluster_name: str, namespace: str, token: str) -> dict[str, Any]:
    """Build the Secret that stores the frp authentication token of a cluster."""
    return {
        "apiVersion": "v1",
        "kind": "Secret",
        "metadata": {
            "name": f"{cluster_name}-frp-token",
            "namespace": namespace,
            "labels": {CLUSTER_NAME_LABEL: cluster_name},
        },
        "data": {"value": base64.b64encode(token.encode()).decode("ascii")},
        "type": CLUSTER_SECRET_TYPE,
    }


def kubeconfig_target(
    cluster_name: str,
    endpoint: str,
    tunneling: Mapping[str, Any] | None,
) -> dict[str, Any] | None:
    """Describe the extra kubeconfig secret a tunneled cluster needs.

    Returns None when tunneling is off. Otherwise returns the secret name,
    the API server URL and, in proxy mode, the proxy URL to use.
    """
    if not tunneling or not tunneling.get("enabled"):
        return None
    address = tunneling.get("serverAddress", "")
    port = tunneling.get("tunnelingNodePort", 0)
    if tunneling.get("mode") == MODE_PROXY:
        return {
            "secretName": f"{cluster_name}-proxied-kubeconfig",
            "server": f"https://{endpoint}",
            "proxyURL": f"http://{address}:{port}",
        }
    return {
        "secretName": f"{cluster_name}-tunneled-kubeconfig",
        "server": f"https://{address}:{port}",
        "proxyURL": None,
    }