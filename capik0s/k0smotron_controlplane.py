"""Manifests and decisions for control planes hosted as k0smotron clusters."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import asdict, dataclass
from typing import Any

from capik0s.machines import CLUSTER_NAME_LABEL

K0SMOTRON_API_VERSION = "k0smotron.io/v1beta1"
CONTROLPLANE_API_VERSION = "controlplane.cluster.x-k8s.io/v1beta1"
K0SMOTRON_CONTROLPLANE_KIND = "K0smotronControlPlane"

CLUSTER_CA = "ca"
FRONT_PROXY_CA = "proxy"
SERVICE_ACCOUNT = "sa"
ETCD_CA = "etcd"


@dataclass(frozen=True)
class CertificateRef:
    """A reference to the secret holding one of the cluster certificates."""

    type: str
    name: str

    def to_dict(self) -> dict[str, str]:
        """Return the reference as it appears in a cluster spec."""
        return asdict(self)


def _secret_name(cluster_name: str, purpose: str) -> str:
    return f"{cluster_name}-{purpose}"


def default_certificate_refs(cluster_name: str) -> list[CertificateRef]:
    """Certificate references used when the control plane names none."""
    return [
        CertificateRef(type=purpose, name=_secret_name(cluster_name, purpose))
        for purpose in (CLUSTER_CA, FRONT_PROXY_CA, SERVICE_ACCOUNT, ETCD_CA)
    ]


def k0smotron_cluster_manifest(
    cluster_name: str,
    namespace: str,
    kcp_name: str,
    kcp_uid: str,
    spec: Mapping[str, Any] | None,
) -> dict[str, Any]:
    """Build the k0smotron Cluster owned by the control plane.

    The spec is copied; when it carries no certificate references the
    default ones for the cluster are filled in.
    """
    cluster_spec = copy.deepcopy(dict(spec or {}))
    if cluster_spec.get("certificateRefs") is None:
        cluster_spec["certificateRefs"] = [
            ref.to_dict() for ref in default_certificate_refs(cluster_name)
        ]
    return {
        "apiVersion": K0SMOTRON_API_VERSION,
        "kind": "Cluster",
        "metadata": {
            "name": cluster_name,
            "namespace": namespace,
            "labels": {CLUSTER_NAME_LABEL: cluster_name},
            "ownerReferences": [
                {
                    "apiVersion": CONTROLPLANE_API_VERSION,
                    "kind": K0SMOTRON_CONTROLPLANE_KIND,
                    "name": kcp_name,
                    "uid": kcp_uid,
                }
            ],
        },
        "spec": cluster_spec,
    }


def endpoint_needs_update(
    current_host: str,
    current_port: int,
    host: str,
    port: int,
) -> bool:
    """Whether the cluster endpoint differs from the hosted control plane address."""
    return current_host != host or int(current_port) != int(port)


def infrastructure_endpoint(host: str, port: int) -> dict[str, Any]:
    """The controlPlaneEndpoint value written into the infrastructure cluster."""
    return {"host": host, "port": int(port)}