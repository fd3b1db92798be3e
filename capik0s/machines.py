"""Manifests for control plane machines, their templates and bootstrap configs."""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from typing import Any

from capik0s.model import K0sControlPlane, Machine

CLUSTER_API_VERSION = "cluster.x-k8s.io/v1beta1"
BOOTSTRAP_API_VERSION = "bootstrap.cluster.x-k8s.io/v1beta1"
AUTOPILOT_API_VERSION = "autopilot.k0sproject.io/v1beta2"
DOWNLOAD_BASE = "https://get.k0sproject.io/"

CLUSTER_NAME_LABEL = "cluster.x-k8s.io/cluster-name"
CONTROL_PLANE_LABEL = "cluster.x-k8s.io/control-plane"
CONTROL_PLANE_NAME_LABEL = "cluster.x-k8s.io/control-plane-name"
MACHINE_ROLE_LABEL = "cluster.x-k8s.io/generateMachine-role"
WORKER_ENABLED_LABEL = "k0smotron.io/control-plane-worker-enabled"
CLONED_FROM_NAME_ANNOTATION = "cluster.x-k8s.io/cloned-from-name"
CLONED_FROM_GROUPKIND_ANNOTATION = "cluster.x-k8s.io/cloned-from-groupkind"
TEMPLATE_SUFFIX = "Template"


def machine_name(base: str, index: int) -> str:
    """Name of the control plane machine with the given index."""
    return f"{base}-{index}"


def generate_machine(
    name: str,
    cluster_name: str,
    kcp: K0sControlPlane,
    infra_ref: Mapping[str, Any],
    failure_domain: str | None,
) -> dict[str, Any]:
    """Build the Machine manifest for a control plane node."""
    labels = {
        CLUSTER_NAME_LABEL: kcp.name,
        CONTROL_PLANE_LABEL: "true",
        MACHINE_ROLE_LABEL: "control-plane",
    }
    if kcp.worker_enabled():
        labels[WORKER_ENABLED_LABEL] = "true"

    spec: dict[str, Any] = {
        "version": kcp.version,
        "clusterName": cluster_name,
        "bootstrap": {
            "configRef": {
                "apiVersion": BOOTSTRAP_API_VERSION,
                "kind": "K0sControllerConfig",
                "name": name,
            }
        },
        "infrastructureRef": dict(infra_ref),
    }
    if failure_domain is not None:
        spec["failureDomain"] = failure_domain

    return {
        "apiVersion": CLUSTER_API_VERSION,
        "kind": "Machine",
        "metadata": {"name": name, "namespace": kcp.namespace, "labels": labels},
        "spec": spec,
    }


def _group_kind(api_version: str, kind: str) -> str:
    group = api_version.rpartition("/")[0] if "/" in api_version else ""
    return f"{kind}.{group}" if group else kind


def generate_machine_from_template(
    name: str,
    cluster_name: str,
    kcp: K0sControlPlane,
    machine_template: Mapping[str, Any],
) -> dict[str, Any]:
    """Build the infrastructure machine object cloned from an infrastructure template."""
    metadata = machine_template.get("metadata") or {}
    template_name = metadata.get("name", "")
    api_version = machine_template.get("apiVersion", "")
    kind = machine_template.get("kind", "")
    group_kind = _group_kind(api_version, kind)

    spec = machine_template.get("spec")
    if not isinstance(spec, Mapping) or "template" not in spec:
        raise ValueError(f"missing spec.template on {group_kind} {template_name!r}")
    template = spec["template"]
    if not isinstance(template, Mapping):
        raise ValueError(
            f"error getting spec.template map on {group_kind} {template_name!r}: not a map"
        )

    machine = copy.deepcopy(dict(template))
    machine_metadata = machine.setdefault("metadata", {})
    machine_metadata["name"] = name
    machine_metadata["namespace"] = kcp.namespace

    annotations = dict(kcp.annotations)
    annotations[CLONED_FROM_NAME_ANNOTATION] = template_name
    annotations[CLONED_FROM_GROUPKIND_ANNOTATION] = group_kind
    machine_metadata["annotations"] = annotations

    machine_metadata["labels"] = {
        CLUSTER_NAME_LABEL: cluster_name,
        CONTROL_PLANE_LABEL: "",
        CONTROL_PLANE_NAME_LABEL: kcp.name,
    }

    machine["apiVersion"] = api_version
    machine["kind"] = kind.removesuffix(TEMPLATE_SUFFIX)
    return machine


def autopilot_plan(
    kcp: K0sControlPlane,
    machine_names: Iterable[str],
    timestamp: int,
) -> dict[str, Any]:
    """Build the autopilot Plan that updates the given controllers to the kcp version."""
    version = kcp.version
    if kcp.download_url:
        urls = {arch: kcp.download_url for arch in ("amd64", "arm64", "arm")}
    else:
        urls = {
            arch: f"{DOWNLOAD_BASE}{version}/k0s-{version}-{arch}"
            for arch in ("amd64", "arm64", "arm")
        }
    stamp = str(timestamp)
    return {
        "apiVersion": AUTOPILOT_API_VERSION,
        "kind": "Plan",
        "metadata": {"name": "autopilot"},
        "spec": {
            "id": f"id-{kcp.name}-{stamp}",
            "timestamp": stamp,
            "commands": [
                {
                    "k0supdate": {
                        "version": version,
                        "platforms": {
                            f"linux-{arch}": {"url": url} for arch, url in urls.items()
                        },
                        "targets": {
                            "controllers": {
                                "discovery": {"static": {"nodes": list(machine_names)}}
                            }
                        },
                    }
                }
            ],
        },
    }


def _owner_reference(machine: Machine | Mapping[str, Any]) -> dict[str, Any]:
    if isinstance(machine, Mapping):
        metadata = machine.get("metadata") or {}
        api_version = machine.get("apiVersion", CLUSTER_API_VERSION)
        kind = machine.get("kind", "Machine")
        name = metadata.get("name", "")
        uid = metadata.get("uid", "")
    else:
        api_version, kind, name, uid = CLUSTER_API_VERSION, "Machine", machine.name, ""
    return {
        "apiVersion": api_version,
        "kind": kind,
        "name": name,
        "uid": uid,
        "blockOwnerDeletion": True,
        "controller": True,
    }


def _k0s_config_spec(kcp: K0sControlPlane) -> dict[str, Any]:
    spec: dict[str, Any] = {}
    if kcp.args:
        spec["args"] = list(kcp.args)
    if kcp.download_url:
        spec["downloadURL"] = kcp.download_url
    if kcp.k0s_config is not None:
        spec["k0s"] = copy.deepcopy(kcp.k0s_config)
    return spec


def bootstrap_config(
    name: str,
    kcp: K0sControlPlane,
    machine: Machine | Mapping[str, Any],
) -> dict[str, Any]:
    """Build the K0sControllerConfig owned by the given machine."""
    return {
        "apiVersion": BOOTSTRAP_API_VERSION,
        "kind": "K0sControllerConfig",
        "metadata": {
            "name": name,
            "namespace": kcp.namespace,
            "ownerReferences": [_owner_reference(machine)],
        },
        "spec": {
            "version": kcp.version,
            "k0sConfigSpec": _k0s_config_spec(kcp),
        },
    }