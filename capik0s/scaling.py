"""Deciding which control plane machines to create, update and remove."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field

from capik0s.machines import machine_name
from capik0s.model import UPDATE_IN_PLACE, UPDATE_RECREATE, K0sControlPlane, Machine, MachinePhase
from capik0s.versions import min_version, version_matches


class ScalingError(Exception):
    """The control plane cannot be scaled or updated as requested."""


@dataclass
class ScalePlan:
    """What one reconciliation pass should do with the control plane machines."""

    desired_replicas: int
    replicas_to_report: int
    current_version: str = ""
    cluster_is_updating: bool = False
    use_autopilot: bool = False
    machine_names: list[str] = field(default_factory=list)
    names_to_create: list[str] = field(default_factory=list)
    wait_for_machine: str | None = None
    ready_checks: list[str] = field(default_factory=list)
    machines_to_delete: int = 0
    machine_to_delete: str | None = None
    deletion_pending: bool = False


def _as_list(machines: Mapping[str, Machine] | Iterable[Machine] | None) -> list[Machine]:
    if machines is None:
        raise ScalingError("machines collection is nil")
    if isinstance(machines, Mapping):
        return list(machines.values())
    return list(machines)


def plan_machines(
    kcp: K0sControlPlane,
    machines: Mapping[str, Machine] | Iterable[Machine] | None,
) -> ScalePlan:
    """Plan machine creation, updates and removal for the control plane."""
    items = _as_list(machines)
    replicas_to_report = kcp.replicas
    current = len(items)
    desired = kcp.replicas
    machines_to_delete = 0
    if current > desired:
        machines_to_delete = current - desired
        replicas_to_report = kcp.status.replicas

    current_version = min_version(items)

    old_machines = sum(
        1 for m in items if m.version is None or not version_matches(m, kcp.version)
    )

    cluster_is_updating = False
    use_autopilot = False
    if old_machines > 0:
        cluster_is_updating = True
        if kcp.update_strategy == UPDATE_RECREATE:
            if "--single" in kcp.args:
                raise ScalingError(
                    "UpdateRecreate strategy is not allowed when the cluster is running in single mode"
                )
            desired += kcp.replicas
            machines_to_delete = old_machines
            replicas_to_report = desired
        else:
            use_autopilot = True

    names: dict[str, bool] = {m.name: True for m in items}
    for index in range(len(names), desired):
        if len(names) >= desired:
            break
        names[machine_name(kcp.name, index)] = False

    in_place = kcp.update_strategy == UPDATE_IN_PLACE
    to_create = [name for name, exists in names.items() if not exists or in_place]

    wait_for = None
    if to_create and items and (cluster_is_updating or (current == 1 and kcp.replicas > 1)):
        wait_for = max(items, key=lambda m: m.created_at).name

    ready_checks: list[str] = []
    if machines_to_delete > 0:
        ready_checks = [
            m.name for m in items if m.version is None or m.version == kcp.version
        ]

    plan = ScalePlan(
        desired_replicas=desired,
        replicas_to_report=replicas_to_report,
        current_version=current_version,
        cluster_is_updating=cluster_is_updating,
        use_autopilot=use_autopilot,
        machine_names=list(names),
        names_to_create=to_create,
        wait_for_machine=wait_for,
        ready_checks=ready_checks,
        machines_to_delete=machines_to_delete,
    )

    if machines_to_delete > 0 and items:
        oldest = min(items, key=lambda m: m.created_at)
        plan.machine_to_delete = oldest.name
        if oldest.phase == MachinePhase.DELETING:
            plan.deletion_pending = True
            plan.replicas_to_report = kcp.status.replicas
        else:
            plan.replicas_to_report -= 1
    return plan