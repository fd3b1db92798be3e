"""Computing the observed status of a k0s control plane from its machines."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from capik0s.model import ControlPlaneStatus, K0sControlPlane, Machine, MachinePhase
from capik0s.versions import VersionError, min_version, version_matches

log = logging.getLogger(__name__)


def compute_status(
    machines: Mapping[str, Machine] | Iterable[Machine] | None,
    kcp: K0sControlPlane,
) -> ControlPlaneStatus:
    """Update ``kcp.status`` from the machines and return it."""
    if machines is None:
        items: list[Machine] = []
    elif isinstance(machines, Mapping):
        items = list(machines.values())
    else:
        items = list(machines)

    status = kcp.status
    status.replicas = len(items)
    worker_enabled = kcp.worker_enabled()

    ready = updated = unavailable = 0
    for machine in items:
        phase = machine.phase
        if phase == MachinePhase.RUNNING:
            ready += 1
        elif phase == MachinePhase.PROVISIONED:
            # Without workers the machine never reaches Running.
            if worker_enabled:
                unavailable += 1
            else:
                ready += 1
        elif phase in (MachinePhase.DELETING, MachinePhase.DELETED):
            pass
        else:
            unavailable += 1

        if version_matches(machine, kcp.version):
            updated += 1

    status.ready_replicas = ready
    status.updated_replicas = updated
    status.unavailable_replicas = unavailable

    try:
        lowest = min_version(items)
    except VersionError:
        log.exception("Failed to get the lowest version")
        return status

    status.version = lowest
    if "+" in kcp.version and "+" not in lowest:
        suffix = kcp.version.split("+")[1]
        status.version = f"{status.version}+{suffix}"

    if not worker_enabled:
        status.external_managed_control_plane = True
    return status