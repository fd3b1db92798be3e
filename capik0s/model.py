"""Data model for control planes and the machines that back them."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any

UPDATE_IN_PLACE = "InPlace"
UPDATE_RECREATE = "Recreate"

_WORKER_FLAGS = frozenset({"--enable-worker", "--enable-worker=true"})


class MachinePhase(str, enum.Enum):
    """Lifecycle phase reported by a cluster machine."""

    PENDING = "Pending"
    PROVISIONING = "Provisioning"
    PROVISIONED = "Provisioned"
    RUNNING = "Running"
    DELETING = "Deleting"
    DELETED = "Deleted"
    FAILED = "Failed"
    UNKNOWN = "Unknown"

    def __str__(self) -> str:
        return self.value


@dataclass
class Machine:
    """A cluster machine as seen by the control plane controller."""

    name: str = ""
    version: str | None = None
    phase: str = ""
    namespace: str = ""
    created_at: float = 0.0
    failure_domain: str | None = None


@dataclass
class ControlPlaneStatus:
    """Observed state of a control plane."""

    replicas: int = 0
    ready_replicas: int = 0
    updated_replicas: int = 0
    unavailable_replicas: int = 0
    version: str = ""
    selector: str = ""
    ready: bool = False
    control_plane_ready: bool = False
    initialized: bool = False
    external_managed_control_plane: bool = False


@dataclass
class K0sControlPlane:
    """Desired state of a k0s control plane plus its observed status."""

    name: str = ""
    namespace: str = ""
    uid: str = ""
    version: str = ""
    replicas: int = 1
    args: list[str] = field(default_factory=list)
    update_strategy: str = UPDATE_IN_PLACE
    download_url: str = ""
    k0s_config: dict[str, Any] | None = None
    annotations: dict[str, str] = field(default_factory=dict)
    status: ControlPlaneStatus = field(default_factory=ControlPlaneStatus)

    def worker_enabled(self) -> bool:
        """Whether the controllers also run a worker."""
        return any(arg in _WORKER_FLAGS for arg in self.args)