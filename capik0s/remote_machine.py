"""Remote machines and the pools they may be reserved from."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from capik0s.provisioning import DEFAULT_SSH_PORT, RemoteMachineMode

REMOTE_MACHINE_FINALIZER = "remotemachine.k0smotron.io/finalizer"
PROVIDER_ID_SCHEME = "remote-machine://"

MISSING_FIELDS_REASON = "MissingFields"
MISSING_FIELDS_MESSAGE = (
    "If pool is empty, following fields are required: address, sshKeyRef"
)
PROVISION_FAILED_REASON = "ProvisionFailed"

log = logging.getLogger(__name__)


class PooledMachineNotFound(LookupError):
    """No free pooled machine is available for the remote machine."""

    def __init__(self, message: str = "free pooled machine not found") -> None:
        super().__init__(message)


@dataclass
class PooledMachine:
    """A machine waiting in a pool until a remote machine reserves it."""

    name: str
    pool: str
    address: str
    namespace: str = ""
    port: int = DEFAULT_SSH_PORT
    user: str = ""
    ssh_key_ref: str = ""
    reserved: bool = False
    machine_ref_name: str = ""
    machine_ref_namespace: str = ""


@dataclass
class RemoteMachine:
    """A machine reached over SSH, either directly or through a pool."""

    name: str
    namespace: str = ""
    pool: str = ""
    address: str = ""
    port: int = DEFAULT_SSH_PORT
    user: str = ""
    ssh_key_ref: str = ""
    use_sudo: bool = False
    provision_job: Any = None
    provider_id: str = ""
    ready: bool = False
    failure_reason: str = ""
    failure_message: str = ""


def mode_for_bootstrap_kind(kind: str | None) -> RemoteMachineMode:
    """The machine mode implied by the kind of its bootstrap config."""
    if kind == "K0sWorkerConfig":
        return RemoteMachineMode.WORKER
    if kind == "K0sControllerConfig":
        return RemoteMachineMode.CONTROLLER
    return RemoteMachineMode.NON_K0S


def reserve_pooled_machine(
    remote_machine: RemoteMachine,
    pooled_machines: Iterable[PooledMachine],
) -> PooledMachine:
    """Find or reserve a pooled machine and copy its connection details.

    A machine already reserved for this remote machine is reused; otherwise
    a free machine of the same pool and namespace is reserved. Raises
    PooledMachineNotFound when there is neither.
    """
    free: PooledMachine | None = None
    found: PooledMachine | None = None
    for pooled in pooled_machines:
        if pooled.namespace != remote_machine.namespace:
            continue
        if pooled.pool != remote_machine.pool:
            continue
        if pooled.reserved and pooled.machine_ref_name == remote_machine.name:
            found = pooled
            break
        if not pooled.reserved:
            free = pooled

    if found is None:
        if free is None:
            raise PooledMachineNotFound()
        found = free
        found.reserved = True
        found.machine_ref_name = remote_machine.name
        found.machine_ref_namespace = remote_machine.namespace

    remote_machine.address = found.address
    remote_machine.port = found.port
    remote_machine.user = found.user
    remote_machine.ssh_key_ref = found.ssh_key_ref
    return found


def return_machine_to_pool(
    remote_machine: RemoteMachine,
    pooled_machines: Iterable[PooledMachine],
) -> PooledMachine | None:
    """Release the pooled machine reserved by the remote machine.

    Returns the released machine, or None when the remote machine uses no
    pool or no reservation is found.
    """
    if not remote_machine.pool:
        return None
    items = list(pooled_machines)
    if not items:
        raise ValueError(f"no pooled machines found for pool {remote_machine.pool}")

    for pooled in items:
        if (
            pooled.reserved
            and pooled.machine_ref_name == remote_machine.name
            and pooled.machine_ref_namespace == remote_machine.namespace
        ):
            pooled.reserved = False
            pooled.machine_ref_name = ""
            pooled.machine_ref_namespace = ""
            return pooled

    log.error(
        "pooled machine not found for remote machine namespace=%s name=%s",
        remote_machine.namespace,
        remote_machine.name,
    )
    return None


def provider_id(address: str, port: int) -> str:
    """The provider ID recorded on a provisioned remote machine."""
    return f"{PROVIDER_ID_SCHEME}{address}:{port}"


def missing_fields(remote_machine: RemoteMachine) -> bool:
    """Check that a machine without pool or job has an address and SSH key.

    When fields are missing the failure is recorded on the machine and
    True is returned.
    """
    if remote_machine.pool or remote_machine.provision_job is not None:
        return False
    if remote_machine.address and remote_machine.ssh_key_ref:
        return False
    remote_machine.failure_reason = MISSING_FIELDS_REASON
    remote_machine.failure_message = MISSING_FIELDS_MESSAGE
    remote_machine.ready = False
    return True


def record_provision_result(
    remote_machine: RemoteMachine,
    error: BaseException | str | None,
) -> RemoteMachine:
    """Set the machine status from the outcome of provisioning."""
    if error:
        remote_machine.failure_reason = PROVISION_FAILED_REASON
        remote_machine.failure_message = str(error)
        remote_machine.ready = False
    else:
        remote_machine.failure_reason = ""
        remote_machine.failure_message = ""
        remote_machine.ready = True
    return remote_machine