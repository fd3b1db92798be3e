"""Provisioning remote machines from cloud-init bootstrap data over SSH or a Job."""

from __future__ import annotations

import base64
import copy
import enum
import hashlib
import io
import logging
import posixpath
import shlex
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import paramiko
import yaml

BOOTSTRAP_DATA_DIR = "/var/lib/bootstrap-data"
BOOTSTRAP_VOLUME = "bootstrap-data"
ENTRYPOINT = "k0smotron-entrypoint.sh"
SENTINEL_FILE = "/run/cluster-api/bootstrap-success.complete"
DEFAULT_FILE_PERMISSIONS = 0o644
DEFAULT_SSH_PORT = 22

CONTROLLER_SERVICE = "k0scontroller"
WORKER_SERVICE = "k0sworker"

_STOP_COMMAND_TEMPLATE = (
    "(command -v systemctl > /dev/null 2>&1 && systemctl stop {0}) || "
    "(command -v rc-service > /dev/null 2>&1 && rc-service {0} stop) || "
    '(echo "Not a supported init system"; false)'
)

log = logging.getLogger(__name__)


class RemoteMachineMode(enum.IntEnum):
    """The role a remote machine plays in the cluster."""

    CONTROLLER = 1
    WORKER = 2
    NON_K0S = 3


@dataclass
class CloudFile:
    """A file that cloud-init writes onto the machine."""

    path: str
    content: str = ""
    permissions: str = ""

    def permissions_as_int(self) -> int:
        """The octal permission string as a number; 0644 when none is given."""
        if not self.permissions:
            return DEFAULT_FILE_PERMISSIONS
        try:
            return int(self.permissions, 8)
        except ValueError as exc:
            raise ValueError(f"invalid permissions {self.permissions!r}") from exc


@dataclass
class CloudInit:
    """The files and commands of a cloud-init bootstrap document."""

    files: list[CloudFile] = field(default_factory=list)
    run_cmds: list[str] = field(default_factory=list)


def parse_cloud_init(data: bytes | str | None) -> CloudInit:
    """Parse cloud-init YAML into files and commands."""
    try:
        document = yaml.safe_load(data) if data else None
    except yaml.YAMLError as exc:
        raise ValueError(f"failed to parse bootstrap data: {exc}") from exc
    if document is None:
        return CloudInit()
    if not isinstance(document, Mapping):
        raise ValueError("failed to parse bootstrap data: not a mapping")

    files = []
    for entry in document.get("write_files") or []:
        if not isinstance(entry, Mapping) or "path" not in entry:
            raise ValueError("failed to parse bootstrap data: invalid write_files entry")
        permissions = entry.get("permissions", "")
        files.append(
            CloudFile(
                path=str(entry["path"]),
                content=str(entry.get("content") or ""),
                permissions="" if permissions is None else str(permissions),
            )
        )
    commands = [str(cmd) for cmd in document.get("runcmd") or []]
    return CloudInit(files=files, run_cmds=commands)


@dataclass
class RemoteMachineSpec:
    """Where and how to reach a remote machine."""

    address: str
    port: int = DEFAULT_SSH_PORT
    user: str = ""
    use_sudo: bool = False


def _base_name(path: str) -> str:
    stripped = path.rstrip("/")
    if not path:
        return "."
    if not stripped:
        return "/"
    return posixpath.basename(stripped)


def gen_file_name(file_path: str) -> str:
    """A secret key for the file: its base name and the MD5 of its full path."""
    digest = hashlib.md5(file_path.encode()).hexdigest()
    return f"{_base_name(file_path)}-{digest}"


def machine_dsn(spec: RemoteMachineSpec) -> str:
    """The ``user@address`` target of the machine, or just the address."""
    if spec.user:
        return f"{spec.user}@{spec.address}"
    return spec.address


def cleanup_commands(mode: RemoteMachineMode) -> list[str]:
    """Commands that take k0s off a machine of the given mode."""
    if mode == RemoteMachineMode.NON_K0S:
        return []
    if mode == RemoteMachineMode.CONTROLLER:
        commands = ["k0s etcd leave", _STOP_COMMAND_TEMPLATE.format(CONTROLLER_SERVICE)]
    else:
        commands = [_STOP_COMMAND_TEMPLATE.format(WORKER_SERVICE)]
    commands.append("k0s reset")
    return commands


def _data_object_name(job_name: str) -> str:
    return f"{job_name}-job-bootstrap-data"


@dataclass
class JobProvisioner:
    """Provisions a machine from a Kubernetes Job that copies files and runs commands over SSH."""

    bootstrap_data: bytes
    name: str
    namespace: str
    spec: RemoteMachineSpec
    ssh_command: str
    scp_command: str
    job_template_name: str = ""

    def extract_cloud_init(
        self, cloud_init: CloudInit
    ) -> tuple[dict[str, Any], list[dict[str, Any]], dict[str, bytes]]:
        """Turn cloud-init into the secret volume, its mounts and the secret data."""
        dsn = machine_dsn(self.spec)
        if self.spec.port:
            ssh = f"{self.ssh_command} -p {self.spec.port} {dsn}"
            scp = f"{self.scp_command} -P {self.spec.port}"
        else:
            ssh = f"{self.ssh_command} {dsn}"
            scp = self.scp_command

        items: list[dict[str, Any]] = []
        source = {"secretName": _data_object_name(self.job_template_name), "items": items}
        volume: dict[str, Any] = {"name": BOOTSTRAP_VOLUME}
        volume["secret"] = source

        script = ["#!/bin/sh\n"]
        payload: dict[str, bytes] = {}
        for file in cloud_init.files:
            file_name = gen_file_name(file.path)
            payload[file_name] = file.content.encode()
            items.append({"key": file_name, "path": file_name})
            script.append(f"{scp} {BOOTSTRAP_DATA_DIR}/{file_name} {dsn}:{file.path}\n")

        mounts = [{"name": BOOTSTRAP_VOLUME, "mountPath": BOOTSTRAP_DATA_DIR}]

        for cmd in cloud_init.run_cmds:
            if self.spec.use_sudo:
                cmd = f"sudo su -c \\'{cmd}\\'\n"
            script.append(f"{ssh} '{cmd}'\n")
        entrypoint = "".join(script).encode()
        payload[ENTRYPOINT] = entrypoint
        items.append({"key": ENTRYPOINT, "path": ENTRYPOINT, "mode": 0o755})

        return volume, mounts, payload

    def build_job(
        self,
        job_template: Mapping[str, Any],
        cluster_name: str,
        owner: Mapping[str, Any],
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """Build the Job and the Secret holding its bootstrap files."""
        cloud_init = parse_cloud_init(self.bootstrap_data)

        metadata = copy.deepcopy(dict(job_template.get("metadata") or {}))
        spec = copy.deepcopy(dict(job_template.get("spec") or {}))
        if not metadata.get("name"):
            metadata["name"] = f"{cluster_name}-{self.name}"
        if not metadata.get("namespace"):
            metadata["namespace"] = self.namespace
        metadata["ownerReferences"] = [dict(owner)]

        object_name = _data_object_name(metadata["name"])
        volume, mounts, payload = self.extract_cloud_init(cloud_init)
        volume["secret"]["secretName"] = object_name

        pod_spec = spec.setdefault("template", {}).setdefault("spec", {})
        containers = pod_spec.get("containers") or []
        if not containers:
            raise ValueError("job template has no containers")
        pod_spec.setdefault("volumes", []).append(volume)
        container = containers[0]
        container.setdefault("volumeMounts", []).extend(mounts)
        container["args"] = [f"{BOOTSTRAP_DATA_DIR}/{ENTRYPOINT}"]

        job = {"apiVersion": "batch/v1", "kind": "Job", "metadata": metadata, "spec": spec}
        encoded = {
            key: base64.b64encode(value).decode("ascii") for key, value in payload.items()
        }
        bundle: dict[str, Any] = {
            "apiVersion": "v1",
            "kind": "Secret",
            "metadata": {
                "name": object_name,
                "namespace": metadata["namespace"],
                "ownerReferences": [dict(owner)],
            },
            "data": encoded,
        }
        return job, bundle


class Connection(Protocol):
    """A command channel to a remote machine."""

    def exec(self, command: str, stdin: bytes | None = None) -> str: ...

    def close(self) -> None: ...


class _CommandError(RuntimeError):
    def __init__(self, message: str, output: str) -> None:
        super().__init__(message)
        self.output = output


class _SSHConnection:
    def __init__(self, spec: RemoteMachineSpec, pkey: paramiko.PKey) -> None:
        self._client = paramiko.SSHClient()
        self._client.set_missing_host_key_policy(paramiko.AutoAddPolicy())
        self._client.connect(
            hostname=spec.address,
            port=spec.port or DEFAULT_SSH_PORT,
            username=spec.user or "root",
            pkey=pkey,
            look_for_keys=False,
            allow_agent=False,
        )

    def exec(self, command: str, stdin: bytes | None = None) -> str:
        stdin_stream, stdout, stderr = self._client.exec_command(command)
        if stdin is not None:
            stdin_stream.write(stdin)
            stdin_stream.flush()
        stdin_stream.channel.shutdown_write()
        output = stdout.read().decode(errors="replace")
        errors = stderr.read().decode(errors="replace")
        status = stdout.channel.recv_exit_status()
        if status != 0:
            raise _CommandError(
                f"command exited with status {status}: {errors.strip()}", output + errors
            )
        return output

    def close(self) -> None:
        self._client.close()


_KEY_TYPES = (paramiko.RSAKey, paramiko.ECDSAKey, paramiko.Ed25519Key)


def _parse_private_key(data: bytes) -> paramiko.PKey:
    try:
        text = data.decode()
    except UnicodeDecodeError as exc:
        raise ValueError("failed to parse ssh key: not text") from exc
    for key_type in _KEY_TYPES:
        try:
            return key_type.from_private_key(io.StringIO(text))
        except (paramiko.SSHException, ValueError, TypeError, IndexError):
            continue
    raise ValueError("failed to parse ssh key")


Connector = Callable[[RemoteMachineSpec, paramiko.PKey], Connection]


@dataclass
class SSHProvisioner:
    """Provisions a machine by uploading files and running commands over SSH."""

    bootstrap_data: bytes
    spec: RemoteMachineSpec
    ssh_key: bytes
    connector: Connector = _SSHConnection
    logger: logging.Logger = log

    def _as_root(self, command: str) -> str:
        if self.spec.user in ("", "root"):
            return f"sh -c {shlex.quote(command)}"
        return f"sudo -n -- sh -c {shlex.quote(command)}"

    def _connect(self) -> Connection:
        pkey = _parse_private_key(self.ssh_key)
        return self.connector(self.spec, pkey)

    def _upload_file(self, conn: Connection, file: CloudFile) -> None:
        mode = f"{file.permissions_as_int():04o}"
        directory = posixpath.dirname(file.path) or "."
        path = shlex.quote(file.path)
        try:
            conn.exec(self._as_root(f"install -d -m {mode} {shlex.quote(directory)}"))
        except RuntimeError as exc:
            raise RuntimeError(f"failed to create directory: {exc}") from exc
        try:
            conn.exec(
                self._as_root(f"cat > {path} && chmod {mode} {path}"),
                stdin=file.content.encode(),
            )
        except RuntimeError as exc:
            raise RuntimeError(f"failed to write to remote file: {exc}") from exc
        self.logger.info("uploaded file path=%s permissions=%s", file.path, mode)

    def provision(self) -> None:
        """Upload the bootstrap files, run the commands and check the sentinel file."""
        cloud_init = parse_cloud_init(self.bootstrap_data)
        pkey = _parse_private_key(self.ssh_key)
        try:
            conn = self.connector(self.spec, pkey)
        except (OSError, paramiko.SSHException, RuntimeError) as exc:
            raise RuntimeError(f"failed to connect to host: {exc}") from exc
        try:
            for file in cloud_init.files:
                try:
                    self._upload_file(conn, file)
                except (RuntimeError, ValueError) as exc:
                    raise RuntimeError(f"failed to upload file: {exc}") from exc

            for cmd in cloud_init.run_cmds:
                try:
                    conn.exec(cmd)
                except RuntimeError as exc:
                    self.logger.error(
                        "failed to run command: %s output=%s", exc, getattr(exc, "output", "")
                    )
                    raise RuntimeError(f"failed to run command: {exc}") from exc

            try:
                conn.exec(self._as_root(f"test -e {shlex.quote(SENTINEL_FILE)}"))
            except RuntimeError as exc:
                raise RuntimeError("bootstrap sentinel file not found") from exc
        finally:
            conn.close()

    def cleanup(self, mode: RemoteMachineMode) -> None:
        """Stop and reset k0s on the machine; command failures are only logged."""
        if mode == RemoteMachineMode.NON_K0S:
            return
        pkey = _parse_private_key(self.ssh_key)
        try:
            conn = self.connector(self.spec, pkey)
        except (OSError, paramiko.SSHException, RuntimeError) as exc:
            self.logger.error("failed to connect to host: %s", exc)
            return
        try:
            for cmd in cleanup_commands(mode):
                try:
                    conn.exec(cmd)
                except RuntimeError as exc:
                    self.logger.error(
                        "failed to run command: %s output=%s", exc, getattr(exc, "output", "")
                    )
        finally:
            conn.close()