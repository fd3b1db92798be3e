import base64
import io

import paramiko
import pytest
import yaml

from capik0s.provisioning import (
    CloudFile,
    CloudInit,
    JobProvisioner,
    RemoteMachineMode,
    RemoteMachineSpec,
    SSHProvisioner,
    cleanup_commands,
    gen_file_name,
    machine_dsn,
    parse_cloud_init,
)


@pytest.fixture(scope="module")
def private_key_pem():
    generated = paramiko.RSAKey.generate(1024)
    buf = io.StringIO()
    generated.write_private_key(buf)
    return buf.getvalue().encode()


class FakeConnection:
    def __init__(self, failing=()):
        self.calls = []
        self.failing = failing
        self.closed = False

    def exec(self, command, stdin=None):
        self.calls.append((command, stdin))
        if any(fragment in command for fragment in self.failing):
            raise RuntimeError("boom")
        return ""

    def close(self):
        self.closed = True


def bootstrap_yaml(files, cmds):
    return yaml.safe_dump({"write_files": files, "runcmd": cmds}).encode()


def test_permissions_as_int_parses_octal():
    assert CloudFile(path="/x", permissions="0755").permissions_as_int() == 0o755


def test_permissions_default_and_invalid():
    assert CloudFile(path="/x").permissions_as_int() == 0o644
    with pytest.raises(ValueError):
        CloudFile(path="/x", permissions="abc").permissions_as_int()


def test_parse_cloud_init_round_trip():
    data = bootstrap_yaml(
        [{"path": "/etc/k0s.yaml", "content": "a: b", "permissions": "0600"}],
        ["k0s install controller", "k0s start"],
    )
    parsed = parse_cloud_init(data)
    assert parsed.files == [CloudFile(path="/etc/k0s.yaml", content="a: b", permissions="0600")]
    assert parsed.run_cmds == ["k0s install controller", "k0s start"]


def test_parse_cloud_init_empty_and_invalid():
    assert parse_cloud_init(b"") == CloudInit()
    with pytest.raises(ValueError):
        parse_cloud_init(b"- just\n- a list\n")


def test_gen_file_name_properties():
    first = gen_file_name("/etc/k0s.yaml")
    other = gen_file_name("/tmp/k0s.yaml")
    assert first.startswith("k0s.yaml-")
    assert other.startswith("k0s.yaml-")
    assert first != other
    assert gen_file_name("/etc/k0s.yaml") == first
    digest = first.split("-", 1)[1]
    assert len(digest) == 32
    assert all(c in "0123456789abcdef" for c in digest)


def test_machine_dsn():
    assert machine_dsn(RemoteMachineSpec(address="10.0.0.1", user="root")) == "root@10.0.0.1"
    assert machine_dsn(RemoteMachineSpec(address="10.0.0.1")) == "10.0.0.1"


def test_cleanup_commands_by_mode():
    controller = cleanup_commands(RemoteMachineMode.CONTROLLER)
    assert controller[0] == "k0s etcd leave"
    assert "systemctl stop k0scontroller" in controller[1]
    assert controller[-1] == "k0s reset"

    worker = cleanup_commands(RemoteMachineMode.WORKER)
    assert "k0s etcd leave" not in worker
    assert "systemctl stop k0sworker" in worker[0]
    assert worker[-1] == "k0s reset"

    assert cleanup_commands(RemoteMachineMode.NON_K0S) == []


def make_job_provisioner(data, port=2222, use_sudo=False):
    return JobProvisioner(
        bootstrap_data=data,
        name="rm-0",
        namespace="default",
        spec=RemoteMachineSpec(address="10.0.0.5", port=port, user="root", use_sudo=use_sudo),
        ssh_command="ssh",
        scp_command="scp",
    )


def test_extract_cloud_init_script_and_items():
    provisioner = make_job_provisioner(b"")
    cloud_init = CloudInit(files=[CloudFile(path="/etc/f", content="hello")], run_cmds=["k0s start"])
    volume, mounts, data = provisioner.extract_cloud_init(cloud_init)

    name = gen_file_name("/etc/f")
    assert data[name] == b"hello"
    script = data["k0smotron-entrypoint.sh"].decode().splitlines()
    assert script[0] == "#!/bin/sh"
    assert script[1] == f"scp -P 2222 /var/lib/bootstrap-data/{name} root@10.0.0.5:/etc/f"
    assert script[2] == "ssh -p 2222 root@10.0.0.5 'k0s start'"
    assert mounts == [{"name": "bootstrap-data", "mountPath": "/var/lib/bootstrap-data"}]
    assert volume["secret"]["items"][-1]["mode"] == 0o755
    assert [item["key"] for item in volume["secret"]["items"]] == [name, "k0smotron-entrypoint.sh"]


def test_extract_cloud_init_without_port_and_with_sudo():
    provisioner = make_job_provisioner(b"", port=0, use_sudo=True)
    _, _, data = provisioner.extract_cloud_init(CloudInit(run_cmds=["k0s start"]))
    script = data["k0smotron-entrypoint.sh"].decode()
    assert script.startswith("#!/bin/sh\nssh root@10.0.0.5 'sudo su -c")
    assert "k0s start" in script
    assert "-p " not in script


def test_build_job_defaults_and_secret():
    data = bootstrap_yaml([{"path": "/etc/f", "content": "hello"}], ["k0s start"])
    provisioner = make_job_provisioner(data)
    owner = {"apiVersion": "infrastructure.cluster.x-k8s.io/v1beta1", "kind": "RemoteMachine", "name": "rm-0", "uid": "u1"}
    template = {"spec": {"template": {"spec": {"containers": [{"name": "ssh", "image": "img"}]}}}}

    job, bundle = provisioner.build_job(template, "cl", owner)

    assert job["metadata"]["name"] == "cl-rm-0"
    assert job["metadata"]["namespace"] == "default"
    assert job["metadata"]["ownerReferences"] == [owner]
    bundle_name = bundle["metadata"]["name"]
    assert bundle_name == "cl-rm-0-job-bootstrap-data"
    pod = job["spec"]["template"]["spec"]
    assert pod["volumes"][-1]["secret"]["secretName"] == bundle_name
    assert pod["containers"][0]["args"] == ["/var/lib/bootstrap-data/k0smotron-entrypoint.sh"]
    decoded = base64.b64decode(bundle["data"][gen_file_name("/etc/f")])
    assert decoded == b"hello"
    assert "containers" not in template["spec"]["template"]["spec"]["containers"][0]
    assert "args" not in template["spec"]["template"]["spec"]["containers"][0]


def test_build_job_keeps_template_name_and_requires_containers():
    provisioner = make_job_provisioner(b"")
    owner = {"name": "rm-0"}
    job, _ = provisioner.build_job(
        {"metadata": {"name": "custom", "namespace": "ns"}, "spec": {"template": {"spec": {"containers": [{"name": "c"}]}}}},
        "cl",
        owner,
    )
    assert job["metadata"]["name"] == "custom"
    assert job["metadata"]["namespace"] == "ns"
    with pytest.raises(ValueError):
        provisioner.build_job({"spec": {"template": {"spec": {}}}}, "cl", owner)


def make_ssh(data, pem, conn):
    return SSHProvisioner(
        bootstrap_data=data,
        spec=RemoteMachineSpec(address="10.0.0.5", user="root"),
        ssh_key=pem,
        connector=lambda spec, pkey: conn,
    )


def test_ssh_provision_uploads_and_runs(private_key_pem):
    conn = FakeConnection()
    data = bootstrap_yaml([{"path": "/etc/f", "content": "hello"}], ["k0s start"])
    make_ssh(data, private_key_pem, conn).provision()

    stdins = [stdin for _, stdin in conn.calls if stdin is not None]
    assert stdins == [b"hello"]
    commands = [command for command, _ in conn.calls]
    assert "k0s start" in commands
    assert "bootstrap-success.complete" in commands[-1]
    assert conn.closed


def test_ssh_provision_missing_sentinel(private_key_pem):
    conn = FakeConnection(failing=("bootstrap-success.complete",))
    with pytest.raises(RuntimeError, match="sentinel"):
        make_ssh(bootstrap_yaml([], ["k0s start"]), private_key_pem, conn).provision()
    assert conn.closed


def test_ssh_provision_command_failure(private_key_pem):
    conn = FakeConnection(failing=("k0s start",))
    with pytest.raises(RuntimeError, match="failed to run command"):
        make_ssh(bootstrap_yaml([], ["k0s start"]), private_key_pem, conn).provision()


def test_ssh_provision_rejects_bad_key():
    conn = FakeConnection()
    with pytest.raises(ValueError):
        make_ssh(bootstrap_yaml([], []), b"placeholder", conn).provision()
    assert conn.calls == []


def test_ssh_cleanup_runs_all_commands_despite_failures(private_key_pem):
    conn = FakeConnection(failing=("etcd leave",))
    make_ssh(b"", private_key_pem, conn).cleanup(RemoteMachineMode.CONTROLLER)
    assert [command for command, _ in conn.calls] == cleanup_commands(RemoteMachineMode.CONTROLLER)
    assert conn.closed


def test_ssh_cleanup_non_k0s_does_nothing(private_key_pem):
    conn = FakeConnection()
    make_ssh(b"", private_key_pem, conn).cleanup(RemoteMachineMode.NON_K0S)
    assert conn.calls == []