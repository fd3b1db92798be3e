# capik0s

Building blocks for running k0s control planes and remote machines under
Cluster API. The package holds the decision logic and builds the objects
(as plain dictionaries ready to be sent to the Kubernetes API); you supply
the client calls around it.

## Install

From a checkout of the package:

    pip install .

With the test dependencies:

    pip install ".[test]"
    pytest

## Modules

### `capik0s.model`

Dataclasses for the control plane and its machines:

- `MachinePhase` – string enum of machine phases (`Pending`, `Provisioning`,
  `Provisioned`, `Running`, `Deleting`, `Deleted`, `Failed`, `Unknown`).
- `Machine` – name, version, phase, namespace, creation time and failure
  domain of a machine.
- `ControlPlaneStatus` – replica counts, lowest version, selector and the
  ready/initialized flags.
- `K0sControlPlane` – name, namespace, version, replicas, k0s arguments,
  update strategy (`"InPlace"` or `"Recreate"`), download URL, k0s config,
  annotations and a `status`. `worker_enabled()` is true when the arguments
  contain `--enable-worker` or `--enable-worker=true`.

### `capik0s.versions`

- `parse_version(text)` returns a `K0sVersion`; a leading `v` is optional and
  a missing minor or patch counts as 0. Malformed input raises `VersionError`.
- `K0sVersion` orders by major, minor, patch, pre-release and then the k0s
  build number taken from a `+k0s.N` suffix.
- `version_suffix(version)` returns the part after `+`, or `""`.
- `version_matches(machine, ver)` compares a machine's version with `ver`,
  adding the suffix of `ver` (or `k0s.0`) to whichever side lacks one. A
  machine without a version never matches.
- `min_version(machines)` returns the lowest version among the machines
  (a mapping or an iterable), or `""` when there are none.

### `capik0s.status`

`compute_status(machines, kcp)` fills `kcp.status` and returns it: running
machines count as ready; provisioned machines count as ready unless workers
are enabled, in which case they are unavailable; deleting and deleted
machines are not counted; every other phase is unavailable. It also counts
machines on the control plane version, records the lowest machine version
(with the control plane's suffix added when the machines lack one) and marks
the control plane as externally managed when workers are not enabled.

### `capik0s.k0sconfig`

- `ClusterNetwork` – pod and service CIDR blocks and the service domain.
- `enrich_k0s_config_with_cluster_data(cluster_network, k0s_config)` fills
  `apiVersion`, `kind` and `spec.network` (`podCIDR`, `serviceCIDR`,
  `clusterDomain`) into the config, keeping any value already set.
- `reconcile_k0s_config(k0s_config, endpoint_host, tunneling_server_address)`
  sets `spec.api.externalAddress` to the endpoint, or, when node-local load
  balancing is enabled, puts the endpoint first in `spec.api.sans`; a
  tunneling server address is appended to the SANs.
- `normalize_version(version)` uses `v1.27.9+k0s.0` for an empty version and
  appends `+k0s.0` when no k0s suffix is present.

### `capik0s.machines`

- `machine_name(base, index)` – `"<base>-<index>"`.
- `generate_machine(...)` – the `Machine` manifest for a control plane node.
- `generate_machine_from_template(...)` – the infrastructure machine cloned
  from an infrastructure template's `spec.template`; raises `ValueError` when
  it is missing.
- `autopilot_plan(kcp, machine_names, timestamp)` – the autopilot `Plan` that
  updates the listed controllers to the control plane version.
- `bootstrap_config(name, kcp, machine)` – the `K0sControllerConfig` owned by
  the machine.

### `capik0s.scaling`

`plan_machines(kcp, machines)` returns a `ScalePlan`: the desired and
reported replica counts, whether the cluster is updating and whether an
autopilot plan should be used, the machine names to create, a machine to wait
for, machines to check for readiness, and the oldest machine to remove when
scaling down or recreating. It raises `ScalingError` when the machine
collection is `None` or when the `Recreate` strategy is combined with
`--single`.

### `capik0s.tunneling`

Manifests for the frp tunnel server: `frps_config(token, mode)`,
`frps_config_map`, `frps_deployment`, `frps_service` and `frp_token_secret`.
`kubeconfig_target(cluster_name, endpoint, tunneling)` returns `None` when
tunneling is off, otherwise the name of the extra kubeconfig secret, its
server URL and, in `proxy` mode, the proxy URL.

### `capik0s.k0smotron_controlplane`

`CertificateRef`, `default_certificate_refs(cluster_name)` (cluster CA,
front-proxy CA, service account and etcd CA secrets),
`k0smotron_cluster_manifest(...)`, `endpoint_needs_update(...)` and
`infrastructure_endpoint(host, port)`.

### `capik0s.provisioning`

- `parse_cloud_init(data)` reads `write_files` and `runcmd` into a
  `CloudInit` of `CloudFile` entries and commands.
- `RemoteMachineSpec`, `RemoteMachineMode`, `gen_file_name`, `machine_dsn`
  and `cleanup_commands(mode)`.
- `JobProvisioner` builds a Kubernetes `Job` and the `Secret` holding its
  files and entry-point script (`build_job`), which copy the files with scp
  and run the commands with ssh (`extract_cloud_init`).
- `SSHProvisioner` connects with paramiko, uploads the files, runs the
  commands and checks for `/run/cluster-api/bootstrap-success.complete`
  (`provision()`); `cleanup(mode)` stops and resets k0s, only logging
  failures. A different connector can be passed in for testing.

### `capik0s.remote_machine`

`PooledMachine`, `RemoteMachine`, `mode_for_bootstrap_kind(kind)`,
`reserve_pooled_machine` (raises `PooledMachineNotFound` when nothing is
free), `return_machine_to_pool`, `provider_id(address, port)`,
`missing_fields` and `record_provision_result`.

## Example

```python
from capik0s.model import K0sControlPlane, Machine, MachinePhase
from capik0s.status import compute_status

kcp = K0sControlPlane(name="demo", version="v1.31.0+k0s.0", replicas=2)
machines = {
    "demo-0": Machine(name="demo-0", version="v1.31.0", phase=MachinePhase.RUNNING),
    "demo-1": Machine(name="demo-1", version="v1.30.0", phase=MachinePhase.RUNNING),
}
compute_status(machines, kcp)
print(kcp.status.version)  # v1.30.0+k0s.0
```

## What it does not do

The package does not talk to a Kubernetes API server, watch resources or run
a controller loop, and it has no command-line program. Fetching objects,
applying the manifests it builds, issuing certificates and writing kubeconfig
secrets are left to the caller. The only network access it performs itself is
the SSH connection made by `SSHProvisioner`.