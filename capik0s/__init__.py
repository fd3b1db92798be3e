"""Control-plane and remote-machine logic for k0s clusters under Cluster API."""

__version__ = "0.1.0"

__all__ = [
    "model",
    "versions",
    "status",
    "k0sconfig",
    "machines",
    "tunneling",
    "scaling",
    "k0smotron_controlplane",
    "provisioning",
    "remote_machine",
]