import pytest

from capik0s.k0sconfig import (
    DEFAULT_K0S_VERSION,
    ClusterNetwork,
    enrich_k0s_config_with_cluster_data,
    normalize_version,
    reconcile_k0s_config,
)


@pytest.mark.parametrize(
    ("network", "k0s_config", "want"),
    [
        (None, None, None),
        (
            ClusterNetwork(services=["10.96.0.0/12"], pods=["10.244.0.0/16"]),
            None,
            {
                "apiVersion": "k0s.k0sproject.io/v1beta1",
                "kind": "ClusterConfig",
                "spec": {
                    "network": {"serviceCIDR": "10.96.0.0/12", "podCIDR": "10.244.0.0/16"}
                },
            },
        ),
        (
            ClusterNetwork(services=["10.96.0.0/12"], pods=["10.244.0.0/16"]),
            {"spec": {"network": {"serviceCIDR": "10.98.0.0/12"}}},
            {
                "apiVersion": "k0s.k0sproject.io/v1beta1",
                "kind": "ClusterConfig",
                "spec": {
                    "network": {"serviceCIDR": "10.98.0.0/12", "podCIDR": "10.244.0.0/16"}
                },
            },
        ),
        (
            ClusterNetwork(service_domain="cluster.local"),
            None,
            {
                "apiVersion": "k0s.k0sproject.io/v1beta1",
                "kind": "ClusterConfig",
                "spec": {"network": {"clusterDomain": "cluster.local"}},
            },
        ),
    ],
)
def test_k0s_config_enrichment(network, k0s_config, want):
    assert enrich_k0s_config_with_cluster_data(network, k0s_config) == want


def test_enrichment_without_network_returns_config_untouched():
    config = {"spec": {"api": {"port": 6443}}}
    result = enrich_k0s_config_with_cluster_data(None, config)
    assert result is config
    assert result == {"spec": {"api": {"port": 6443}}}


def test_enrichment_keeps_existing_kind_and_fills_empty_values():
    config = {"kind": "Custom", "apiVersion": "", "spec": {"network": {"podCIDR": ""}}}
    result = enrich_k0s_config_with_cluster_data(ClusterNetwork(pods=["10.244.0.0/16"]), config)
    assert result["kind"] == "Custom"
    assert result["apiVersion"] == "k0s.k0sproject.io/v1beta1"
    assert result["spec"]["network"]["podCIDR"] == "10.244.0.0/16"


def test_reconcile_sets_external_address_without_nllb():
    config = {"spec": {"api": {}}}
    result = reconcile_k0s_config(config, "lb.example.com", "")
    assert result["spec"]["api"]["externalAddress"] == "lb.example.com"
    assert "sans" not in result["spec"]["api"]


def test_reconcile_prepends_host_to_sans_with_nllb():
    config = {
        "spec": {
            "network": {"nodeLocalLoadBalancing": {"enabled": True}},
            "api": {"sans": ["a.example.com"]},
        }
    }
    result = reconcile_k0s_config(config, "lb.example.com", "")
    assert result["spec"]["api"]["sans"] == ["lb.example.com", "a.example.com"]
    assert "externalAddress" not in result["spec"]["api"]


def test_reconcile_appends_tunneling_address():
    config = {}
    result = reconcile_k0s_config(config, "lb.example.com", "10.0.0.5")
    assert result["spec"]["api"]["sans"] == ["10.0.0.5"]
    assert result["spec"]["api"]["externalAddress"] == "lb.example.com"


def test_reconcile_none_config():
    assert reconcile_k0s_config(None, "lb.example.com", "10.0.0.5") is None


def test_reconcile_rejects_non_bool_nllb():
    config = {"spec": {"network": {"nodeLocalLoadBalancing": {"enabled": "yes"}}}}
    with pytest.raises(ValueError):
        reconcile_k0s_config(config, "lb.example.com", "")


def test_reconcile_rejects_non_map_api():
    with pytest.raises(ValueError):
        reconcile_k0s_config({"spec": {"api": "broken"}}, "lb.example.com", "")


def test_normalize_version_default():
    assert normalize_version("") == DEFAULT_K0S_VERSION


def test_normalize_version_adds_suffix():
    assert normalize_version("v1.28.7") == "v1.28.7+k0s.0"


def test_normalize_version_keeps_suffix():
    assert normalize_version("v1.27.1+k0s.0") == "v1.27.1+k0s.0"