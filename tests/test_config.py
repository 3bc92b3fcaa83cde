"""Tests for EgressConfig validation and config loading."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from static_egress import (
    AZURE_HOST_CIDR,
    AnnotationStyle,
    ChartSource,
    EgressConfig,
    ProvisioningError,
    load_config,
)


def test_defaults_and_derived_names():
    """Test derived names follow the cluster name and image tag."""
    config = EgressConfig()

    assert config.location == "uksouth"
    assert config.resource_group == "egress-demo"
    assert config.vnet_name == "egress-demo-vnet"
    assert config.chart_ref == "v0.0.8"
    assert config.egress_node_pool == "egressgw"
    assert config.annotation is AnnotationStyle.GATEWAY_NAME
    assert config.chart_source is ChartSource.ARCHIVE


def test_explicit_names_are_kept():
    config = EgressConfig(cluster_name="edge", resource_group="edge-rg", vnet_name="edge-net", chart_ref="main")

    assert config.resource_group == "edge-rg"
    assert config.vnet_name == "edge-net"
    assert config.chart_ref == "main"


def test_route_and_exclude_cidrs():
    config = EgressConfig()

    assert config.route_cidrs == ["10.0.0.0/16"]
    assert config.exclude_cidrs == [AZURE_HOST_CIDR, "10.224.0.0/16", "192.168.0.0/16"]


def test_paths_under_work_dir(tmp_path):
    config = EgressConfig(work_dir=tmp_path)

    assert config.azure_config_path == tmp_path / "azure_config.yaml"
    assert config.chart_path == tmp_path / "kube-egress-gateway" / "helm" / "kube-egress-gateway"


def test_egress_subnet_outside_vnet():
    with pytest.raises(ValidationError) as exc_info:
        EgressConfig(egress_subnet_prefix="10.225.1.0/28")

    assert "outside VNET" in str(exc_info.value)


def test_overlapping_subnets():
    with pytest.raises(ValidationError) as exc_info:
        EgressConfig(egress_subnet_prefix="10.224.0.16/28")

    assert "overlaps egress subnet" in str(exc_info.value)


def test_pod_cidr_overlapping_vnet():
    with pytest.raises(ValidationError) as exc_info:
        EgressConfig(pod_cidr="10.224.128.0/17")

    assert "pod CIDR" in str(exc_info.value)


def test_target_vnet_must_not_overlap_cluster_vnet():
    with pytest.raises(ValidationError) as exc_info:
        EgressConfig(target_vnet_prefix="10.224.0.0/12", target_subnet_prefix="10.224.3.0/24")

    assert "target VNET" in str(exc_info.value)


def test_target_checks_skipped_without_target():
    config = EgressConfig(deploy_target=False, target_vnet_prefix="10.224.0.0/16")

    assert config.deploy_target is False


def test_target_subnet_outside_target_vnet():
    with pytest.raises(ValidationError) as exc_info:
        EgressConfig(target_subnet_prefix="10.1.3.0/24")

    assert "outside target VNET" in str(exc_info.value)


@pytest.mark.parametrize("value", ["10.224.1.1/28", "not-a-cidr", "fd00::/64"])
def test_invalid_cidrs(value):
    with pytest.raises(ValidationError):
        EgressConfig(egress_subnet_prefix=value)


@pytest.mark.parametrize("name", ["EgressGW", "1pool", "egress-gw", "averylongpoolname"])
def test_invalid_pool_names(name):
    with pytest.raises(ValidationError):
        EgressConfig(egress_node_pool=name)


def test_unknown_keys_rejected():
    with pytest.raises(ValidationError):
        EgressConfig(clustr_name="typo")


def test_load_config_precedence(tmp_path):
    """Test CLI overrides win over the file and None overrides are ignored."""
    path = tmp_path / "egress.yaml"
    path.write_text("location: westeurope\ncluster_name: from-file\nchart_source: git\n")

    config = load_config(path, {"cluster_name": "from-cli", "location": None})

    assert config.location == "westeurope"
    assert config.cluster_name == "from-cli"
    assert config.resource_group == "from-cli"
    assert config.chart_source is ChartSource.GIT


def test_load_config_without_file():
    config = load_config(None, {"node_count": 3, "work_dir": Path("/tmp/egress")})

    assert config.node_count == 3
    assert config.work_dir == Path("/tmp/egress")


def test_load_config_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")

    assert load_config(path).cluster_name == "egress-demo"


def test_load_config_rejects_non_mapping(tmp_path):
    path = tmp_path / "list.yaml"
    path.write_text("- location\n- cluster_name\n")

    with pytest.raises(ProvisioningError):
        load_config(path)
