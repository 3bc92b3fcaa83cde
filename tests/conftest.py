"""Shared fixtures for static_egress tests."""

from unittest.mock import MagicMock, patch

import pytest

from static_egress import EgressConfig, EgressGatewaySetup
from tests.helpers import SUBSCRIPTION_ID


@pytest.fixture
def config(tmp_path):
    return EgressConfig(work_dir=tmp_path)


@pytest.fixture
def setup(config):
    """EgressGatewaySetup with every Azure management client mocked out."""
    with patch.multiple(
        "static_egress",
        ResourceManagementClient=MagicMock(),
        ContainerServiceClient=MagicMock(),
        NetworkManagementClient=MagicMock(),
        ComputeManagementClient=MagicMock(),
    ):
        yield EgressGatewaySetup(config, credential=MagicMock(), subscription_id=SUBSCRIPTION_ID)
