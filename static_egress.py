#!/usr/bin/env -S uv run --script
# /// script
# dependencies = [
#   "typer[all]",
#   "rich",
#   "azure-identity",
#   "azure-mgmt-resource",
#   "azure-mgmt-containerservice",
#   "azure-mgmt-network",
#   "azure-mgmt-compute",
#   "pydantic>=2",
#   "pyyaml",
#   "httpx",
# ]
# requires-python = ">=3.12"
# ///

"""
AKS Static Egress Gateway Setup Script

This script provisions an AKS cluster with a dedicated gateway node pool,
installs kube-egress-gateway and deploys a StaticGatewayConfiguration with
test pods so outbound traffic from annotated pods leaves through a
predictable address range.

Usage:
    uv run static_egress.py [OPTIONS]

Options:
    --config PATH           YAML file with configuration values
    --location TEXT         Azure region (default: uksouth)
    --cluster-name TEXT     AKS cluster name (default: egress-demo)
    --skip-target           Do not create the peered target network
    --verify                Only run the verification checks
    --cleanup               Delete all resources
    --help                  Show this message and exit
"""

import io
import ipaddress
import json
import logging
import os
import re
import shutil
import subprocess
import sys
import tarfile
import tempfile
import time
from enum import Enum
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import httpx
import typer
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator
from rich.box import ROUNDED
from rich.console import Console
from rich.logging import RichHandler
from rich.panel import Panel
from rich.syntax import Syntax
from rich.table import Table
from rich.theme import Theme

# Azure SDK imports
from azure.core.exceptions import AzureError, ResourceNotFoundError
from azure.identity import DefaultAzureCredential
from azure.mgmt.compute import ComputeManagementClient
from azure.mgmt.containerservice import ContainerServiceClient
from azure.mgmt.network import NetworkManagementClient
from azure.mgmt.resource import ResourceManagementClient

# Custom theme for syntax highlighting
custom_theme = Theme(
    {
        "azure": "bold cyan",
        "kubectl": "bold green",
        "helm": "bold blue",
        "git": "bold magenta",
        "info": "dim white",
        "command": "yellow",
        "success": "bold green",
        "error": "bold red",
        "warning": "bold yellow",
    }
)

console = Console(theme=custom_theme)
app = typer.Typer(add_completion=False)
logger = logging.getLogger(__name__)

GATEWAY_MODE_LABEL = "kubeegressgateway.azure.com/mode"
GATEWAY_TAINT = f"{GATEWAY_MODE_LABEL}=true:NoSchedule"
GATEWAY_NAMESPACE = "kube-egress-gateway-system"
GATEWAY_RELEASE = "kube-egress-gateway"
GATEWAY_REPOSITORY = "https://github.com/Azure/kube-egress-gateway"
GATEWAY_LOAD_BALANCER = "kubeegressgateway-ilb"
SGC_API_VERSION = "egressgateway.kubernetes.azure.com/v1alpha1"
SGC_RESOURCE = "staticgatewayconfigurations.egressgateway.kubernetes.azure.com"
AZURE_HOST_CIDR = "168.63.129.16/32"
POOL_NAME_TAG = "aks-managed-poolName"
TEST_POD_IMAGE = "curlimages/curl"

MIN_PYTHON_VERSION = (3, 12)
MIN_AZ_CLI_VERSION = (2, 48, 0)

# Terminal provisioning states reported by ARM
FAILED_STATES = {"Failed", "Canceled"}


class ProvisioningError(Exception):
    """A provisioning step failed"""


class WaitTimeoutError(ProvisioningError):
    """A resource did not become ready before its deadline"""


class ChartSource(str, Enum):
    ARCHIVE = "archive"
    GIT = "git"


class AnnotationStyle(str, Enum):
    """Pod annotation used to opt a pod into the gateway"""

    GATEWAY_NAME = "gateway-name"
    STATIC_GATEWAY_CONFIGURATION = "static-gateway-configuration"

    @property
    def key(self) -> str:
        if self is AnnotationStyle.GATEWAY_NAME:
            return "egressgateway.kubernetes.azure.com/gateway-name"
        return "kubernetes.azure.com/static-gateway-configuration"


def setup_logging(verbose: bool = False) -> None:
    """Setup logging with rich handler."""
    level = logging.INFO if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )

    # Azure SDK request logging is too noisy even in verbose mode
    logging.getLogger("azure.core.pipeline.policies.http_logging_policy").setLevel(logging.WARNING)
    logging.getLogger("azure.identity").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)


_POOL_NAME = re.compile(r"^[a-z][a-z0-9]{0,11}$")


class EgressConfig(BaseModel):
    """Settings for the static egress demo environment"""

    model_config = ConfigDict(extra="forbid")

    location: str = "uksouth"
    cluster_name: str = "egress-demo"
    resource_group: str = ""
    vnet_name: str = ""
    node_count: int = Field(2, ge=1)

    egress_node_pool: str = "egressgw"
    egress_node_count: int = Field(2, ge=1)

    # Network layout
    vnet_prefix: str = "10.224.0.0/16"
    default_subnet_name: str = "default"
    default_subnet_prefix: str = "10.224.0.0/27"
    egress_subnet_name: str = "egress"
    egress_subnet_prefix: str = "10.224.1.0/28"
    pod_cidr: str = "192.168.0.0/16"

    identity_name: str = "staticegress-msi"
    gateway_name: str = "myegressgateway"
    demo_namespace: str = "demo"
    annotation: AnnotationStyle = AnnotationStyle.GATEWAY_NAME
    provision_public_ips: bool = False

    # Chart
    image_repository: str = "mcr.microsoft.com/aks"
    image_tag: str = "v0.0.8"
    chart_source: ChartSource = ChartSource.ARCHIVE
    chart_ref: str = ""
    work_dir: Path = Path(".")

    # External target reached over VNET peering
    deploy_target: bool = True
    target_vnet_name: str = "my-target-vnet"
    target_vnet_prefix: str = "10.0.0.0/16"
    target_subnet_name: str = "apps"
    target_subnet_prefix: str = "10.0.3.0/24"
    target_container_name: str = "appcontainer"
    target_image: str = "mcr.microsoft.com/azuredocs/aci-helloworld"

    timeout: int = Field(1800, ge=60)

    @field_validator(
        "vnet_prefix",
        "default_subnet_prefix",
        "egress_subnet_prefix",
        "pod_cidr",
        "target_vnet_prefix",
        "target_subnet_prefix",
    )
    @classmethod
    def _check_cidr(cls, value: str) -> str:
        try:
            network = ipaddress.ip_network(value, strict=True)
        except ValueError as e:
            raise ValueError(f"invalid CIDR '{value}': {e}") from e
        if network.version != 4:
            raise ValueError(f"'{value}' is not an IPv4 network")
        return str(network)

    @field_validator("egress_node_pool")
    @classmethod
    def _check_pool_name(cls, value: str) -> str:
        # AKS restricts Linux node pool names
        if not _POOL_NAME.match(value):
            raise ValueError(
                "node pool name must start with a lowercase letter and contain at most "
                "12 lowercase letters or digits"
            )
        return value

    @model_validator(mode="after")
    def _derive_and_check_network(self) -> "EgressConfig":
        if not self.resource_group:
            self.resource_group = self.cluster_name
        if not self.vnet_name:
            self.vnet_name = f"{self.cluster_name}-vnet"
        if not self.chart_ref:
            self.chart_ref = self.image_tag

        vnet = ipaddress.ip_network(self.vnet_prefix)
        default = ipaddress.ip_network(self.default_subnet_prefix)
        egress = ipaddress.ip_network(self.egress_subnet_prefix)
        pods = ipaddress.ip_network(self.pod_cidr)

        for name, subnet in (("default", default), ("egress", egress)):
            if not subnet.subnet_of(vnet):
                raise ValueError(f"{name} subnet {subnet} is outside VNET {vnet}")
        if default.overlaps(egress):
            raise ValueError(f"default subnet {default} overlaps egress subnet {egress}")
        if pods.overlaps(vnet):
            raise ValueError(f"pod CIDR {pods} overlaps VNET {vnet}")

        if self.deploy_target:
            target = ipaddress.ip_network(self.target_vnet_prefix)
            apps = ipaddress.ip_network(self.target_subnet_prefix)
            # Peered VNETs cannot share address space
            if target.overlaps(vnet):
                raise ValueError(f"target VNET {target} overlaps VNET {vnet}")
            if target.overlaps(pods):
                raise ValueError(f"target VNET {target} overlaps pod CIDR {pods}")
            if not apps.subnet_of(target):
                raise ValueError(f"target subnet {apps} is outside target VNET {target}")
        return self

    @property
    def route_cidrs(self) -> List[str]:
        return [self.target_vnet_prefix]

    @property
    def exclude_cidrs(self) -> List[str]:
        return [AZURE_HOST_CIDR, self.vnet_prefix, self.pod_cidr]

    @property
    def azure_config_path(self) -> Path:
        return self.work_dir / "azure_config.yaml"

    @property
    def checkout_path(self) -> Path:
        return self.work_dir / "kube-egress-gateway"

    @property
    def chart_path(self) -> Path:
        return self.checkout_path / "helm" / "kube-egress-gateway"


def load_config(path: Optional[Path] = None, overrides: Optional[Dict[str, Any]] = None) -> EgressConfig:
    """Build the configuration from defaults, an optional YAML file and CLI overrides.

    Keys in the file are ``EgressConfig`` field names. Overrides whose value is
    ``None`` are ignored so unset CLI options never mask the file.
    """
    data: Dict[str, Any] = {}
    if path is not None:
        loaded = yaml.safe_load(path.read_text()) or {}
        if not isinstance(loaded, dict):
            raise ProvisioningError(f"{path} must contain a YAML mapping")
        data.update(loaded)
    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value
    return EgressConfig.model_validate(data)


def render_azure_config(
    config: EgressConfig,
    tenant_id: str,
    subscription_id: str,
    identity_client_id: str,
    node_resource_group: str,
) -> Dict[str, Any]:
    """Build the Helm values consumed by the gateway controller"""
    return {
        "config": {
            "azureCloudConfig": {
                "cloud": "AzurePublicCloud",
                "tenantId": tenant_id,
                "subscriptionId": subscription_id,
                "useManagedIdentityExtension": True,
                "userAssignedIdentityID": identity_client_id,
                "userAgent": "kube-egress-gateway-controller",
                "resourceGroup": node_resource_group,
                "location": config.location,
                "gatewayLoadBalancerName": GATEWAY_LOAD_BALANCER,
                "loadBalancerResourceGroup": node_resource_group,
                "vnetName": config.vnet_name,
                "vnetResourceGroup": config.resource_group,
                "subnetName": config.egress_subnet_name,
            }
        }
    }


def build_namespace(name: str) -> Dict[str, Any]:
    return {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}}


def build_static_gateway_configuration(
    config: EgressConfig, vmss_name: str, vmss_resource_group: str
) -> Dict[str, Any]:
    """Build the StaticGatewayConfiguration bound to the gateway scale set"""
    return {
        "apiVersion": SGC_API_VERSION,
        "kind": "StaticGatewayConfiguration",
        "metadata": {"name": config.gateway_name, "namespace": config.demo_namespace},
        "spec": {
            "defaultRoute": "staticEgressGateway",
            "routeCidrs": config.route_cidrs,
            "excludeCidrs": config.exclude_cidrs,
            "gatewayVmssProfile": {
                "vmssName": vmss_name,
                "vmssResourceGroup": vmss_resource_group,
            },
            "provisionPublicIps": config.provision_public_ips,
        },
    }


def build_test_pod(
    name: str,
    namespace: str,
    gateway_name: Optional[str] = None,
    annotation: AnnotationStyle = AnnotationStyle.GATEWAY_NAME,
) -> Dict[str, Any]:
    """Build an idle curl pod, opted into the gateway when ``gateway_name`` is set"""
    metadata: Dict[str, Any] = {"name": name, "namespace": namespace, "labels": {"app": name}}
    if gateway_name:
        metadata["annotations"] = {annotation.key: gateway_name}
    return {
        "apiVersion": "v1",
        "kind": "Pod",
        "metadata": metadata,
        "spec": {
            "containers": [
                {"name": "app", "image": TEST_POD_IMAGE, "command": ["sleep", "infinity"]}
            ]
        },
    }


def select_gateway_vmss(scale_sets: Iterable[Any], pool_name: str) -> str:
    """Pick the scale set backing ``pool_name`` from the node resource group.

    AKS tags each scale set with its pool name; the ``aks-<pool>-<n>-vmss``
    naming convention is only consulted when no tag matches. Exactly one
    candidate must remain.
    """
    scale_sets = list(scale_sets)
    matches = [s.name for s in scale_sets if (s.tags or {}).get(POOL_NAME_TAG) == pool_name]
    if not matches:
        pattern = re.compile(rf"^aks-{re.escape(pool_name)}-\d+-vmss$")
        matches = [s.name for s in scale_sets if pattern.match(s.name)]

    if len(matches) == 1:
        return matches[0]
    if not matches:
        available = ", ".join(sorted(s.name for s in scale_sets)) or "none"
        raise ProvisioningError(
            f"No VM scale set found for node pool '{pool_name}' (available: {available})"
        )
    raise ProvisioningError(
        f"Multiple VM scale sets match node pool '{pool_name}': {', '.join(sorted(matches))}"
    )


def wait_for(
    check: Callable[[], Any],
    description: str,
    timeout: float = 1800,
    initial_delay: float = 5.0,
    max_delay: float = 60.0,
    factor: float = 2.0,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Any:
    """Poll ``check`` until it returns a truthy value or the deadline passes.

    The delay between attempts starts at ``initial_delay`` and grows by
    ``factor`` after every miss, capped at ``max_delay``. The final sleep is
    shortened so the last attempt lands on the deadline. Exceptions raised by
    ``check`` propagate immediately.
    """
    deadline = clock() + timeout
    delay = initial_delay
    attempt = 0
    while True:
        attempt += 1
        result = check()
        if result:
            logger.info("%s ready after %d attempt(s)", description, attempt)
            return result

        remaining = deadline - clock()
        if remaining <= 0:
            raise WaitTimeoutError(f"Timed out after {timeout:.0f}s waiting for {description}")

        pause = min(delay, remaining)
        logger.debug("%s not ready (attempt %d), retrying in %.0fs", description, attempt, pause)
        sleep(pause)
        delay = min(delay * factor, max_delay)


def deployment_ready(deployment: Dict[str, Any]) -> bool:
    replicas = deployment.get("spec", {}).get("replicas", 1)
    return deployment.get("status", {}).get("readyReplicas", 0) >= replicas


def daemonset_ready(daemonset: Dict[str, Any]) -> bool:
    status = daemonset.get("status", {})
    # No status yet means the controller has not observed it
    if "desiredNumberScheduled" not in status:
        return False
    return status.get("numberReady", 0) >= status["desiredNumberScheduled"]


def pod_ready(pod: Dict[str, Any]) -> bool:
    conditions = pod.get("status", {}).get("conditions", [])
    return any(c.get("type") == "Ready" and c.get("status") == "True" for c in conditions)


def count_ready_nodes(node_list: Dict[str, Any]) -> int:
    return sum(1 for node in node_list.get("items", []) if pod_ready(node))


def parse_version(text: str) -> Optional[Tuple[int, ...]]:
    """Parse '2.73.0' or 'v3.14.2+g1234' into a tuple of ints"""
    match = re.match(r"^v?(\d+(?:\.\d+)*)", text.strip())
    if not match:
        return None
    return tuple(int(part) for part in match.group(1).split("."))


def format_command(command: List[str]) -> str:
    """Format a command for display, one option per line"""
    formatted_parts = [command[0]] if command else []
    for part in command[1:]:
        if part.startswith("-"):
            formatted_parts.append("\\\n  " + part)
        else:
            formatted_parts.append(part)
    return " ".join(formatted_parts)


def extract_chart_archive(data: bytes, destination: Path) -> Path:
    """Unpack a GitHub source tarball so its top-level directory becomes ``destination``"""
    destination.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.TemporaryDirectory(dir=destination.parent) as staging:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as archive:
            roots = {m.name.split("/", 1)[0] for m in archive.getmembers() if m.name}
            if len(roots) != 1:
                raise ProvisioningError(f"Unexpected chart archive layout: {sorted(roots)}")
            archive.extractall(staging, filter="data")
        shutil.move(os.path.join(staging, roots.pop()), destination)
    return destination


_COMMAND_STYLES = {
    "az": ("azure", "Azure CLI Command"),
    "kubectl": ("kubectl", "Kubernetes Command"),
    "helm": ("helm", "Helm Command"),
    "git": ("git", "Git Command"),
}


class EgressGatewaySetup:
    """Main class for AKS static egress gateway setup automation"""

    def __init__(
        self,
        config: EgressConfig,
        credential: Optional[Any] = None,
        subscription_id: Optional[str] = None,
    ):
        self.config = config

        # Azure clients
        self.credential = credential or DefaultAzureCredential()
        self.subscription_id = subscription_id or self._get_subscription_id()
        self.resource_client = ResourceManagementClient(self.credential, self.subscription_id)
        self.aks_client = ContainerServiceClient(self.credential, self.subscription_id)
        self.network_client = NetworkManagementClient(self.credential, self.subscription_id)
        self.compute_client = ComputeManagementClient(self.credential, self.subscription_id)

        # Runtime variables
        self.tenant_id: Optional[str] = None
        self.default_subnet_id: Optional[str] = None
        self.egress_subnet_id: Optional[str] = None
        self.identity_client_id: Optional[str] = None
        self.identity_principal_id: Optional[str] = None
        self.identity_resource_id: Optional[str] = None
        self.node_resource_group: Optional[str] = None
        self.vmss_name: Optional[str] = None
        self.target_ip: Optional[str] = None

    def _get_subscription_id(self) -> str:
        """Get Azure subscription ID"""
        if not shutil.which("az"):
            raise ProvisioningError("Azure CLI is required but not installed (https://aka.ms/azure-cli)")
        result = subprocess.run(
            ["az", "account", "show", "--query", "id", "-o", "tsv"],
            capture_output=True,
            text=True,
        )
        if result.returncode != 0 or not result.stdout.strip():
            raise ProvisioningError("Not logged in to Azure. Run 'az login' first.")
        return result.stdout.strip()

    def _run_command(
        self,
        command: List[str],
        check: bool = True,
        capture: bool = True,
        display: bool = True,
        description: Optional[str] = None,
        input: Optional[str] = None,
    ) -> subprocess.CompletedProcess:
        """Run a command with rich formatting, raising ProvisioningError on failure when checked"""
        if display:
            style, title = _COMMAND_STYLES.get(command[0], ("command", "Command"))
            title = f"[{style}]{title}[/{style}]"
            if description:
                title = f"{title}: {description}"
            command_syntax = Syntax(format_command(command), "bash", theme="monokai", line_numbers=False)
            console.print(Panel(command_syntax, title=title, border_style=style))

        logger.debug("Running: %s", " ".join(command))
        try:
            result = subprocess.run(command, capture_output=capture, text=True, input=input)
        except FileNotFoundError as e:
            raise ProvisioningError(f"{command[0]} is required but not installed") from e

        if check and result.returncode != 0:
            what = description or " ".join(command[:3])
            console.print(f"[error]✗ {what} failed[/error]")
            if result.stderr and result.stderr.strip():
                console.print(Panel(result.stderr.strip(), title="Error Output", border_style="error", expand=False))
            raise ProvisioningError(f"{what} failed (exit code {result.returncode})")
        return result

    def _az_json(
        self,
        args: List[str],
        description: Optional[str] = None,
        display: bool = False,
        check: bool = True,
    ) -> Any:
        """Run an az command with JSON output; None when an unchecked command fails"""
        result = self._run_command(
            ["az", *args, "-o", "json"], check=check, display=display, description=description
        )
        if result.returncode != 0 or not result.stdout.strip():
            return None
        return json.loads(result.stdout)

    def _az_value(self, args: List[str], query: str, description: Optional[str] = None) -> str:
        result = self._run_command(
            ["az", *args, "--query", query, "-o", "tsv"], display=False, description=description
        )
        return result.stdout.strip()

    def _kubectl_json(self, args: List[str]) -> Optional[Dict[str, Any]]:
        result = self._run_command(["kubectl", *args, "-o", "json"], check=False, display=False)
        if result.returncode != 0:
            logger.debug("kubectl %s: %s", " ".join(args), result.stderr.strip())
            return None
        return json.loads(result.stdout)

    def _kubectl_apply(self, manifest: Dict[str, Any], resource_type: str = "") -> None:
        """Apply a Kubernetes manifest with rich formatting"""
        yaml_content = yaml.safe_dump(manifest, sort_keys=False)
        yaml_syntax = Syntax(yaml_content, "yaml", theme="monokai", line_numbers=True)
        header = f"[bold cyan]Kubernetes {resource_type or 'Resource'}[/bold cyan]"
        console.print(Panel(yaml_syntax, title=header, border_style="cyan", expand=False))

        self._run_command(
            ["kubectl", "apply", "-f", "-"],
            display=False,
            description=f"Apply {resource_type or 'resource'}",
            input=yaml_content,
        )
        console.print(f"[success]✓ {resource_type or 'Resource'} applied[/success]")

    def _wait(self, check: Callable[[], Any], description: str) -> Any:
        with console.status(f"Waiting for {description}..."):
            return wait_for(check, description, timeout=self.config.timeout)

    def check_prerequisites(self) -> None:
        """Check that required tools are installed and Azure login is active"""
        console.print("\n[bold]Checking prerequisites...[/bold]")

        prereq_table = Table(title="Prerequisites Check", box=ROUNDED)
        prereq_table.add_column("Tool", style="cyan")
        prereq_table.add_column("Required", style="yellow")
        prereq_table.add_column("Found", style="green")
        prereq_table.add_column("Status", style="bold")

        missing = []

        python_version = sys.version_info[:3]
        python_ok = python_version >= MIN_PYTHON_VERSION
        prereq_table.add_row(
            "Python", "≥ 3.12", ".".join(map(str, python_version)), "✅" if python_ok else "❌"
        )
        if not python_ok:
            missing.append("Python 3.12 or higher")

        # Azure CLI
        required_az = ".".join(map(str, MIN_AZ_CLI_VERSION))
        if shutil.which("az"):
            az_result = subprocess.run(["az", "version", "-o", "json"], capture_output=True, text=True)
            az_version = None
            if az_result.returncode == 0:
                try:
                    az_version = json.loads(az_result.stdout).get("azure-cli")
                except json.JSONDecodeError:
                    logger.warning("Could not parse 'az version' output")
            parsed = parse_version(az_version) if az_version else None
            az_ok = parsed is not None and parsed >= MIN_AZ_CLI_VERSION
            prereq_table.add_row("Azure CLI", f"≥ {required_az}", az_version or "Unknown", "✅" if az_ok else "❌")
            if not az_ok:
                missing.append(f"Azure CLI {required_az} or higher")
        else:
            prereq_table.add_row("Azure CLI", f"≥ {required_az}", "Not found", "❌")
            missing.append("Azure CLI (https://aka.ms/azure-cli)")

        # kubectl
        if shutil.which("kubectl"):
            kubectl_version = "Found (version unknown)"
            kubectl_result = subprocess.run(
                ["kubectl", "version", "--client", "-o", "json"], capture_output=True, text=True
            )
            if kubectl_result.returncode == 0:
                try:
                    version_info = json.loads(kubectl_result.stdout)
                    kubectl_version = version_info.get("clientVersion", {}).get("gitVersion", kubectl_version)
                except json.JSONDecodeError:
                    logger.warning("Could not parse 'kubectl version' output")
            prereq_table.add_row("kubectl", "Any recent", kubectl_version, "✅")
        else:
            prereq_table.add_row("kubectl", "Any recent", "Not found", "❌")
            missing.append("kubectl (https://kubernetes.io/docs/tasks/tools/)")

        # Helm
        if shutil.which("helm"):
            version_result = subprocess.run(["helm", "version", "--short"], capture_output=True, text=True)
            helm_version = version_result.stdout.strip() if version_result.returncode == 0 else "Unknown"
            parsed = parse_version(helm_version)
            helm_ok = parsed is not None and parsed[0] == 3
            prereq_table.add_row("Helm", "v3.x", helm_version, "✅" if helm_ok else "❌")
            if not helm_ok:
                missing.append("Helm v3")
        else:
            prereq_table.add_row("Helm", "v3.x", "Not found", "❌")
            missing.append("Helm v3 (https://helm.sh/docs/intro/install/)")

        # git is only needed to clone the chart
        if self.config.chart_source == ChartSource.GIT:
            git_found = shutil.which("git") is not None
            prereq_table.add_row("git", "Any", "Found" if git_found else "Not found", "✅" if git_found else "❌")
            if not git_found:
                missing.append("git")

        console.print(prereq_table)

        console.print("\n[bold]Checking Azure authentication...[/bold]")
        account = self._az_json(["account", "show"], check=False) if shutil.which("az") else None
        if account:
            console.print(f"[green]✓ Logged in as: {account.get('user', {}).get('name', 'Unknown')}[/green]")
            console.print(f"[green]✓ Subscription: {account.get('name', 'Unknown')} ({self.subscription_id[:8]}...)[/green]")
        else:
            missing.append("an Azure login ('az login')")

        if missing:
            raise ProvisioningError(f"Missing prerequisites: {', '.join(missing)}")
        console.print("\n[green]✓ All prerequisites are satisfied[/green]")

    def create_resource_group(self) -> None:
        """Create Azure resource group"""
        rg = self.config.resource_group
        if self.resource_client.resource_groups.check_existence(rg):
            console.print(f"[yellow]Resource group already exists: {rg}[/yellow]")
            return

        self._run_command(
            ["az", "group", "create", "-n", rg, "-l", self.config.location],
            description=f"Create resource group {rg}",
        )
        console.print(f"[success]✓ Resource group created: {rg}[/success]")

    def _subnet(self, vnet: str, subnet: str) -> Optional[Any]:
        try:
            return self.network_client.subnets.get(self.config.resource_group, vnet, subnet)
        except ResourceNotFoundError:
            return None

    def create_network(self) -> None:
        """Create the cluster VNET with its default and egress subnets"""
        console.print("\n[bold]Creating virtual network...[/bold]")
        cfg = self.config

        if self._subnet(cfg.vnet_name, cfg.default_subnet_name) is None:
            self._run_command(
                [
                    "az", "network", "vnet", "create",
                    "-g", cfg.resource_group,
                    "-n", cfg.vnet_name,
                    "--location", cfg.location,
                    "--address-prefixes", cfg.vnet_prefix,
                    "--subnet-name", cfg.default_subnet_name,
                    "--subnet-prefixes", cfg.default_subnet_prefix,
                ],
                description=f"Create VNET {cfg.vnet_name}",
            )
        else:
            console.print(f"[yellow]VNET already exists: {cfg.vnet_name}[/yellow]")

        if self._subnet(cfg.vnet_name, cfg.egress_subnet_name) is None:
            self._run_command(
                [
                    "az", "network", "vnet", "subnet", "create",
                    "-g", cfg.resource_group,
                    "--vnet-name", cfg.vnet_name,
                    "-n", cfg.egress_subnet_name,
                    "--address-prefixes", cfg.egress_subnet_prefix,
                ],
                description=f"Create egress subnet {cfg.egress_subnet_name}",
            )
        else:
            console.print(f"[yellow]Egress subnet already exists: {cfg.egress_subnet_name}[/yellow]")

        default_subnet = self._subnet(cfg.vnet_name, cfg.default_subnet_name)
        egress_subnet = self._subnet(cfg.vnet_name, cfg.egress_subnet_name)
        if default_subnet is None or egress_subnet is None:
            raise ProvisioningError("Failed to get subnet IDs")
        self.default_subnet_id = default_subnet.id
        self.egress_subnet_id = egress_subnet.id
        console.print(f"[success]✓ Network ready: {cfg.vnet_name}[/success]")

    def _cluster_state(self) -> Optional[str]:
        cluster = self.aks_client.managed_clusters.get(self.config.resource_group, self.config.cluster_name)
        state = cluster.provisioning_state
        if state in FAILED_STATES:
            raise ProvisioningError(f"AKS cluster provisioning ended in state {state}")
        return state if state == "Succeeded" else None

    def create_aks_cluster(self) -> None:
        """Create AKS cluster on the default subnet"""
        cfg = self.config
        console.print(f"\n[bold]Creating AKS cluster '{cfg.cluster_name}'...[/bold]")

        try:
            self.aks_client.managed_clusters.get(cfg.resource_group, cfg.cluster_name)
            console.print("[yellow]AKS cluster already exists[/yellow]")
        except ResourceNotFoundError:
            with console.status("Creating AKS cluster (this may take several minutes)..."):
                self._run_command(
                    [
                        "az", "aks", "create",
                        "-g", cfg.resource_group,
                        "-n", cfg.cluster_name,
                        "--location", cfg.location,
                        "--node-count", str(cfg.node_count),
                        "--enable-managed-identity",
                        "--network-plugin", "azure",
                        "--network-plugin-mode", "overlay",
                        "--outbound-type", "loadBalancer",
                        "--pod-cidr", cfg.pod_cidr,
                        "--vnet-subnet-id", self.default_subnet_id,
                        "--generate-ssh-keys",
                    ],
                    description=f"Create AKS cluster {cfg.cluster_name}",
                )

        self._wait(self._cluster_state, "AKS cluster provisioning")
        console.print(f"[success]✓ AKS cluster ready: {cfg.cluster_name}[/success]")
        self.get_credentials()

    def get_credentials(self) -> None:
        """Merge cluster credentials into the local kubeconfig"""
        self._run_command(
            [
                "az", "aks", "get-credentials",
                "-g", self.config.resource_group,
                "-n", self.config.cluster_name,
                "--overwrite-existing",
            ],
            description="Get AKS credentials",
        )
        console.print("[success]✓ AKS credentials obtained[/success]")

    def _node_pool_ready(self) -> bool:
        cfg = self.config
        pool = self.aks_client.agent_pools.get(cfg.resource_group, cfg.cluster_name, cfg.egress_node_pool)
        if pool.provisioning_state in FAILED_STATES:
            raise ProvisioningError(f"Node pool provisioning ended in state {pool.provisioning_state}")
        if pool.provisioning_state != "Succeeded":
            return False
        nodes = self._kubectl_json(["get", "nodes", "-l", f"agentpool={cfg.egress_node_pool}"])
        ready = count_ready_nodes(nodes or {})
        logger.info("%d/%d gateway nodes ready", ready, cfg.egress_node_count)
        return ready >= cfg.egress_node_count

    def add_egress_node_pool(self) -> None:
        """Add the tainted gateway node pool on the egress subnet"""
        cfg = self.config
        console.print(f"\n[bold]Adding egress gateway node pool '{cfg.egress_node_pool}'...[/bold]")

        try:
            self.aks_client.agent_pools.get(cfg.resource_group, cfg.cluster_name, cfg.egress_node_pool)
            console.print("[yellow]Node pool already exists[/yellow]")
        except ResourceNotFoundError:
            with console.status("Adding node pool (this may take several minutes)..."):
                self._run_command(
                    [
                        "az", "aks", "nodepool", "add",
                        "-g", cfg.resource_group,
                        "--cluster-name", cfg.cluster_name,
                        "-n", cfg.egress_node_pool,
                        "--node-count", str(cfg.egress_node_count),
                        "--node-taints", GATEWAY_TAINT,
                        "--labels", f"{GATEWAY_MODE_LABEL}=true",
                        "--os-type", "Linux",
                        "--vnet-subnet-id", self.egress_subnet_id,
                    ],
                    description=f"Add node pool {cfg.egress_node_pool}",
                )

        self._wait(self._node_pool_ready, "gateway node pool")
        console.print(f"[success]✓ Node pool ready: {cfg.egress_node_pool}[/success]")

    def _read_identity(self, identity: Dict[str, Any]) -> None:
        self.identity_client_id = identity.get("clientId")
        self.identity_principal_id = identity.get("principalId")
        self.identity_resource_id = identity.get("id")
        if not (self.identity_client_id and self.identity_principal_id and self.identity_resource_id):
            raise ProvisioningError("Failed to get identity details")

    def create_managed_identity(self) -> None:
        """Create the managed identity used by the gateway controller"""
        cfg = self.config
        console.print("\n[bold]Creating managed identity...[/bold]")

        identity = self._az_json(
            ["identity", "show", "-g", cfg.resource_group, "-n", cfg.identity_name], check=False
        )
        if identity:
            console.print(f"[yellow]Managed identity already exists: {cfg.identity_name}[/yellow]")
        else:
            identity = self._az_json(
                ["identity", "create", "-g", cfg.resource_group, "-n", cfg.identity_name, "-l", cfg.location],
                description=f"Create managed identity {cfg.identity_name}",
                display=True,
            )
        self._read_identity(identity or {})

        identity_table = Table(title="Managed Identity Details", box=ROUNDED)
        identity_table.add_column("Attribute", style="cyan")
        identity_table.add_column("Value", style="green")
        identity_table.add_row("Name", cfg.identity_name)
        identity_table.add_row("Client ID", self.identity_client_id)
        identity_table.add_row("Principal ID", self.identity_principal_id)
        console.print(identity_table)

    def resolve_gateway_vmss(self) -> None:
        """Resolve tenant, node resource group and the gateway scale set"""
        console.print("\n[bold]Resolving subscription and node resource group details...[/bold]")
        cfg = self.config

        self.tenant_id = self._az_value(["account", "show"], "tenantId", "Get tenant ID")
        cluster = self.aks_client.managed_clusters.get(cfg.resource_group, cfg.cluster_name)
        self.node_resource_group = cluster.node_resource_group

        scale_sets = self.compute_client.virtual_machine_scale_sets.list(self.node_resource_group)
        self.vmss_name = select_gateway_vmss(scale_sets, cfg.egress_node_pool)

        console.print(f"[green]Node resource group: {self.node_resource_group}[/green]")
        console.print(f"[green]Gateway VMSS: {self.vmss_name}[/green]")

    def role_assignments(self) -> List[Tuple[str, str]]:
        """Roles the gateway identity needs, as (role, scope) pairs"""
        rg_id = f"/subscriptions/{self.subscription_id}/resourceGroups/{self.config.resource_group}"
        node_rg_id = f"/subscriptions/{self.subscription_id}/resourceGroups/{self.node_resource_group}"
        vmss_id = f"{node_rg_id}/providers/Microsoft.Compute/virtualMachineScaleSets/{self.vmss_name}"
        return [
            ("Network Contributor", rg_id),
            ("Network Contributor", node_rg_id),
            ("Virtual Machine Contributor", vmss_id),
        ]

    def assign_roles(self) -> None:
        """Assign required roles to the managed identity"""
        console.print("\n[bold]Setting up role assignments...[/bold]")
        for role, scope in self.role_assignments():
            existing = self._az_json(
                [
                    "role", "assignment", "list",
                    "--assignee", self.identity_principal_id,
                    "--role", role,
                    "--scope", scope,
                ],
                description=f"List {role} assignments",
            )
            if existing:
                console.print(f"[yellow]{role} already assigned on {scope}[/yellow]")
                continue

            # Object ID avoids a directory lookup for a freshly created identity
            self._run_command(
                [
                    "az", "role", "assignment", "create",
                    "--role", role,
                    "--assignee-object-id", self.identity_principal_id,
                    "--assignee-principal-type", "ServicePrincipal",
                    "--scope", scope,
                ],
                description=f"Assign {role}",
            )
            console.print(f"[success]✓ {role} assigned[/success]")

    def write_azure_config(self) -> Path:
        """Render azure_config.yaml for the gateway chart"""
        values = render_azure_config(
            self.config,
            tenant_id=self.tenant_id,
            subscription_id=self.subscription_id,
            identity_client_id=self.identity_client_id,
            node_resource_group=self.node_resource_group,
        )
        path = self.config.azure_config_path
        path.parent.mkdir(parents=True, exist_ok=True)
        content = yaml.safe_dump(values, sort_keys=False)
        path.write_text(content)

        console.print(Panel(Syntax(content, "yaml", theme="monokai"), title=str(path), border_style="cyan", expand=False))
        console.print(f"[success]✓ Wrote {path}[/success]")
        return path

    def fetch_chart(self) -> Path:
        """Download or clone the kube-egress-gateway source holding the chart"""
        cfg = self.config
        if cfg.chart_path.exists():
            console.print(f"[yellow]Chart already present: {cfg.chart_path}[/yellow]")
            return cfg.chart_path

        if cfg.checkout_path.exists():
            raise ProvisioningError(f"{cfg.checkout_path} exists but does not contain the Helm chart")

        if cfg.chart_source == ChartSource.GIT:
            self._run_command(
                [
                    "git", "clone", "--depth", "1",
                    "--branch", cfg.chart_ref,
                    f"{GATEWAY_REPOSITORY}.git",
                    str(cfg.checkout_path),
                ],
                description=f"Clone kube-egress-gateway {cfg.chart_ref}",
            )
        else:
            url = f"{GATEWAY_REPOSITORY}/archive/{cfg.chart_ref}.tar.gz"
            logger.info("Downloading %s", url)
            with console.status(f"Downloading kube-egress-gateway {cfg.chart_ref}..."):
                response = httpx.get(url, follow_redirects=True, timeout=120)
                response.raise_for_status()
            extract_chart_archive(response.content, cfg.checkout_path)

        if not cfg.chart_path.exists():
            raise ProvisioningError(f"Helm chart not found at {cfg.chart_path}")
        console.print(f"[success]✓ Chart source ready: {cfg.checkout_path}[/success]")
        return cfg.chart_path

    def helm_install_command(self) -> List[str]:
        cfg = self.config
        return [
            "helm", "upgrade", "--install",
            GATEWAY_RELEASE, str(cfg.chart_path),
            "--namespace", GATEWAY_NAMESPACE,
            "--create-namespace",
            "--set", f"common.imageRepository={cfg.image_repository}",
            "--set", f"common.imageTag={cfg.image_tag}",
            "-f", str(cfg.azure_config_path),
        ]

    def _gateway_workloads_ready(self) -> bool:
        deployments = self._kubectl_json(["get", "deployments", "-n", GATEWAY_NAMESPACE])
        daemonsets = self._kubectl_json(["get", "daemonsets", "-n", GATEWAY_NAMESPACE])
        if not deployments or not deployments.get("items") or daemonsets is None:
            return False
        return all(deployment_ready(d) for d in deployments["items"]) and all(
            daemonset_ready(d) for d in daemonsets.get("items", [])
        )

    def install_gateway_chart(self) -> None:
        """Install the kube-egress-gateway Helm release"""
        console.print("\n[bold]Installing egress gateway helm chart...[/bold]")
        self._run_command(self.helm_install_command(), description="Install kube-egress-gateway")
        self._wait(self._gateway_workloads_ready, "kube-egress-gateway workloads")
        console.print("[success]✓ kube-egress-gateway installed[/success]")

    def create_demo_namespace(self) -> None:
        self._kubectl_apply(build_namespace(self.config.demo_namespace), "Namespace")

    def _gateway_prefix(self) -> Optional[str]:
        sgc = self._kubectl_json(
            ["get", SGC_RESOURCE, self.config.gateway_name, "-n", self.config.demo_namespace]
        )
        return (sgc or {}).get("status", {}).get("egressIpPrefix") or None

    def apply_static_gateway_configuration(self) -> None:
        """Create the StaticGatewayConfiguration and wait for its egress prefix"""
        console.print("\n[bold]Creating static gateway configuration...[/bold]")
        manifest = build_static_gateway_configuration(self.config, self.vmss_name, self.node_resource_group)
        self._kubectl_apply(manifest, "StaticGatewayConfiguration")
        prefix = self._wait(self._gateway_prefix, "gateway egress IP prefix")
        console.print(f"[green]Egress IP prefix: {prefix}[/green]")

    def demo_pods(self) -> List[Dict[str, Any]]:
        """The gateway-annotated pod and an unannotated control pod"""
        cfg = self.config
        return [
            build_test_pod("app1", cfg.demo_namespace),
            build_test_pod("app2", cfg.demo_namespace, cfg.gateway_name, cfg.annotation),
        ]

    def deploy_test_pods(self) -> None:
        console.print("\n[bold]Creating test pods...[/bold]")
        for pod in self.demo_pods():
            name = pod["metadata"]["name"]
            self._kubectl_apply(pod, f"Pod {name}")
            self._wait(
                lambda name=name: pod_ready(
                    self._kubectl_json(["get", "pod", name, "-n", self.config.demo_namespace]) or {}
                ),
                f"pod {name}",
            )
        console.print("[success]✓ Test pods running[/success]")

    def _peering_exists(self, vnet: str, name: str) -> bool:
        try:
            self.network_client.virtual_network_peerings.get(self.config.resource_group, vnet, name)
            return True
        except ResourceNotFoundError:
            return False

    def create_target_network(self) -> None:
        """Create the peered target VNET with a container instance to call"""
        cfg = self.config
        console.print("\n[bold]Creating target network...[/bold]")

        try:
            self.network_client.virtual_networks.get(cfg.resource_group, cfg.target_vnet_name)
            console.print(f"[yellow]Target VNET already exists: {cfg.target_vnet_name}[/yellow]")
        except ResourceNotFoundError:
            self._run_command(
                [
                    "az", "network", "vnet", "create",
                    "--resource-group", cfg.resource_group,
                    "--name", cfg.target_vnet_name,
                    "--location", cfg.location,
                    "--address-prefix", cfg.target_vnet_prefix,
                ],
                description=f"Create target VNET {cfg.target_vnet_name}",
            )

        container = self._az_json(
            ["container", "show", "-n", cfg.target_container_name, "-g", cfg.resource_group], check=False
        )
        if container:
            console.print(f"[yellow]Container instance already exists: {cfg.target_container_name}[/yellow]")
        else:
            with console.status("Creating container instance..."):
                self._run_command(
                    [
                        "az", "container", "create",
                        "--name", cfg.target_container_name,
                        "--resource-group", cfg.resource_group,
                        "--image", cfg.target_image,
                        "--os-type", "Linux",
                        "--vnet", cfg.target_vnet_name,
                        "--vnet-address-prefix", cfg.target_vnet_prefix,
                        "--subnet", cfg.target_subnet_name,
                        "--subnet-address-prefix", cfg.target_subnet_prefix,
                    ],
                    description=f"Create container instance {cfg.target_container_name}",
                )

        console.print("Setting up VNET peering...")
        for name, vnet, remote in (
            ("staticegress-to-target", cfg.vnet_name, cfg.target_vnet_name),
            ("target-to-staticegress", cfg.target_vnet_name, cfg.vnet_name),
        ):
            if self._peering_exists(vnet, name):
                console.print(f"[yellow]Peering already exists: {name}[/yellow]")
                continue
            self._run_command(
                [
                    "az", "network", "vnet", "peering", "create",
                    "--name", name,
                    "--resource-group", cfg.resource_group,
                    "--vnet-name", vnet,
                    "--remote-vnet", remote,
                    "--allow-vnet-access",
                ],
                description=f"Peer {vnet} to {remote}",
            )

        self.target_ip = self._target_ip()
        if not self.target_ip:
            raise ProvisioningError("Failed to get target container IP")
        console.print(f"[green]Target container IP: {self.target_ip}[/green]")

    def _target_ip(self) -> Optional[str]:
        result = self._run_command(
            [
                "az", "container", "show",
                "-n", self.config.target_container_name,
                "-g", self.config.resource_group,
                "--query", "ipAddress.ip",
                "-o", "tsv",
            ],
            check=False,
            display=False,
        )
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def load_runtime_state(self) -> None:
        """Query the values an earlier run resolved, for verification only runs"""
        cfg = self.config
        with console.status("Loading environment details..."):
            identity = self._az_json(["identity", "show", "-g", cfg.resource_group, "-n", cfg.identity_name])
            self._read_identity(identity or {})
            self.resolve_gateway_vmss()
            if cfg.deploy_target:
                self.target_ip = self._target_ip()

    def _probe(self, pod: str) -> str:
        """HTTP status code seen by ``pod`` when calling the target"""
        result = self._run_command(
            [
                "kubectl", "exec", "-n", self.config.demo_namespace, pod, "--",
                "curl", "-s", "-o", "/dev/null", "-w", "%{http_code}", "-m", "10",
                f"http://{self.target_ip}",
            ],
            check=False,
            display=False,
        )
        return result.stdout.strip() or f"exit {result.returncode}"

    def _rendered_cloud_config(self) -> Optional[Dict[str, Any]]:
        """The azureCloudConfig section of the values file, None when missing or malformed"""
        path = self.config.azure_config_path
        if not path.exists():
            return None
        try:
            values = yaml.safe_load(path.read_text())
        except yaml.YAMLError as e:
            logger.warning("Could not parse %s: %s", path, e)
            return None
        section = values.get("config") if isinstance(values, dict) else None
        cloud = section.get("azureCloudConfig") if isinstance(section, dict) else None
        return cloud if isinstance(cloud, dict) else None

    def verify(self) -> bool:
        """Check the deployed environment and print a results table"""
        console.print("\n[bold]Verifying static egress setup...[/bold]")
        cfg = self.config
        checks: List[Tuple[str, Optional[bool], str]] = []

        for name, prefix in (
            (cfg.default_subnet_name, cfg.default_subnet_prefix),
            (cfg.egress_subnet_name, cfg.egress_subnet_prefix),
        ):
            subnet = self._subnet(cfg.vnet_name, name)
            actual = subnet.address_prefix if subnet else "missing"
            checks.append((f"Subnet {name}", actual == prefix, str(actual)))

        pool = self.aks_client.agent_pools.get(cfg.resource_group, cfg.cluster_name, cfg.egress_node_pool)
        taints = pool.node_taints or []
        label = (pool.node_labels or {}).get(GATEWAY_MODE_LABEL)
        checks.append(("Gateway taint", GATEWAY_TAINT in taints, ", ".join(taints) or "none"))
        checks.append(("Gateway label", label == "true", f"{GATEWAY_MODE_LABEL}={label}"))

        rendered = self._rendered_cloud_config()
        if not cfg.azure_config_path.exists():
            checks.append(("azure_config.yaml", False, f"{cfg.azure_config_path} not found"))
        elif rendered is None:
            checks.append(("azure_config.yaml", False, "malformed"))
        else:
            account = self._az_json(["account", "show"]) or {}
            identity = self._az_json(["identity", "show", "-g", cfg.resource_group, "-n", cfg.identity_name]) or {}
            for name, key, live in (
                ("Config subscription", "subscriptionId", account.get("id")),
                ("Config tenant", "tenantId", account.get("tenantId")),
                ("Config identity", "userAssignedIdentityID", identity.get("clientId")),
            ):
                checks.append((name, rendered.get(key) == live, str(rendered.get(key))))

        prefix = self._gateway_prefix()
        checks.append(("Gateway egress prefix", prefix is not None, prefix or "not reported"))

        if cfg.deploy_target:
            if self.target_ip:
                status = self._probe("app2")
                checks.append(("app2 → target (gateway)", status == "200", status))
                # The unannotated path is owned by the cluster's default egress
                checks.append(("app1 → target (default)", None, self._probe("app1")))
            else:
                checks.append(("Target container", False, "no IP address"))

        table = Table(title="Static Egress Verification", box=ROUNDED)
        table.add_column("Check", style="cyan")
        table.add_column("Result", style="yellow")
        table.add_column("Status", style="bold")
        for check, passed, detail in checks:
            table.add_row(check, detail, "ℹ️" if passed is None else ("✅" if passed else "❌"))
        console.print(table)

        failed = [check for check, passed, _ in checks if passed is False]
        if failed:
            logger.warning("Verification failed: %s", ", ".join(failed))
        return not failed

    def display_summary(self) -> None:
        """Display setup summary with rich formatting"""
        cfg = self.config
        table = Table(title="Static Egress Setup Summary", box=ROUNDED)
        table.add_column("Property", style="cyan")
        table.add_column("Value", style="green")

        table.add_row("Resource Group", cfg.resource_group)
        table.add_row("AKS Cluster", cfg.cluster_name)
        table.add_row("Node Resource Group", self.node_resource_group or "")
        table.add_row("Gateway Node Pool", cfg.egress_node_pool)
        table.add_row("Gateway VMSS", self.vmss_name or "")
        table.add_row("Egress Subnet", f"{cfg.egress_subnet_name} ({cfg.egress_subnet_prefix})")
        table.add_row("Identity Client ID", self.identity_client_id or "")
        table.add_row("Gateway", f"{cfg.demo_namespace}/{cfg.gateway_name}")
        table.add_row("Chart", f"{cfg.image_repository} {cfg.image_tag}")
        if cfg.deploy_target:
            table.add_row("Target IP", self.target_ip or "")

        console.print("\n")
        console.print(table)

        test_content = "[bold]Test the gateway path:[/bold]\n\n"
        if self.target_ip:
            test_content += (
                f"[command]kubectl exec -n {cfg.demo_namespace} app2 -- curl -v http://{self.target_ip}[/command]\n"
                f"[command]kubectl exec -n {cfg.demo_namespace} app1 -- curl -v http://{self.target_ip}[/command]\n\n"
            )
        test_content += (
            "To delete all resources when done testing:\n\n"
            f"[command]uv run {Path(__file__).name} --cluster-name {cfg.cluster_name} "
            f"--resource-group {cfg.resource_group} --cleanup[/command]"
        )
        console.print("\n")
        console.print(Panel(test_content, title="[bold yellow]Next Steps[/bold yellow]", border_style="yellow"))

    def cleanup(self, assume_yes: bool = False) -> None:
        """Delete all resources"""
        rg = self.config.resource_group
        console.print(f"\n[bold red]Deleting resource group '{rg}'...[/bold red]")

        if not (assume_yes or typer.confirm("Are you sure you want to delete all resources?")):
            console.print("Cleanup cancelled")
            return

        try:
            if self.resource_client.resource_groups.check_existence(rg):
                poller = self.resource_client.resource_groups.begin_delete(rg)
                with console.status("Deletion initiated. This may take several minutes..."):
                    poller.result()
                console.print("[green]✓ Resources deleted[/green]")
            else:
                console.print(f"[yellow]Resource group does not exist: {rg}[/yellow]")
        except AzureError as e:
            console.print(f"\n[bold red]Error: {e}[/bold red]")
            raise typer.Exit(code=1)

        # The values file holds subscription and identity details
        if self.config.azure_config_path.exists():
            self.config.azure_config_path.unlink()
            console.print(f"[green]✓ Removed {self.config.azure_config_path}[/green]")

    def run_verification(self) -> None:
        try:
            self.load_runtime_state()
            passed = self.verify()
        except (ProvisioningError, AzureError) as e:
            console.print(f"\n[bold red]Error: {e}[/bold red]")
            raise typer.Exit(code=1)
        if not passed:
            raise typer.Exit(code=1)

    def run(self) -> None:
        """Run the complete static egress setup"""
        try:
            self.check_prerequisites()
            self.create_resource_group()
            self.create_network()
            self.create_aks_cluster()
            self.add_egress_node_pool()
            self.create_managed_identity()
            self.resolve_gateway_vmss()
            self.assign_roles()
            self.write_azure_config()
            self.fetch_chart()
            self.install_gateway_chart()
            self.create_demo_namespace()
            self.apply_static_gateway_configuration()
            self.deploy_test_pods()
            if self.config.deploy_target:
                self.create_target_network()
            passed = self.verify()
            self.display_summary()
        except (ProvisioningError, AzureError, httpx.HTTPError) as e:
            console.print(f"\n[bold red]Error: {e}[/bold red]")
            raise typer.Exit(code=1)

        if not passed:
            console.print("\n[bold red]Setup finished but verification failed[/bold red]")
            raise typer.Exit(code=1)

        console.print("\n")
        console.print(Panel(
            "✅ Static egress gateway has been successfully deployed!\n\n"
            f"• Pods annotated for '{self.config.gateway_name}' leave through the gateway node pool\n"
            f"• Gateway nodes live in {self.config.egress_subnet_prefix}\n"
            "• Unannotated pods keep the cluster's default outbound path",
            title="[bold green]Deployment Complete[/bold green]",
            border_style="green",
        ))


def _print_validation_error(error: ValidationError) -> None:
    console.print("[red]Error: invalid configuration[/red]")
    for item in error.errors():
        location = ".".join(str(part) for part in item["loc"]) or "config"
        console.print(f"[red]  • {location}: {item['msg']}[/red]")


@app.command()
def main(
    config_file: Optional[Path] = typer.Option(
        None, "--config", exists=True, dir_okay=False, help="YAML file with configuration values"
    ),
    location: Optional[str] = typer.Option(
        None, envvar="STATIC_EGRESS_LOCATION", help="Azure region for resources (default: uksouth)"
    ),
    cluster_name: Optional[str] = typer.Option(
        None, envvar="STATIC_EGRESS_CLUSTER_NAME", help="AKS cluster name (default: egress-demo)"
    ),
    resource_group: Optional[str] = typer.Option(
        None, envvar="STATIC_EGRESS_RESOURCE_GROUP", help="Resource group (default: cluster name)"
    ),
    node_count: Optional[int] = typer.Option(None, min=1, help="Nodes in the default pool"),
    image_tag: Optional[str] = typer.Option(None, help="kube-egress-gateway image tag and chart ref"),
    chart_source: Optional[ChartSource] = typer.Option(
        None, case_sensitive=False, help="Fetch the chart as a release archive or a git clone"
    ),
    annotation: Optional[AnnotationStyle] = typer.Option(
        None, case_sensitive=False, help="Annotation used to opt the test pod into the gateway"
    ),
    work_dir: Optional[Path] = typer.Option(
        None, file_okay=False, help="Directory for azure_config.yaml and the chart checkout"
    ),
    timeout: Optional[int] = typer.Option(None, min=60, help="Seconds to wait for each resource"),
    skip_target: bool = typer.Option(False, "--skip-target", help="Do not create the peered target network"),
    verify: bool = typer.Option(False, "--verify", help="Only verify an existing deployment"),
    cleanup: bool = typer.Option(False, "--cleanup", help="Delete all resources"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
):
    """Deploy an AKS cluster with a kube-egress-gateway static egress node pool"""
    setup_logging(verbose)

    console.print(Panel.fit(
        "[bold cyan]AKS Static Egress Gateway Setup[/bold cyan]\n"
        "Predictable outbound IPs for selected pods",
        border_style="cyan",
    ))

    overrides = {
        "location": location,
        "cluster_name": cluster_name,
        "resource_group": resource_group,
        "node_count": node_count,
        "image_tag": image_tag,
        "chart_source": chart_source,
        "annotation": annotation,
        "work_dir": work_dir,
        "timeout": timeout,
        "deploy_target": False if skip_target else None,
    }
    try:
        config = load_config(config_file, overrides)
    except ValidationError as e:
        _print_validation_error(e)
        raise typer.Exit(1)
    except (ProvisioningError, yaml.YAMLError) as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    try:
        setup = EgressGatewaySetup(config)
    except ProvisioningError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(1)

    if cleanup:
        setup.cleanup(assume_yes=yes)
    elif verify:
        setup.run_verification()
    else:
        setup.run()


if __name__ == "__main__":
    app()
