# /*
# Copyright 2026 The incus-kube Authors.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# */

"""Constants, dependency loading, and dep_value helper."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml

# -- Resolved paths --
PACKAGE_DIR = Path(__file__).resolve().parent
PULUMI_PROJECT_FILE = "Pulumi.yaml"


def load_dependencies() -> dict:
    """Load image aliases and versions from dependencies.yaml.

    Returns:
        Parsed YAML content as a nested dictionary.
    """
    deps_file = PACKAGE_DIR / "dependencies.yaml"
    with open(deps_file) as f:
        return yaml.safe_load(f)


DEPENDENCIES = load_dependencies()


def dep_value(*keys: str, default: Any = None) -> Any:
    """Safely traverse the DEPENDENCIES dict by key path.

    Args:
        *keys: Sequence of dictionary keys to traverse.
        default: Value to return if any key is missing.

    Returns:
        The value at the nested key path, or *default* if not found.
    """
    node = DEPENDENCIES
    for key in keys:
        if not isinstance(node, dict):
            return default
        node = node.get(key)
        if node is None:
            return default
    return node


ENV_PREFIX = "INCUS_KUBE_"
PULUMI_CONFIG_NAMESPACE = "incus-kube"
PULUMI_CONFIG_KEY = "lab"
DEFAULT_STACK_NAME = "dev"
PROJECT_DIR_ENV = f"{ENV_PREFIX}PROJECT_DIR"

# -- Distros --
DISTRO_ARCH = "arch"
DISTRO_UBUNTU = "ubuntu"
DISTRO_ALMA = "alma"
SUPPORTED_DISTROS = (DISTRO_ARCH, DISTRO_UBUNTU, DISTRO_ALMA)

ROLE_SERVER = "server"
ROLE_AGENT = "agent"

# -- Incus --
INSTANCE_TYPE_VM = "virtual-machine"
INSTANCE_TYPE_CONTAINER = "container"
DEVICE_ROOT = "root"
DEVICE_NIC = "eth0"
DEVICE_AGENT = "agent"
AGENT_CONFIG_SOURCE = "agent:config"
IPV4_POLL_INTERVAL_SECONDS = 5

# -- Incus config keys --
KEY_USER_DATA = "user.user-data"
KEY_SECUREBOOT = "security.secureboot"
KEY_LIMITS_CPU = "limits.cpu"
KEY_LIMITS_MEMORY = "limits.memory"
KEY_IPV4_ADDRESS = "ipv4.address"
KEY_IPV4_NAT = "ipv4.nat"
KEY_DNS_MODE = "dns.mode"

# -- Pulumi resource names --
RES_STORAGE_POOL = "kube-storage-pool"
RES_NETWORK = "kube-network"
RES_FIREWALL_RULE = "ufw-forward-rule"
RES_K8S_PROVIDER = "k8s-provider"

# -- Network defaults --
DEFAULT_STORAGE_POOL_NAME = "k8s-pool"
DEFAULT_STORAGE_DRIVER = "dir"
DEFAULT_NETWORK_NAME = "k8s-net"
DEFAULT_NETWORK_TYPE = "bridge"
DEFAULT_IPV4_ADDRESS = "10.10.10.1/24"
DEFAULT_DNS_MODE = "dynamic"

# -- Node defaults --
DEFAULT_SSH_USER = "pulumi"
DEFAULT_PRIVATE_KEY_PATH = "./pulumi_key"
DEFAULT_PUBLIC_KEY_PATH = "./pulumi_key.pub"
DEFAULT_CPU_LIMIT = "2"
DEFAULT_MEMORY_LIMIT = "2GB"
DEFAULT_DIAL_ERROR_LIMIT = 10
DEFAULT_IPV4_WAIT_TIMEOUT = 300
DEFAULT_ARCH_IMAGE = dep_value("images", DISTRO_ARCH, default="images:archlinux/cloud")
DEFAULT_UBUNTU_IMAGE = dep_value("images", DISTRO_UBUNTU, default="images:ubuntu/25.04/cloud")
DEFAULT_ALMA_IMAGE = dep_value("images", DISTRO_ALMA, default="images:almalinux/9/cloud")

# -- k3s --
DEFAULT_K3S_INSTALL_URL = dep_value("k3s", "install_url", default="https://get.k3s.io")
DEFAULT_K3S_VERSION = dep_value("k3s", "version", default="")
DEFAULT_K3S_API_PORT = 6443
K3S_KUBECONFIG_PATH = "/etc/rancher/k3s/k3s.yaml"
K3S_NODE_TOKEN_PATH = "/var/lib/rancher/k3s/server/node-token"
K3S_MODULES_LOAD_PATH = "/etc/modules-load.d/k3s.conf"
K3S_LOOPBACK_ADDRESS = "127.0.0.1"

# -- Workload defaults --
DEFAULT_WORKLOAD_NAME = "nginx"
DEFAULT_WORKLOAD_NAMESPACE = "default"
DEFAULT_WORKLOAD_REPLICAS = 2
DEFAULT_WORKLOAD_IMAGE = (
    f"{dep_value('workload', 'nginx', 'image', default='nginx')}"
    f":{dep_value('workload', 'nginx', 'version', default='1.27')}"
)
DEFAULT_WORKLOAD_PORT = 80
DEFAULT_SERVICE_TYPE = "NodePort"
SERVICE_TYPES = ("ClusterIP", "NodePort", "LoadBalancer")

# -- Stack outputs --
OUTPUT_MASTER_IP = "masterIp"
OUTPUT_DEPLOYMENT_NAME = "name"
OUTPUT_KUBECONFIG = "kubeconfig"
OUTPUT_SERVICE_NAME = "serviceName"
OUTPUT_NODE_COUNT = "nodeCount"

# -- Verification --
NODES_READY_MAX_RETRIES = 60
NODES_READY_POLL_INTERVAL_SECONDS = 10
ROLLOUT_TIMEOUT = "5m"
DEFAULT_KUBECONFIG_OUTPUT = "~/.kube/incus-kube.yaml"


def worker_ip_output(index: int) -> str:
    """Stack output key for the 1-based worker index (``worker1Ip``)."""
    return f"worker{index}Ip"
