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

"""Configuration classes, override resolution, and display."""

from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from typing import Any

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.panel import Panel

from incus_kube import console
from incus_kube.constants import (
    DEFAULT_ALMA_IMAGE,
    DEFAULT_ARCH_IMAGE,
    DEFAULT_CPU_LIMIT,
    DEFAULT_DIAL_ERROR_LIMIT,
    DEFAULT_DNS_MODE,
    DEFAULT_IPV4_ADDRESS,
    DEFAULT_IPV4_WAIT_TIMEOUT,
    DEFAULT_K3S_API_PORT,
    DEFAULT_K3S_INSTALL_URL,
    DEFAULT_K3S_VERSION,
    DEFAULT_MEMORY_LIMIT,
    DEFAULT_NETWORK_NAME,
    DEFAULT_NETWORK_TYPE,
    DEFAULT_PRIVATE_KEY_PATH,
    DEFAULT_PUBLIC_KEY_PATH,
    DEFAULT_SERVICE_TYPE,
    DEFAULT_SSH_USER,
    DEFAULT_STORAGE_DRIVER,
    DEFAULT_STORAGE_POOL_NAME,
    DEFAULT_UBUNTU_IMAGE,
    DEFAULT_WORKLOAD_IMAGE,
    DEFAULT_WORKLOAD_NAME,
    DEFAULT_WORKLOAD_NAMESPACE,
    DEFAULT_WORKLOAD_PORT,
    DEFAULT_WORKLOAD_REPLICAS,
    ENV_PREFIX,
    SERVICE_TYPES,
)


# ============================================================================
# Configuration classes
# ============================================================================

class NetworkConfig(BaseSettings):
    """Storage pool, bridge network and host firewall, auto-loaded from INCUS_KUBE_* env vars.

    Attributes:
        storage_pool_name: Incus storage pool holding the VM root disks.
        storage_driver: Incus storage driver for the pool.
        network_name: Name of the managed Incus network.
        network_type: Incus network type.
        ipv4_address: Gateway address and prefix of the network (``10.10.10.1/24``).
        ipv4_nat: Whether the network NATs outbound traffic.
        dns_mode: Incus DNS mode for the network.
        manage_firewall: Whether to open the bridge in the host's ufw.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    storage_pool_name: str = DEFAULT_STORAGE_POOL_NAME
    storage_driver: str = DEFAULT_STORAGE_DRIVER
    network_name: str = Field(default=DEFAULT_NETWORK_NAME, pattern=r"^[a-z0-9][a-z0-9-]{0,14}$")
    network_type: str = DEFAULT_NETWORK_TYPE
    ipv4_address: str = DEFAULT_IPV4_ADDRESS
    ipv4_nat: bool = True
    dns_mode: str = DEFAULT_DNS_MODE
    manage_firewall: bool = True

    @field_validator("ipv4_address")
    @classmethod
    def _check_ipv4_address(cls, value: str) -> str:
        iface = ipaddress.ip_interface(value)
        if iface.version != 4 or "/" not in value:
            raise ValueError(f"expected an IPv4 address with prefix, got '{value}'")
        if iface.ip == iface.network.network_address:
            raise ValueError(f"'{value}' is a network address, not a gateway address")
        return value


class NodeConfig(BaseSettings):
    """VM sizing, images and SSH access, auto-loaded from INCUS_KUBE_* env vars.

    Attributes:
        ssh_user: User created by cloud-init and used for SSH.
        private_key_path: Private key used by the remote commands.
        public_key_path: Public key injected through cloud-init.
        cpu_limit: ``limits.cpu`` for every VM.
        memory_limit: ``limits.memory`` for every VM.
        dial_error_limit: SSH dial attempts before a remote command fails.
        ipv4_wait_timeout: Seconds to wait for a VM to obtain an IPv4 address.
        arch_image: Image alias of the cluster head.
        ubuntu_image: Image alias of the first worker.
        alma_image: Image alias of the second worker.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    ssh_user: str = DEFAULT_SSH_USER
    private_key_path: str = DEFAULT_PRIVATE_KEY_PATH
    public_key_path: str = DEFAULT_PUBLIC_KEY_PATH
    cpu_limit: str = Field(default=DEFAULT_CPU_LIMIT, pattern=r"^\d+$")
    memory_limit: str = Field(default=DEFAULT_MEMORY_LIMIT, pattern=r"^\d+(MB|GB|MiB|GiB)$")
    dial_error_limit: int = Field(default=DEFAULT_DIAL_ERROR_LIMIT, ge=1, le=1000)
    ipv4_wait_timeout: int = Field(default=DEFAULT_IPV4_WAIT_TIMEOUT, ge=10)
    arch_image: str = DEFAULT_ARCH_IMAGE
    ubuntu_image: str = DEFAULT_UBUNTU_IMAGE
    alma_image: str = DEFAULT_ALMA_IMAGE


class KubeConfig(BaseSettings):
    """k3s installation settings, auto-loaded from INCUS_KUBE_* env vars.

    Attributes:
        install_url: URL of the k3s install script.
        k3s_version: Pinned k3s release, or empty for the installer's default.
        api_port: Port of the k3s API server on the head.
    """

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="ignore")

    install_url: str = Field(default=DEFAULT_K3S_INSTALL_URL, pattern=r"^https?://")
    k3s_version: str = Field(default=DEFAULT_K3S_VERSION, pattern=r"^(v[\d.]+\+k3s\d+)?$")
    api_port: int = Field(default=DEFAULT_K3S_API_PORT, ge=1, le=65535)


class WorkloadConfig(BaseSettings):
    """The demo workload, auto-loaded from INCUS_KUBE_WORKLOAD_* env vars.

    Attributes:
        name: Deployment (and Service) name.
        namespace: Namespace to deploy into.
        replicas: Number of replicas.
        image: Container image reference.
        container_port: Port the container listens on.
        service_type: Kubernetes Service type.
        expose: Whether to create a Service in front of the Deployment.
    """

    model_config = SettingsConfigDict(env_prefix=f"{ENV_PREFIX}WORKLOAD_", extra="ignore")

    name: str = Field(default=DEFAULT_WORKLOAD_NAME, pattern=r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")
    namespace: str = DEFAULT_WORKLOAD_NAMESPACE
    replicas: int = Field(default=DEFAULT_WORKLOAD_REPLICAS, ge=1, le=20)
    image: str = DEFAULT_WORKLOAD_IMAGE
    container_port: int = Field(default=DEFAULT_WORKLOAD_PORT, ge=1, le=65535)
    service_type: str = DEFAULT_SERVICE_TYPE
    expose: bool = True

    @field_validator("service_type")
    @classmethod
    def _check_service_type(cls, value: str) -> str:
        if value not in SERVICE_TYPES:
            raise ValueError(f"service_type must be one of {', '.join(SERVICE_TYPES)}")
        return value


# ============================================================================
# Resolution
# ============================================================================

@dataclass(frozen=True)
class LabConfig:
    """All configuration the program needs, resolved once.

    Attributes:
        network: Storage pool, network and firewall settings.
        nodes: VM and SSH settings.
        kube: k3s settings.
        workload: Demo workload settings.
    """

    network: NetworkConfig
    nodes: NodeConfig
    kube: KubeConfig
    workload: WorkloadConfig


def load_lab_config(overrides: dict[str, Any] | None = None) -> LabConfig:
    """Merge explicit overrides, environment variables, and defaults.

    Resolution priority: overrides > INCUS_KUBE_* environment variables > defaults.

    Args:
        overrides: Mapping with optional ``network``, ``nodes``, ``kube`` and
            ``workload`` sections, as stored in the ``incus-kube:lab`` stack
            config object.

    Returns:
        The resolved LabConfig.

    Raises:
        ValueError: If an override section is not a mapping.
        pydantic.ValidationError: If a value fails validation.
    """
    overrides = overrides or {}
    sections: dict[str, dict[str, Any]] = {}
    for key in ("network", "nodes", "kube", "workload"):
        section = overrides.get(key) or {}
        if not isinstance(section, dict):
            raise ValueError(f"config section '{key}' must be a mapping")
        sections[key] = section

    return LabConfig(
        network=NetworkConfig(**sections["network"]),
        nodes=NodeConfig(**sections["nodes"]),
        kube=KubeConfig(**sections["kube"]),
        workload=WorkloadConfig(**sections["workload"]),
    )


# ============================================================================
# Display
# ============================================================================

def display_config(cfg: LabConfig) -> None:
    """Print the resolved configuration. Key material is never printed.

    Args:
        cfg: Resolved lab configuration.
    """
    console.print(Panel.fit("Configuration", style="bold blue"))

    console.print("[yellow]Network:[/yellow]")
    console.print(f"  storage_pool    : {cfg.network.storage_pool_name} ({cfg.network.storage_driver})")
    console.print(f"  network         : {cfg.network.network_name} ({cfg.network.network_type})")
    console.print(f"  ipv4_address    : {cfg.network.ipv4_address}")
    console.print(f"  ufw rule        : {'yes' if cfg.network.manage_firewall else 'no'}")

    console.print("[yellow]Nodes:[/yellow]")
    console.print(f"  head image      : {cfg.nodes.arch_image}")
    console.print(f"  worker images   : {cfg.nodes.ubuntu_image}, {cfg.nodes.alma_image}")
    console.print(f"  limits          : {cfg.nodes.cpu_limit} cpu / {cfg.nodes.memory_limit}")
    console.print(f"  ssh_user        : {cfg.nodes.ssh_user}")
    console.print(f"  public_key_path : {cfg.nodes.public_key_path}")

    console.print("[yellow]k3s:[/yellow]")
    console.print(f"  install_url     : {cfg.kube.install_url}")
    console.print(f"  version         : {cfg.kube.k3s_version or '(installer default)'}")

    console.print("[yellow]Workload:[/yellow]")
    console.print(f"  deployment      : {cfg.workload.namespace}/{cfg.workload.name}")
    console.print(f"  image           : {cfg.workload.image} x{cfg.workload.replicas}")
    if cfg.workload.expose:
        console.print(f"  service         : {cfg.workload.service_type}:{cfg.workload.container_port}")
