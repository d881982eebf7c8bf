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

"""Storage pool, bridge network, host firewall rule and the cluster VMs."""

from __future__ import annotations

from dataclasses import dataclass

import pulumi
from pulumi_command import local

from incus_kube.cloud_init import render_cloud_init
from incus_kube.config import NetworkConfig, NodeConfig
from incus_kube.constants import (
    AGENT_CONFIG_SOURCE,
    DEVICE_AGENT,
    DEVICE_NIC,
    DEVICE_ROOT,
    DISTRO_ALMA,
    DISTRO_ARCH,
    DISTRO_UBUNTU,
    INSTANCE_TYPE_VM,
    KEY_DNS_MODE,
    KEY_IPV4_ADDRESS,
    KEY_IPV4_NAT,
    KEY_LIMITS_CPU,
    KEY_LIMITS_MEMORY,
    KEY_SECUREBOOT,
    KEY_USER_DATA,
    RES_FIREWALL_RULE,
    RES_NETWORK,
    RES_STORAGE_POOL,
    ROLE_AGENT,
    ROLE_SERVER,
)
from incus_kube.incus import Instance, Network, StoragePool


@dataclass(frozen=True)
class NodeSpec:
    """Declaration of one cluster VM.

    Attributes:
        resource_name: Pulumi resource name.
        instance_name: Incus instance name.
        image: Incus image alias.
        distro: cloud-init flavour (``arch``, ``ubuntu`` or ``alma``).
        role: ``server`` for the cluster head, ``agent`` for workers.
        disable_secureboot: Whether to turn secure boot off for the image's kernel.
        agent_config_disk: Whether to attach the ``agent:config`` disk.
    """

    resource_name: str
    instance_name: str
    image: str
    distro: str
    role: str
    disable_secureboot: bool = False
    agent_config_disk: bool = False


@dataclass(frozen=True)
class IncusNodes:
    """The provisioned cluster head and its workers, in join order."""

    head: Instance
    workers: tuple[Instance, ...]


def default_node_specs(node_cfg: NodeConfig) -> list[NodeSpec]:
    """Head on Arch Linux, first worker on Ubuntu, second on AlmaLinux.

    Arch cloud images ship an unsigned kernel after the first upgrade, and
    AlmaLinux needs the agent disk for cloud-init to see its user-data.
    """
    return [
        NodeSpec("master-node", "kube-master", node_cfg.arch_image, DISTRO_ARCH, ROLE_SERVER,
                 disable_secureboot=True),
        NodeSpec("worker-node-1", "kube-worker-1", node_cfg.ubuntu_image, DISTRO_UBUNTU, ROLE_AGENT),
        NodeSpec("worker-node-2", "kube-worker-2", node_cfg.alma_image, DISTRO_ALMA, ROLE_AGENT,
                 agent_config_disk=True),
    ]


def instance_devices(spec: NodeSpec, pool_name: pulumi.Input[str],
                     network_name: pulumi.Input[str]) -> list[dict]:
    """Root disk on the pool and a NIC on the network, plus the agent disk if requested."""
    devices: list[dict] = [
        {"name": DEVICE_ROOT, "type": "disk", "properties": {"path": "/", "pool": pool_name}},
        {"name": DEVICE_NIC, "type": "nic", "properties": {"network": network_name}},
    ]
    if spec.agent_config_disk:
        devices.append({"name": DEVICE_AGENT, "type": "disk", "properties": {"source": AGENT_CONFIG_SOURCE}})
    return devices


def instance_config(spec: NodeSpec, node_cfg: NodeConfig, public_key: str) -> dict[str, str]:
    """Incus config keys for *spec*: user-data and resource limits."""
    config = {
        KEY_USER_DATA: render_cloud_init(spec.distro, public_key, node_cfg.ssh_user),
        KEY_LIMITS_CPU: node_cfg.cpu_limit,
        KEY_LIMITS_MEMORY: node_cfg.memory_limit,
    }
    if spec.disable_secureboot:
        config[KEY_SECUREBOOT] = "false"
    return config


def launch_vms(
    network_cfg: NetworkConfig,
    node_cfg: NodeConfig,
    public_key: str,
    specs: list[NodeSpec] | None = None,
) -> IncusNodes:
    """Declare the pool, network, firewall rule and VMs.

    Args:
        network_cfg: Pool, network and firewall settings.
        node_cfg: VM sizing, images and SSH user.
        public_key: Public key injected through cloud-init.
        specs: Node declarations; the first must be the ``server``.
            Defaults to :func:`default_node_specs`.

    Returns:
        IncusNodes with the head and workers.

    Raises:
        ValueError: If *specs* does not start with exactly one server.
    """
    specs = specs if specs is not None else default_node_specs(node_cfg)
    if not specs or specs[0].role != ROLE_SERVER or any(s.role == ROLE_SERVER for s in specs[1:]):
        raise ValueError("node specs must start with the only server node")

    storage_pool = StoragePool(
        RES_STORAGE_POOL,
        name=network_cfg.storage_pool_name,
        driver=network_cfg.storage_driver,
    )

    kube_network = Network(
        RES_NETWORK,
        name=network_cfg.network_name,
        type=network_cfg.network_type,
        config={
            KEY_IPV4_ADDRESS: network_cfg.ipv4_address,
            KEY_IPV4_NAT: "true" if network_cfg.ipv4_nat else "false",
            KEY_DNS_MODE: network_cfg.dns_mode,
        },
    )

    gate: pulumi.Resource = kube_network
    if network_cfg.manage_firewall:
        gate = local.Command(
            RES_FIREWALL_RULE,
            create=f"sudo ufw allow in on {network_cfg.network_name}",
            delete=f"sudo ufw delete allow in on {network_cfg.network_name}",
            opts=pulumi.ResourceOptions(depends_on=[kube_network]),
        )

    instances = [
        Instance(
            spec.resource_name,
            name=spec.instance_name,
            image=spec.image,
            type=INSTANCE_TYPE_VM,
            ephemeral=False,
            devices=instance_devices(spec, storage_pool.name, kube_network.name),
            config=instance_config(spec, node_cfg, public_key),
            ipv4_wait_timeout=node_cfg.ipv4_wait_timeout,
            opts=pulumi.ResourceOptions(depends_on=[gate]),
        )
        for spec in specs
    ]
    pulumi.log.info(f"declared {len(instances)} VMs on network {network_cfg.network_name}")
    return IncusNodes(head=instances[0], workers=tuple(instances[1:]))
