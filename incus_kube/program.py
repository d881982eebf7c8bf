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

"""The Pulumi program: VMs, k3s bootstrap, workload, and stack outputs."""

from __future__ import annotations

import pulumi

from incus_kube.config import LabConfig, load_lab_config
from incus_kube.constants import (
    OUTPUT_DEPLOYMENT_NAME,
    OUTPUT_KUBECONFIG,
    OUTPUT_MASTER_IP,
    OUTPUT_NODE_COUNT,
    OUTPUT_SERVICE_NAME,
    PULUMI_CONFIG_KEY,
    PULUMI_CONFIG_NAMESPACE,
    worker_ip_output,
)
from incus_kube.kube import setup_kube
from incus_kube.utils import read_key_pair
from incus_kube.vms import launch_vms
from incus_kube.workload import deploy_workload


def stack_config() -> LabConfig:
    """Resolve configuration from the ``incus-kube:lab`` stack object and env vars."""
    overrides = pulumi.Config(PULUMI_CONFIG_NAMESPACE).get_object(PULUMI_CONFIG_KEY) or {}
    return load_lab_config(overrides)


def run(cfg: LabConfig | None = None) -> None:
    """Declare every resource and export the stack outputs.

    Raises:
        FileNotFoundError: If the SSH key pair is missing.
        ValueError: If the configuration or public key is invalid.
    """
    cfg = cfg or stack_config()
    private_key, public_key = read_key_pair(cfg.nodes.private_key_path, cfg.nodes.public_key_path)

    nodes = launch_vms(cfg.network, cfg.nodes, public_key)
    pulumi.export(OUTPUT_MASTER_IP, nodes.head.ipv4_address)
    for index, worker in enumerate(nodes.workers, start=1):
        pulumi.export(worker_ip_output(index), worker.ipv4_address)
    pulumi.export(OUTPUT_NODE_COUNT, 1 + len(nodes.workers))

    cluster = setup_kube(nodes, cfg.nodes, cfg.kube, private_key)
    pulumi.export(OUTPUT_KUBECONFIG, cluster.kubeconfig)

    workload = deploy_workload(cluster.provider, cfg.workload)
    pulumi.export(OUTPUT_DEPLOYMENT_NAME, workload.deployment.metadata.apply(lambda meta: meta.name))
    if workload.service is not None:
        pulumi.export(OUTPUT_SERVICE_NAME, workload.service.metadata.apply(lambda meta: meta.name))
