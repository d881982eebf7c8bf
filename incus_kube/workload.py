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

"""The demo workload: an nginx Deployment and, optionally, a Service in front of it."""

from __future__ import annotations

from dataclasses import dataclass

import pulumi
import pulumi_kubernetes as k8s

from incus_kube.config import WorkloadConfig


@dataclass(frozen=True)
class Workload:
    """Deployed workload handles; ``service`` is None when not exposed."""

    deployment: k8s.apps.v1.Deployment
    service: k8s.core.v1.Service | None


def workload_labels(workload_cfg: WorkloadConfig) -> dict[str, str]:
    """Pod labels, also used as the Deployment and Service selector."""
    return {"app": workload_cfg.name}


def deploy_workload(provider: k8s.Provider, workload_cfg: WorkloadConfig) -> Workload:
    """Deploy the workload through *provider*.

    Args:
        provider: Provider bound to the bootstrapped cluster.
        workload_cfg: Name, image, replicas and exposure settings.

    Returns:
        Workload with the Deployment and optional Service.
    """
    labels = workload_labels(workload_cfg)
    opts = pulumi.ResourceOptions(provider=provider)

    deployment = k8s.apps.v1.Deployment(
        workload_cfg.name,
        metadata=k8s.meta.v1.ObjectMetaArgs(
            name=workload_cfg.name,
            namespace=workload_cfg.namespace,
            labels=labels,
        ),
        spec=k8s.apps.v1.DeploymentSpecArgs(
            replicas=workload_cfg.replicas,
            selector=k8s.meta.v1.LabelSelectorArgs(match_labels=labels),
            template=k8s.core.v1.PodTemplateSpecArgs(
                metadata=k8s.meta.v1.ObjectMetaArgs(labels=labels),
                spec=k8s.core.v1.PodSpecArgs(
                    containers=[
                        k8s.core.v1.ContainerArgs(
                            name=workload_cfg.name,
                            image=workload_cfg.image,
                            ports=[k8s.core.v1.ContainerPortArgs(container_port=workload_cfg.container_port)],
                        ),
                    ],
                ),
            ),
        ),
        opts=opts,
    )

    service = None
    if workload_cfg.expose:
        service = k8s.core.v1.Service(
            workload_cfg.name,
            metadata=k8s.meta.v1.ObjectMetaArgs(
                name=workload_cfg.name,
                namespace=workload_cfg.namespace,
                labels=labels,
            ),
            spec=k8s.core.v1.ServiceSpecArgs(
                type=workload_cfg.service_type,
                selector=labels,
                ports=[
                    k8s.core.v1.ServicePortArgs(
                        port=workload_cfg.container_port,
                        target_port=workload_cfg.container_port,
                    ),
                ],
            ),
            opts=pulumi.ResourceOptions(provider=provider, depends_on=[deployment]),
        )

    return Workload(deployment=deployment, service=service)
