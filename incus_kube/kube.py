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

"""k3s bootstrap over SSH: head install, kubeconfig and token extraction, worker joins."""

from __future__ import annotations

import shlex
from dataclasses import dataclass

import pulumi
import pulumi_kubernetes as k8s
from pulumi_command import remote

from incus_kube.config import KubeConfig, NodeConfig
from incus_kube.constants import (
    K3S_KUBECONFIG_PATH,
    K3S_LOOPBACK_ADDRESS,
    K3S_MODULES_LOAD_PATH,
    K3S_NODE_TOKEN_PATH,
    RES_K8S_PROVIDER,
)
from incus_kube.vms import IncusNodes

SSH_PROBE_COMMAND = "echo 'SSH is ready'"
SSH_PROBE_AFTER_REBOOT_COMMAND = "echo 'SSH is ready after reboot'"
# Backgrounded so the command exits 0 before the connection drops.
REBOOT_COMMAND = "sudo reboot &"


@dataclass(frozen=True)
class KubeCluster:
    """Handles produced by the bootstrap chain.

    Attributes:
        provider: Kubernetes provider bound to the new cluster.
        kubeconfig: Admin kubeconfig pointing at the head's address (secret).
        join_token: Node token used by workers to join (secret).
        server_url: ``https://<head>:<port>`` API endpoint.
    """

    provider: k8s.Provider
    kubeconfig: pulumi.Output[str]
    join_token: pulumi.Output[str]
    server_url: pulumi.Output[str]


# ============================================================================
# Scripts
# ============================================================================

def _installer_pipe(install_url: str, env: dict[str, str]) -> str:
    """``curl <url> | K=V ... sh -`` with the environment quoted."""
    assignments = " ".join(f"{key}={shlex.quote(value)}" for key, value in env.items())
    prefix = f"{assignments} " if assignments else ""
    return f"curl -sfL {shlex.quote(install_url)} | {prefix}sh -"


def server_install_script(kube_cfg: KubeConfig) -> str:
    """Script that loads ``overlay`` persistently and installs the k3s server."""
    env = {"INSTALL_K3S_VERSION": kube_cfg.k3s_version} if kube_cfg.k3s_version else {}
    return "\n".join([
        "set -e",
        'echo "Enabling overlay module"',
        "sudo modprobe overlay",
        f"echo overlay | sudo tee {K3S_MODULES_LOAD_PATH}",
        'echo "Installing K3s on master..."',
        _installer_pipe(kube_cfg.install_url, env),
        "",
    ])


def agent_join_script(kube_cfg: KubeConfig, server_url: str, token: str, label: str) -> str:
    """Script that installs the k3s agent and joins *server_url* with *token*."""
    env = {"K3S_URL": server_url, "K3S_TOKEN": token.strip()}
    if kube_cfg.k3s_version:
        env["INSTALL_K3S_VERSION"] = kube_cfg.k3s_version
    return "\n".join([
        "set -e",
        f'echo "Installing K3s on worker ({label})..."',
        _installer_pipe(kube_cfg.install_url, env),
        "",
    ])


def kubeconfig_command(head_ip: str) -> str:
    """Print the admin kubeconfig with the loopback server replaced by *head_ip*."""
    return f"sudo cat {K3S_KUBECONFIG_PATH} | sed 's/{K3S_LOOPBACK_ADDRESS}/{head_ip}/'"


def join_token_command() -> str:
    """Print the node token agents present when joining."""
    return f"sudo cat {K3S_NODE_TOKEN_PATH}"


# ============================================================================
# Resources
# ============================================================================

def ssh_connection(host: pulumi.Input[str], node_cfg: NodeConfig,
                   private_key: pulumi.Input[str]) -> remote.ConnectionArgs:
    """SSH connection whose dial retries cover VMs that are still booting."""
    return remote.ConnectionArgs(
        host=host,
        user=node_cfg.ssh_user,
        private_key=private_key,
        dial_error_limit=node_cfg.dial_error_limit,
    )


def setup_kube(
    nodes: IncusNodes,
    node_cfg: NodeConfig,
    kube_cfg: KubeConfig,
    private_key: str,
) -> KubeCluster:
    """Declare the bootstrap chain and a Kubernetes provider for the result.

    Head: wait for SSH, reboot into the upgraded kernel, wait again, install
    k3s, then read the kubeconfig and join token. Each worker waits for SSH
    once the token exists and joins over its own connection.

    Args:
        nodes: Provisioned head and workers.
        node_cfg: SSH user and dial limits.
        kube_cfg: k3s install settings.
        private_key: Private key matching the cloud-init public key.

    Returns:
        KubeCluster with the provider and the extracted secrets.
    """
    secret_key = pulumi.Output.secret(private_key)
    head = nodes.head
    head_conn = ssh_connection(head.ipv4_address, node_cfg, secret_key)

    head_ssh_ready = remote.Command(
        "wait-for-master-ssh",
        connection=head_conn,
        create=SSH_PROBE_COMMAND,
        opts=pulumi.ResourceOptions(depends_on=[head]),
    )

    reboot = remote.Command(
        "reboot-master",
        connection=head_conn,
        create=REBOOT_COMMAND,
        opts=pulumi.ResourceOptions(depends_on=[head_ssh_ready]),
    )

    head_ssh_ready_after_reboot = remote.Command(
        "master-wait-ssh-reboot",
        connection=head_conn,
        create=SSH_PROBE_AFTER_REBOOT_COMMAND,
        opts=pulumi.ResourceOptions(depends_on=[reboot]),
    )

    kube_init = remote.Command(
        "kube-init",
        connection=head_conn,
        create=server_install_script(kube_cfg),
        opts=pulumi.ResourceOptions(depends_on=[head, head_ssh_ready_after_reboot]),
    )

    server_url = pulumi.Output.concat("https://", head.ipv4_address, ":", str(kube_cfg.api_port))

    get_kubeconfig = remote.Command(
        "get-kubeconfig",
        connection=head_conn,
        create=head.ipv4_address.apply(kubeconfig_command),
        opts=pulumi.ResourceOptions(depends_on=[kube_init], additional_secret_outputs=["stdout"]),
    )

    get_join_token = remote.Command(
        "get-join-token",
        connection=head_conn,
        create=join_token_command(),
        opts=pulumi.ResourceOptions(depends_on=[kube_init], additional_secret_outputs=["stdout"]),
    )
    join_token = get_join_token.stdout.apply(lambda token: token.strip())

    joins: list[remote.Command] = []
    for index, worker in enumerate(nodes.workers, start=1):
        worker_conn = ssh_connection(worker.ipv4_address, node_cfg, secret_key)
        worker_ssh_ready = remote.Command(
            f"wait-for-worker{index}-ssh",
            connection=worker_conn,
            create=SSH_PROBE_COMMAND,
            opts=pulumi.ResourceOptions(depends_on=[worker, get_join_token]),
        )
        label = f"worker {index}"
        join = remote.Command(
            f"worker{index}-join",
            connection=worker_conn,
            create=pulumi.Output.all(server_url, join_token).apply(
                lambda args, label=label: agent_join_script(kube_cfg, args[0], args[1], label)
            ),
            opts=pulumi.ResourceOptions(depends_on=[worker_ssh_ready, get_join_token]),
        )
        joins.append(join)

    provider = k8s.Provider(
        RES_K8S_PROVIDER,
        kubeconfig=get_kubeconfig.stdout,
        opts=pulumi.ResourceOptions(depends_on=[kube_init, *joins]),
    )
    pulumi.log.info(f"declared k3s bootstrap for 1 server and {len(joins)} agents")

    return KubeCluster(
        provider=provider,
        kubeconfig=pulumi.Output.secret(get_kubeconfig.stdout),
        join_token=pulumi.Output.secret(join_token),
        server_url=server_url,
    )
