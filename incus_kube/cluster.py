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

"""Kubeconfig export and post-deploy readiness checks against the k3s cluster."""

from __future__ import annotations

import json
from pathlib import Path

from rich.panel import Panel
from tenacity import retry, stop_after_attempt, wait_fixed

from incus_kube import console
from incus_kube.constants import (
    NODES_READY_MAX_RETRIES,
    NODES_READY_POLL_INTERVAL_SECONDS,
    ROLLOUT_TIMEOUT,
)
from incus_kube.utils import run_kubectl


def write_kubeconfig(kubeconfig: str, output: Path) -> Path:
    """Write *kubeconfig* to *output* readable by the owner only.

    Args:
        kubeconfig: Kubeconfig document taken from the stack outputs.
        output: Destination path; parent directories are created.

    Returns:
        The resolved destination path.

    Raises:
        RuntimeError: If the kubeconfig is empty.
    """
    if not kubeconfig or not kubeconfig.strip():
        raise RuntimeError("Stack has no kubeconfig output. Run 'incus-kube stack up' first.")
    output = output.expanduser().resolve()
    output.parent.mkdir(parents=True, exist_ok=True)
    output.touch(mode=0o600, exist_ok=True)
    output.chmod(0o600)
    output.write_text(kubeconfig)
    console.print(f"[green]  ✓ Wrote kubeconfig to {output}[/green]")
    return output


def ready_node_names(nodes_json: str) -> list[str]:
    """Names of nodes whose Ready condition is True in ``kubectl get nodes -o json`` output."""
    ready = []
    for item in json.loads(nodes_json).get("items", []):
        conditions = item.get("status", {}).get("conditions", [])
        if any(c.get("type") == "Ready" and c.get("status") == "True" for c in conditions):
            ready.append(item["metadata"]["name"])
    return sorted(ready)


def wait_for_nodes(
    kubeconfig: Path,
    expected: int,
    max_retries: int = NODES_READY_MAX_RETRIES,
    interval: float = NODES_READY_POLL_INTERVAL_SECONDS,
) -> list[str]:
    """Wait until at least *expected* nodes report Ready.

    Args:
        kubeconfig: Kubeconfig of the cluster.
        expected: Number of nodes that must be Ready.
        max_retries: Maximum polls.
        interval: Seconds between polls.

    Returns:
        Names of the Ready nodes.

    Raises:
        RuntimeError: If fewer nodes are Ready after all retries.
    """
    console.print(f"[yellow]ℹ️  Waiting for {expected} nodes to be ready...[/yellow]")

    @retry(stop=stop_after_attempt(max_retries), wait=wait_fixed(interval), reraise=True)
    def _poll() -> list[str]:
        ok, stdout, stderr = run_kubectl(["get", "nodes", "-o", "json"], kubeconfig)
        if not ok:
            raise RuntimeError(f"kubectl get nodes failed: {stderr.strip()}")
        names = ready_node_names(stdout)
        if len(names) < expected:
            raise RuntimeError(f"{len(names)}/{expected} nodes ready")
        return names

    names = _poll()
    console.print(f"[green]✅ Nodes ready: {', '.join(names)}[/green]")
    return names


def wait_for_rollout(kubeconfig: Path, name: str, namespace: str) -> None:
    """Wait for the deployment rollout to finish.

    Raises:
        RuntimeError: If the rollout does not complete within ROLLOUT_TIMEOUT.
    """
    console.print(f"[yellow]ℹ️  Waiting for deployment {namespace}/{name} to roll out...[/yellow]")
    ok, _, stderr = run_kubectl(
        ["rollout", "status", f"deployment/{name}", "-n", namespace, f"--timeout={ROLLOUT_TIMEOUT}"],
        kubeconfig,
        timeout=330,
    )
    if not ok:
        raise RuntimeError(f"Deployment {namespace}/{name} did not roll out: {stderr.strip()}")
    console.print(f"[green]✅ Deployment {namespace}/{name} is available[/green]")


def verify_cluster(kubeconfig: Path, expected_nodes: int, deployment: str, namespace: str) -> None:
    """Check that every node joined and the workload is available."""
    console.print(Panel.fit("Verifying cluster", style="bold blue"))
    wait_for_nodes(kubeconfig, expected_nodes)
    wait_for_rollout(kubeconfig, deployment, namespace)
