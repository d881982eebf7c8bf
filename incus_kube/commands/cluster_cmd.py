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

"""Cluster subcommands (kubeconfig, verify)."""

from __future__ import annotations

import tempfile
from pathlib import Path

import typer

from incus_kube.cluster import verify_cluster, write_kubeconfig
from incus_kube.constants import (
    DEFAULT_KUBECONFIG_OUTPUT,
    DEFAULT_STACK_NAME,
    OUTPUT_DEPLOYMENT_NAME,
    OUTPUT_KUBECONFIG,
    OUTPUT_NODE_COUNT,
)
from incus_kube.orchestrator import stack_outputs, stack_state

app = typer.Typer(help="Work with the bootstrapped k3s cluster.")

STACK_OPTION = typer.Option(DEFAULT_STACK_NAME, "--stack", "-s", help="Pulumi stack name")


@app.command()
def kubeconfig(
    stack: str = STACK_OPTION,
    output: Path = typer.Option(Path(DEFAULT_KUBECONFIG_OUTPUT), "--output", "-o", help="Destination file"),
) -> None:
    """Write the cluster's admin kubeconfig to a file."""
    outputs = stack_outputs(stack, show_secrets=True)
    write_kubeconfig(outputs.get(OUTPUT_KUBECONFIG, ""), output)


@app.command()
def verify(stack: str = STACK_OPTION) -> None:
    """Wait until every node is Ready and the workload has rolled out."""
    outputs, cfg = stack_state(stack)
    workload_cfg = cfg.workload
    expected_nodes = int(outputs.get(OUTPUT_NODE_COUNT) or 1)
    deployment = outputs.get(OUTPUT_DEPLOYMENT_NAME) or workload_cfg.name

    with tempfile.TemporaryDirectory() as tmp:
        path = write_kubeconfig(outputs.get(OUTPUT_KUBECONFIG, ""), Path(tmp) / "kubeconfig")
        verify_cluster(path, expected_nodes, deployment, workload_cfg.namespace)
