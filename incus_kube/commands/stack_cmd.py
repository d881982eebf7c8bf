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

"""Stack subcommands (up, preview, destroy, outputs)."""

from __future__ import annotations

import json

import typer

from incus_kube import console
from incus_kube.constants import DEFAULT_STACK_NAME
from incus_kube.orchestrator import run_destroy, run_preview, run_up, stack_outputs

app = typer.Typer(help="Deploy, preview and destroy the Pulumi stack.")

STACK_OPTION = typer.Option(DEFAULT_STACK_NAME, "--stack", "-s", help="Pulumi stack name")


@app.command()
def up(
    stack: str = STACK_OPTION,
    refresh: bool = typer.Option(False, "--refresh", help="Refresh state before updating"),
) -> None:
    """Provision the VMs, bootstrap k3s and deploy the workload."""
    outputs = run_up(stack, refresh=refresh)
    console.print_json(json.dumps(outputs))


@app.command()
def preview(
    stack: str = STACK_OPTION,
    refresh: bool = typer.Option(False, "--refresh", help="Refresh state before previewing"),
) -> None:
    """Show the changes an update would make."""
    run_preview(stack, refresh=refresh)


@app.command()
def destroy(
    stack: str = STACK_OPTION,
    remove: bool = typer.Option(False, "--remove", help="Also remove the stack and its config"),
) -> None:
    """Tear down every resource in the stack."""
    run_destroy(stack, remove_stack=remove)


@app.command()
def outputs(
    stack: str = STACK_OPTION,
    show_secrets: bool = typer.Option(False, "--show-secrets", help="Print secret outputs in clear"),
) -> None:
    """Print the stack outputs as JSON."""
    console.print_json(json.dumps(stack_outputs(stack, show_secrets=show_secrets)))
