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

"""
cli.py - Operator CLI for the incus-kube Pulumi project.

Subcommands:
    stack    Deploy, preview, destroy and inspect the stack (up, preview, destroy, outputs)
    keys     Manage the SSH key pair (generate)
    cluster  Work with the bootstrapped cluster (kubeconfig, verify)

Examples:
    # First run
    incus-kube keys generate
    incus-kube stack up

    # Use the cluster
    incus-kube cluster kubeconfig -o ~/.kube/incus-kube.yaml
    incus-kube cluster verify

    # Tear down
    incus-kube stack destroy --remove

Commands run against the Pulumi project in the current directory, or the one
given by --project-dir / INCUS_KUBE_PROJECT_DIR. Settings come from the
stack's incus-kube:lab object, then INCUS_KUBE_* environment variables
(see incus_kube.config for the full list).
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import typer

from incus_kube import console
from incus_kube.commands import cluster_cmd, keys_cmd, stack_cmd
from incus_kube.constants import PROJECT_DIR_ENV

app = typer.Typer(
    help="Provision Incus VMs, bootstrap k3s and deploy a workload with Pulumi.",
    no_args_is_help=True,
)


@app.callback()
def _main_callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    project_dir: Path | None = typer.Option(
        None,
        "--project-dir",
        "-C",
        envvar=PROJECT_DIR_ENV,
        help="Directory holding Pulumi.yaml and the key pair (default: current directory)",
    ),
) -> None:
    """Initialize logging and the project directory for all subcommands."""
    if project_dir is not None:
        os.environ[PROJECT_DIR_ENV] = str(project_dir.expanduser().resolve())
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%H:%M:%S",
    )


app.add_typer(stack_cmd.app, name="stack")
app.add_typer(keys_cmd.app, name="keys")
app.add_typer(cluster_cmd.app, name="cluster")


def main() -> None:
    """Console-script entry point; reports failures as a single red line."""
    try:
        app()
    except Exception as e:
        console.print(f"[red]❌ {e}[/red]")
        sys.exit(1)


if __name__ == "__main__":
    main()
