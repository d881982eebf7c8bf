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

"""Key subcommands (generate)."""

from __future__ import annotations

import typer

from incus_kube.config import NodeConfig
from incus_kube.orchestrator import generate_key_pair

app = typer.Typer(help="Manage the SSH key pair injected into the VMs.")


@app.command()
def generate(
    force: bool = typer.Option(False, "--force", help="Replace an existing key pair"),
    private_key_path: str | None = typer.Option(None, "--private-key", help="Private key path"),
    public_key_path: str | None = typer.Option(None, "--public-key", help="Public key path"),
) -> None:
    """Generate the ed25519 key pair used by cloud-init and SSH."""
    node_cfg = NodeConfig()
    overrides: dict = {}
    if private_key_path is not None:
        overrides["private_key_path"] = private_key_path
    if public_key_path is not None:
        overrides["public_key_path"] = public_key_path
    if overrides:
        node_cfg = node_cfg.model_copy(update=overrides)
    generate_key_pair(node_cfg, force=force)
