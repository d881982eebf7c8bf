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

"""Stack workflows over the Pulumi Automation API, plus their prerequisites."""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import sh
from pulumi import automation as auto
from rich.panel import Panel

from incus_kube import console, logger
from incus_kube.config import LabConfig, NodeConfig, display_config, load_lab_config
from incus_kube.constants import (
    DEFAULT_STACK_NAME,
    PROJECT_DIR_ENV,
    PULUMI_CONFIG_KEY,
    PULUMI_CONFIG_NAMESPACE,
    PULUMI_PROJECT_FILE,
)
from incus_kube.utils import require_command

# ============================================================================
# Internal helpers
# ============================================================================


def _echo(line: str) -> None:
    """Forward one line of engine output to the console verbatim."""
    console.print(line, markup=False, highlight=False)


def project_dir() -> Path:
    """Directory holding Pulumi.yaml: INCUS_KUBE_PROJECT_DIR, else the current directory."""
    return Path(os.environ.get(PROJECT_DIR_ENV) or Path.cwd()).expanduser().resolve()


def resolve_project_path(path: str | Path) -> Path:
    """Resolve *path* the way the program sees it: relative to the project directory."""
    candidate = Path(path).expanduser()
    return candidate if candidate.is_absolute() else project_dir() / candidate


def check_prerequisites(cfg: LabConfig) -> None:
    """Check CLI tools and the SSH key pair needed by ``up``.

    Args:
        cfg: Resolved lab configuration.

    Raises:
        RuntimeError: If a tool or key file is missing.
    """
    prereqs = ["pulumi", "incus"]
    if cfg.network.manage_firewall:
        prereqs.extend(["sudo", "ufw"])
    console.print(Panel.fit("Checking prerequisites", style="bold blue"))
    for cmd in prereqs:
        require_command(cmd)
    console.print("[green]✅ All required tools are available[/green]")

    for key_path in (cfg.nodes.private_key_path, cfg.nodes.public_key_path):
        if not resolve_project_path(key_path).is_file():
            raise RuntimeError(
                f"SSH key '{key_path}' not found. Run 'incus-kube keys generate' first."
            )


def select_stack(stack_name: str = DEFAULT_STACK_NAME) -> auto.Stack:
    """Create or select *stack_name* for the project in :func:`project_dir`.

    Raises:
        RuntimeError: If the directory has no Pulumi.yaml.
    """
    work_dir = project_dir()
    if not (work_dir / PULUMI_PROJECT_FILE).is_file():
        raise RuntimeError(
            f"No {PULUMI_PROJECT_FILE} in {work_dir}. "
            f"Run from the project directory or pass --project-dir."
        )
    logger.info("selecting stack %s in %s", stack_name, work_dir)
    return auto.create_or_select_stack(stack_name=stack_name, work_dir=str(work_dir))


def stack_lab_config(stack: auto.Stack) -> LabConfig:
    """Resolve the LabConfig the program will see for *stack*.

    The ``incus-kube:lab`` object is applied over INCUS_KUBE_* env vars
    and defaults, as in the program itself.
    """
    key = f"{PULUMI_CONFIG_NAMESPACE}:{PULUMI_CONFIG_KEY}"
    entry = stack.get_all_config().get(key)
    overrides = json.loads(entry.value) if entry is not None and entry.value else {}
    if not isinstance(overrides, dict):
        raise RuntimeError(f"Stack config '{key}' must be an object")
    return load_lab_config(overrides)


def plain_outputs(outputs: dict[str, auto.OutputValue], show_secrets: bool = False) -> dict[str, Any]:
    """Flatten Automation API outputs, masking secrets unless asked not to."""
    return {
        key: (out.value if show_secrets or not out.secret else "[secret]")
        for key, out in outputs.items()
    }


# ============================================================================
# Public API
# ============================================================================


def run_up(stack_name: str = DEFAULT_STACK_NAME, refresh: bool = False) -> dict[str, Any]:
    """Deploy the stack: VMs, k3s bootstrap and workload.

    Args:
        stack_name: Pulumi stack to deploy.
        refresh: Whether to refresh state before updating.

    Returns:
        Stack outputs with secrets masked.

    Raises:
        RuntimeError: If prerequisites are missing.
        pulumi.automation.CommandError: If the update fails.
    """
    stack = select_stack(stack_name)
    cfg = stack_lab_config(stack)
    display_config(cfg)
    check_prerequisites(cfg)

    if refresh:
        console.print(Panel.fit("Refreshing stack state", style="bold blue"))
        stack.refresh(on_output=_echo)

    console.print(Panel.fit(f"Deploying stack '{stack_name}'", style="bold blue"))
    result = stack.up(on_output=_echo)
    changes = result.summary.resource_changes or {}
    console.print(f"[green]✅ Update complete: {changes}[/green]")
    return plain_outputs(result.outputs)


def run_preview(stack_name: str = DEFAULT_STACK_NAME, refresh: bool = False) -> dict[str, int]:
    """Preview the stack and return the change summary."""
    stack = select_stack(stack_name)
    display_config(stack_lab_config(stack))
    console.print(Panel.fit(f"Previewing stack '{stack_name}'", style="bold blue"))
    result = stack.preview(on_output=_echo, refresh=refresh)
    summary = {
        getattr(op, "value", str(op)): count
        for op, count in (result.change_summary or {}).items()
    }
    console.print(f"[green]✅ Preview complete: {summary}[/green]")
    return summary


def run_destroy(stack_name: str = DEFAULT_STACK_NAME, remove_stack: bool = False) -> None:
    """Destroy every resource in the stack, optionally removing the stack itself."""
    stack = select_stack(stack_name)
    console.print(Panel.fit(f"Destroying stack '{stack_name}'", style="bold blue"))
    stack.destroy(on_output=_echo)
    console.print(f"[green]✅ Stack '{stack_name}' destroyed[/green]")
    if remove_stack:
        stack.workspace.remove_stack(stack_name)
        console.print(f"[green]✅ Stack '{stack_name}' removed[/green]")


def stack_outputs(stack_name: str = DEFAULT_STACK_NAME, show_secrets: bool = False) -> dict[str, Any]:
    """Current stack outputs, secrets masked unless *show_secrets*."""
    return plain_outputs(select_stack(stack_name).outputs(), show_secrets=show_secrets)


def stack_state(stack_name: str = DEFAULT_STACK_NAME) -> tuple[dict[str, Any], LabConfig]:
    """Unmasked stack outputs together with the stack's resolved LabConfig."""
    stack = select_stack(stack_name)
    return plain_outputs(stack.outputs(), show_secrets=True), stack_lab_config(stack)


def generate_key_pair(node_cfg: NodeConfig, force: bool = False) -> Path:
    """Create the ed25519 key pair used by cloud-init and the remote commands.

    Args:
        node_cfg: Node configuration with key paths and SSH user.
        force: Whether to replace an existing key pair.

    Returns:
        Path of the private key.
    """
    private_path = resolve_project_path(node_cfg.private_key_path)
    public_path = resolve_project_path(node_cfg.public_key_path)

    if private_path.exists() and not force:
        console.print(f"[yellow]⚠️  Key '{private_path}' already exists; use --force to replace it[/yellow]")
        return private_path

    for path in (private_path, public_path):
        path.unlink(missing_ok=True)
    private_path.parent.mkdir(parents=True, exist_ok=True)

    sh.Command("ssh-keygen")(
        "-q", "-t", "ed25519", "-N", "", "-C", node_cfg.ssh_user, "-f", str(private_path),
    )
    default_public = private_path.with_name(private_path.name + ".pub")
    if default_public != public_path:
        default_public.replace(public_path)
    private_path.chmod(0o600)
    console.print(f"[green]✅ Generated {private_path} and {public_path}[/green]")
    return private_path
