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

"""Utility functions for the incus and kubectl CLIs, command checks, and key files."""

from __future__ import annotations

import subprocess
from pathlib import Path

import sh


class IncusError(RuntimeError):
    """Raised when an ``incus`` invocation fails."""


def run_incus(*args: str) -> str:
    """Run an ``incus`` subcommand and return its stdout.

    Args:
        *args: incus arguments (e.g. ``"network", "create", "k8s-net"``).

    Returns:
        Captured stdout.

    Raises:
        IncusError: If the CLI is missing or exits non-zero; carries its stderr.
    """
    try:
        return str(sh.incus(*args))
    except sh.ErrorReturnCode as err:
        stderr = err.stderr.decode(errors="replace").strip() if err.stderr else ""
        raise IncusError(f"incus {args[0] if args else ''} failed: {stderr or err}") from err
    except sh.CommandNotFound as err:
        raise IncusError("incus CLI not found on PATH") from err


def is_not_found(err: IncusError) -> bool:
    """Whether *err* reports a missing Incus object."""
    return "not found" in str(err).lower()


def require_command(cmd: str) -> None:
    """Check if a command exists on the system PATH.

    Args:
        cmd: Name of the CLI command to check.

    Raises:
        RuntimeError: If the command is not found.
    """
    try:
        sh.which(cmd)
    except sh.ErrorReturnCode as err:
        raise RuntimeError(f"Required command '{cmd}' not found. Please install it first.") from err


def run_kubectl(args: list[str], kubeconfig: Path, timeout: int = 30) -> tuple[bool, str, str]:
    """Run a kubectl command via subprocess and return (success, stdout, stderr).

    Uses subprocess instead of sh because readiness checks need stdout and
    stderr kept apart.

    Args:
        args: kubectl arguments (e.g. ``["get", "nodes", "-o", "json"]``).
        kubeconfig: Kubeconfig file to use.
        timeout: Maximum seconds to wait for the command to complete.

    Returns:
        Tuple of (success, stdout, stderr).
    """
    try:
        result = subprocess.run(
            ["kubectl", "--kubeconfig", str(kubeconfig), *args],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        return result.returncode == 0, result.stdout, result.stderr
    except (subprocess.SubprocessError, OSError) as exc:
        return False, "", str(exc)


def read_key_pair(private_key_path: str | Path, public_key_path: str | Path) -> tuple[str, str]:
    """Read the SSH key pair handed to cloud-init and the remote commands.

    Relative paths resolve against the current directory, which is the
    project directory when Pulumi runs the program.

    Args:
        private_key_path: Path of the private key.
        public_key_path: Path of the public key.

    Returns:
        Tuple of (private_key, public_key) file contents.

    Raises:
        FileNotFoundError: If either file is missing.
    """
    private_key = Path(private_key_path).expanduser().read_text()
    public_key = Path(public_key_path).expanduser().read_text()
    return private_key, public_key
