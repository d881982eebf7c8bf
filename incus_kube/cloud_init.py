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

"""cloud-init user-data for each supported distribution."""

from __future__ import annotations

import yaml

from incus_kube import logger
from incus_kube.constants import (
    DEFAULT_SSH_USER,
    DISTRO_ALMA,
    DISTRO_ARCH,
    DISTRO_UBUNTU,
    SUPPORTED_DISTROS,
)

CLOUD_CONFIG_HEADER = "#cloud-config"

SUPPORTED_KEY_TYPES = (
    "ssh-ed25519",
    "ecdsa-sha2-nistp256",
    "ecdsa-sha2-nistp384",
    "ecdsa-sha2-nistp521",
    "rsa-sha2-256",
    "rsa-sha2-512",
    "ssh-rsa",
    "sk-ssh-ed25519@openssh.com",
    "sk-ecdsa-sha2-nistp256@openssh.com",
)

# pacman's keyring must be initialised before the first upgrade on Arch cloud images.
_RUNCMD = {
    DISTRO_ARCH: [
        "pacman-key --init",
        "pacman-key --populate",
        "pacman -Syu --noconfirm",
        "pacman -S --noconfirm openssh",
        "systemctl enable --now sshd",
    ],
    DISTRO_UBUNTU: [
        "apt-get update",
        "apt-get install -y openssh-server curl",
        "systemctl enable --now ssh",
    ],
    DISTRO_ALMA: [
        "yum install -y curl openssh-server",
        "systemctl enable --now sshd",
    ],
}


def validate_public_key(public_key: str) -> str:
    """Normalise an OpenSSH public key line.

    Args:
        public_key: Contents of a ``.pub`` file.

    Returns:
        The key with surrounding whitespace removed.

    Raises:
        ValueError: If the key is empty, spans several lines, or has an unknown type.
    """
    key = public_key.strip()
    if not key:
        raise ValueError("public key is empty")
    if "\n" in key:
        raise ValueError("public key must be a single line")
    key_type = key.split()[0]
    if key_type not in SUPPORTED_KEY_TYPES:
        raise ValueError(f"unsupported public key type '{key_type}'")
    if key_type == "ssh-rsa":
        logger.warning("ssh-rsa keys are rejected by AlmaLinux 9 sshd; prefer ssh-ed25519")
    return key


def _user_block(distro: str, user: str, public_key: str) -> list:
    """Build the ``users`` list for *distro*."""
    if distro == DISTRO_ALMA:
        # The admin group is wheel. passwd '*' disables password login
        # without locking the account for key authentication.
        return [
            "default",
            {
                "name": user,
                "groups": ["wheel"],
                "lock_passwd": False,
                "passwd": "*",
                "shell": "/bin/bash",
                "ssh_authorized_keys": [public_key],
            },
        ]
    return [
        {
            "name": user,
            "sudo": "ALL=(ALL) NOPASSWD:ALL",
            "groups": ["sudo", "admin"],
            "shell": "/bin/bash",
            "ssh_authorized_keys": [public_key],
        },
    ]


def cloud_config(distro: str, public_key: str, user: str = DEFAULT_SSH_USER) -> dict:
    """Build the cloud-config mapping for *distro*.

    Args:
        distro: One of ``arch``, ``ubuntu`` or ``alma``.
        public_key: OpenSSH public key authorised for *user*.
        user: Login user to create.

    Returns:
        The cloud-config document as a dictionary.

    Raises:
        ValueError: If the distro is unknown or the key is invalid.
    """
    if distro not in SUPPORTED_DISTROS:
        raise ValueError(f"unsupported distro '{distro}'")
    key = validate_public_key(public_key)
    return {
        "users": _user_block(distro, user, key),
        "runcmd": list(_RUNCMD[distro]),
    }


def render_cloud_init(distro: str, public_key: str, user: str = DEFAULT_SSH_USER) -> str:
    """Render the ``user.user-data`` document for *distro*."""
    body = yaml.safe_dump(cloud_config(distro, public_key, user), sort_keys=False, width=4096)
    return f"{CLOUD_CONFIG_HEADER}\n{body}"
