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

"""Incus storage pools, networks and instances as Pulumi dynamic resources.

No Pulumi SDK for Incus is published for Python, so these providers drive the
``incus`` CLI directly. Pulumi still owns diffing, ordering and state; every
input change replaces the object because Incus names are unique per host.
"""

from __future__ import annotations

import json
from typing import Any

import pulumi
from pulumi.dynamic import CreateResult, DiffResult, ReadResult, Resource, ResourceProvider
from tenacity import retry, retry_if_exception_type, stop_after_delay, wait_fixed

from incus_kube import logger
from incus_kube.constants import (
    DEFAULT_IPV4_WAIT_TIMEOUT,
    INSTANCE_TYPE_VM,
    IPV4_POLL_INTERVAL_SECONDS,
)
from incus_kube.utils import IncusError, is_not_found, run_incus


def _key_values(config: dict[str, Any] | None) -> list[str]:
    """Render a config mapping as sorted ``key=value`` arguments."""
    return [f"{key}={value}" for key, value in sorted((config or {}).items())]


def _replace_on_change(keys: tuple[str, ...], olds: dict, news: dict) -> DiffResult:
    """Diff that replaces the object whenever one of *keys* changed."""
    replaces = [key for key in keys if olds.get(key) != news.get(key)]
    return DiffResult(
        changes=bool(replaces),
        replaces=replaces,
        stables=[],
        delete_before_replace=True,
    )


def _delete_ignoring_missing(*args: str) -> None:
    """Run an incus delete command, tolerating objects already gone."""
    try:
        run_incus(*args)
    except IncusError as err:
        if not is_not_found(err):
            raise
        logger.info("%s already absent: %s", args[-1], err)


# ============================================================================
# Storage pools
# ============================================================================

class StoragePoolProvider(ResourceProvider):
    """Creates and deletes ``incus storage`` pools."""

    INPUTS = ("name", "driver", "config")

    def create(self, props: dict[str, Any]) -> CreateResult:
        name = props["name"]
        run_incus("storage", "create", name, props["driver"], *_key_values(props.get("config")))
        logger.info("created storage pool %s", name)
        return CreateResult(id_=name, outs={key: props.get(key) for key in self.INPUTS})

    def diff(self, _id: str, olds: dict[str, Any], news: dict[str, Any]) -> DiffResult:
        return _replace_on_change(self.INPUTS, olds, news)

    def delete(self, _id: str, props: dict[str, Any]) -> None:
        _delete_ignoring_missing("storage", "delete", _id)


class StoragePool(Resource, module="incus", name="StoragePool"):
    """An Incus storage pool."""

    name: pulumi.Output[str]
    driver: pulumi.Output[str]
    config: pulumi.Output[dict]

    def __init__(
        self,
        resource_name: str,
        name: pulumi.Input[str],
        driver: pulumi.Input[str],
        config: pulumi.Input[dict] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ) -> None:
        props = {"name": name, "driver": driver, "config": config or {}}
        super().__init__(StoragePoolProvider(), resource_name, props, opts)


# ============================================================================
# Networks
# ============================================================================

class NetworkProvider(ResourceProvider):
    """Creates and deletes managed ``incus network`` objects."""

    INPUTS = ("name", "type", "config")

    def create(self, props: dict[str, Any]) -> CreateResult:
        name = props["name"]
        run_incus(
            "network", "create", name,
            f"--type={props['type']}",
            *_key_values(props.get("config")),
        )
        logger.info("created network %s", name)
        return CreateResult(id_=name, outs={key: props.get(key) for key in self.INPUTS})

    def diff(self, _id: str, olds: dict[str, Any], news: dict[str, Any]) -> DiffResult:
        return _replace_on_change(self.INPUTS, olds, news)

    def delete(self, _id: str, props: dict[str, Any]) -> None:
        _delete_ignoring_missing("network", "delete", _id)


class Network(Resource, module="incus", name="Network"):
    """A managed Incus network."""

    name: pulumi.Output[str]
    type: pulumi.Output[str]
    config: pulumi.Output[dict]

    def __init__(
        self,
        resource_name: str,
        name: pulumi.Input[str],
        type: pulumi.Input[str],
        config: pulumi.Input[dict] | None = None,
        opts: pulumi.ResourceOptions | None = None,
    ) -> None:
        props = {"name": name, "type": type, "config": config or {}}
        super().__init__(NetworkProvider(), resource_name, props, opts)


# ============================================================================
# Instances
# ============================================================================

def instance_ipv4(name: str) -> str | None:
    """Return the first global IPv4 address the instance reports, if any.

    Loopback is skipped. Interface names differ between containers and VMs
    (``eth0`` vs ``enp5s0``), so they are not matched by name.
    """
    state = json.loads(run_incus("query", f"/1.0/instances/{name}/state") or "{}")
    for iface, details in sorted((state.get("network") or {}).items()):
        if iface == "lo":
            continue
        for address in details.get("addresses") or []:
            if address.get("family") == "inet" and address.get("scope") == "global":
                return address["address"]
    return None


def wait_for_ipv4(
    name: str,
    timeout: int = DEFAULT_IPV4_WAIT_TIMEOUT,
    interval: float = IPV4_POLL_INTERVAL_SECONDS,
) -> str:
    """Poll until the instance has a global IPv4 address.

    Args:
        name: Incus instance name.
        timeout: Maximum seconds to wait.
        interval: Seconds between polls.

    Returns:
        The IPv4 address.

    Raises:
        IncusError: If no address appears before the timeout.
    """

    @retry(
        stop=stop_after_delay(timeout),
        wait=wait_fixed(interval),
        retry=retry_if_exception_type(IncusError),
        reraise=True,
    )
    def _poll() -> str:
        address = instance_ipv4(name)
        if not address:
            raise IncusError(f"instance '{name}' has no IPv4 address yet")
        return address

    return _poll()


class InstanceProvider(ResourceProvider):
    """Creates, starts and deletes ``incus`` instances."""

    INPUTS = ("name", "image", "type", "ephemeral", "profiles", "devices", "config")

    def create(self, props: dict[str, Any]) -> CreateResult:
        name = props["name"]
        args = ["init", props["image"], name]
        if props.get("type") == INSTANCE_TYPE_VM:
            args.append("--vm")
        if props.get("ephemeral"):
            args.append("--ephemeral")
        profiles = props.get("profiles")
        if profiles:
            for profile in profiles:
                args.extend(["--profile", profile])
        else:
            args.append("--no-profiles")
        for item in _key_values(props.get("config")):
            args.extend(["-c", item])
        run_incus(*args)

        # A failed create leaves no state behind, so the instance must not outlive it.
        try:
            for device in props.get("devices") or []:
                run_incus(
                    "config", "device", "add", name, device["name"], device["type"],
                    *_key_values(device.get("properties")),
                )

            run_incus("start", name)
            logger.info("started instance %s, waiting for an IPv4 address", name)
            address = wait_for_ipv4(name, int(props.get("ipv4_wait_timeout") or DEFAULT_IPV4_WAIT_TIMEOUT))
        except Exception:
            logger.warning("create of instance %s failed, deleting it", name)
            _delete_ignoring_missing("delete", "--force", name)
            raise

        outs = {key: props.get(key) for key in self.INPUTS}
        outs["ipv4_wait_timeout"] = props.get("ipv4_wait_timeout")
        outs["ipv4_address"] = address
        return CreateResult(id_=name, outs=outs)

    def diff(self, _id: str, olds: dict[str, Any], news: dict[str, Any]) -> DiffResult:
        return _replace_on_change(self.INPUTS, olds, news)

    def read(self, id_: str, props: dict[str, Any]) -> ReadResult:
        try:
            address = instance_ipv4(id_)
        except IncusError as err:
            if not is_not_found(err):
                raise
            return ReadResult(id_=None, outs={})
        return ReadResult(id_=id_, outs={**props, "ipv4_address": address or props.get("ipv4_address")})

    def delete(self, _id: str, props: dict[str, Any]) -> None:
        _delete_ignoring_missing("delete", "--force", _id)


class Instance(Resource, module="incus", name="Instance"):
    """An Incus container or virtual machine, started and addressed.

    ``devices`` is a list of ``{"name", "type", "properties"}`` mappings.
    """

    name: pulumi.Output[str]
    image: pulumi.Output[str]
    devices: pulumi.Output[list]
    config: pulumi.Output[dict]
    ipv4_address: pulumi.Output[str]

    def __init__(
        self,
        resource_name: str,
        name: pulumi.Input[str],
        image: pulumi.Input[str],
        type: pulumi.Input[str] = INSTANCE_TYPE_VM,
        ephemeral: pulumi.Input[bool] = False,
        profiles: pulumi.Input[list] | None = None,
        devices: pulumi.Input[list] | None = None,
        config: pulumi.Input[dict] | None = None,
        ipv4_wait_timeout: int = DEFAULT_IPV4_WAIT_TIMEOUT,
        opts: pulumi.ResourceOptions | None = None,
    ) -> None:
        props = {
            "name": name,
            "image": image,
            "type": type,
            "ephemeral": ephemeral,
            "profiles": ["default"] if profiles is None else profiles,
            "devices": devices or [],
            "config": config or {},
            "ipv4_wait_timeout": ipv4_wait_timeout,
            "ipv4_address": None,
        }
        super().__init__(InstanceProvider(), resource_name, props, opts)
