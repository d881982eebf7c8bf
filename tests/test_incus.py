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

"""Tests for the Incus dynamic providers."""

import json
from unittest import mock

import pytest

from incus_kube.constants import INSTANCE_TYPE_CONTAINER
from incus_kube.incus import (
    InstanceProvider,
    NetworkProvider,
    StoragePoolProvider,
    instance_ipv4,
    wait_for_ipv4,
)
from incus_kube.utils import IncusError


def _state(*interfaces):
    """Build an instance state document from (name, family, scope, address) tuples."""
    network = {}
    for iface, family, scope, address in interfaces:
        network.setdefault(iface, {"addresses": []})["addresses"].append(
            {"family": family, "scope": scope, "address": address}
        )
    return json.dumps({"status": "Running", "network": network})


@pytest.fixture
def mock_incus():
    with mock.patch("incus_kube.incus.run_incus") as run:
        run.return_value = ""
        yield run


class TestStoragePoolProvider:
    def test_create(self, mock_incus):
        result = StoragePoolProvider().create({"name": "k8s-pool", "driver": "dir", "config": {}})

        mock_incus.assert_called_once_with("storage", "create", "k8s-pool", "dir")
        assert result.id == "k8s-pool"
        assert result.outs["driver"] == "dir"

    def test_create_passes_config(self, mock_incus):
        StoragePoolProvider().create({"name": "p", "driver": "zfs", "config": {"size": "20GiB"}})

        mock_incus.assert_called_once_with("storage", "create", "p", "zfs", "size=20GiB")

    def test_delete_tolerates_missing(self, mock_incus):
        mock_incus.side_effect = IncusError("incus storage failed: Error: Storage pool not found")

        StoragePoolProvider().delete("k8s-pool", {})

    def test_delete_propagates_other_errors(self, mock_incus):
        mock_incus.side_effect = IncusError("incus storage failed: Error: The storage pool is currently in use")

        with pytest.raises(IncusError, match="in use"):
            StoragePoolProvider().delete("k8s-pool", {})


class TestNetworkProvider:
    def test_create_sorts_config(self, mock_incus):
        props = {
            "name": "k8s-net",
            "type": "bridge",
            "config": {"ipv4.nat": "true", "ipv4.address": "10.10.10.1/24", "dns.mode": "dynamic"},
        }

        NetworkProvider().create(props)

        mock_incus.assert_called_once_with(
            "network", "create", "k8s-net", "--type=bridge",
            "dns.mode=dynamic", "ipv4.address=10.10.10.1/24", "ipv4.nat=true",
        )

    def test_diff_replaces_changed_inputs(self):
        olds = {"name": "k8s-net", "type": "bridge", "config": {"ipv4.nat": "true"}}
        news = {"name": "k8s-net", "type": "bridge", "config": {"ipv4.nat": "false"}}

        result = NetworkProvider().diff("k8s-net", olds, news)

        assert result.changes is True
        assert result.replaces == ["config"]
        assert result.delete_before_replace is True

    def test_diff_no_changes(self):
        props = {"name": "k8s-net", "type": "bridge", "config": {}}

        result = NetworkProvider().diff("k8s-net", props, dict(props))

        assert result.changes is False
        assert result.replaces == []

    def test_delete(self, mock_incus):
        NetworkProvider().delete("k8s-net", {})

        mock_incus.assert_called_once_with("network", "delete", "k8s-net")


class TestInstanceIpv4:
    def test_skips_loopback_and_link_local(self, mock_incus):
        mock_incus.return_value = _state(
            ("lo", "inet", "local", "127.0.0.1"),
            ("enp5s0", "inet6", "link", "fe80::1"),
            ("enp5s0", "inet", "global", "10.10.10.42"),
        )

        assert instance_ipv4("kube-master") == "10.10.10.42"
        mock_incus.assert_called_once_with("query", "/1.0/instances/kube-master/state")

    def test_no_address_yet(self, mock_incus):
        mock_incus.return_value = json.dumps({"status": "Running", "network": None})

        assert instance_ipv4("kube-master") is None


class TestWaitForIpv4:
    def test_polls_until_address(self):
        with mock.patch("incus_kube.incus.instance_ipv4", side_effect=[None, None, "10.10.10.11"]) as lookup:
            assert wait_for_ipv4("kube-worker-1", timeout=10, interval=0) == "10.10.10.11"

        assert lookup.call_count == 3

    def test_gives_up_after_timeout(self):
        with mock.patch("incus_kube.incus.instance_ipv4", return_value=None):
            with pytest.raises(IncusError, match="no IPv4 address"):
                wait_for_ipv4("kube-worker-1", timeout=0, interval=0)


class TestInstanceProvider:
    PROPS = {
        "name": "kube-worker-2",
        "image": "images:almalinux/9/cloud",
        "type": "virtual-machine",
        "ephemeral": False,
        "profiles": ["default"],
        "devices": [
            {"name": "agent", "type": "disk", "properties": {"source": "agent:config"}},
        ],
        "config": {"limits.cpu": "2", "limits.memory": "2GB"},
        "ipv4_wait_timeout": 120,
    }

    def test_create_runs_init_devices_start(self, mock_incus):
        with mock.patch("incus_kube.incus.wait_for_ipv4", return_value="10.10.10.12") as wait:
            result = InstanceProvider().create(dict(self.PROPS))

        assert mock_incus.call_args_list == [
            mock.call(
                "init", "images:almalinux/9/cloud", "kube-worker-2", "--vm",
                "--profile", "default",
                "-c", "limits.cpu=2", "-c", "limits.memory=2GB",
            ),
            mock.call("config", "device", "add", "kube-worker-2", "agent", "disk", "source=agent:config"),
            mock.call("start", "kube-worker-2"),
        ]
        wait.assert_called_once_with("kube-worker-2", 120)
        assert result.id == "kube-worker-2"
        assert result.outs["ipv4_address"] == "10.10.10.12"

    def test_create_container_without_profiles(self, mock_incus):
        props = {**self.PROPS, "type": INSTANCE_TYPE_CONTAINER, "ephemeral": True, "profiles": [], "devices": [], "config": {}}

        with mock.patch("incus_kube.incus.wait_for_ipv4", return_value="10.10.10.20"):
            InstanceProvider().create(props)

        assert mock_incus.call_args_list[0] == mock.call(
            "init", "images:almalinux/9/cloud", "kube-worker-2", "--ephemeral", "--no-profiles"
        )

    def test_create_deletes_instance_when_address_never_appears(self, mock_incus):
        timeout = IncusError("instance 'kube-worker-2' has no IPv4 address yet")
        with mock.patch("incus_kube.incus.wait_for_ipv4", side_effect=timeout):
            with pytest.raises(IncusError, match="no IPv4 address"):
                InstanceProvider().create(dict(self.PROPS))

        assert mock_incus.call_args_list[-1] == mock.call("delete", "--force", "kube-worker-2")

    def test_create_deletes_instance_when_start_fails(self, mock_incus):
        def incus(*args):
            if args[0] == "start":
                raise IncusError("incus start failed: Error: Failed to start device \"eth0\"")
            return ""

        mock_incus.side_effect = incus

        with pytest.raises(IncusError, match="incus start failed"):
            InstanceProvider().create(dict(self.PROPS))

        assert mock_incus.call_args_list[-1] == mock.call("delete", "--force", "kube-worker-2")

    def test_create_fails_when_init_fails(self, mock_incus):
        mock_incus.side_effect = IncusError("incus init failed: Error: Failed instance creation")

        with pytest.raises(IncusError):
            InstanceProvider().create(dict(self.PROPS))

        mock_incus.assert_called_once()

    def test_read_refreshes_address(self):
        with mock.patch("incus_kube.incus.instance_ipv4", return_value="10.10.10.99"):
            result = InstanceProvider().read("kube-worker-2", {**self.PROPS, "ipv4_address": "10.10.10.12"})

        assert result.id == "kube-worker-2"
        assert result.outs["ipv4_address"] == "10.10.10.99"

    def test_read_reports_missing_instance(self):
        not_found = IncusError("incus query failed: Error: Instance not found")
        with mock.patch("incus_kube.incus.instance_ipv4", side_effect=not_found):
            result = InstanceProvider().read("kube-worker-2", dict(self.PROPS))

        assert not result.id

    def test_diff_replaces_on_image_change(self):
        news = {**self.PROPS, "image": "images:almalinux/10/cloud"}

        result = InstanceProvider().diff("kube-worker-2", dict(self.PROPS), news)

        assert result.replaces == ["image"]

    def test_delete_forces(self, mock_incus):
        InstanceProvider().delete("kube-worker-2", {})

        mock_incus.assert_called_once_with("delete", "--force", "kube-worker-2")
