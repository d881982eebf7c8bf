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

"""Tests for orchestrator module."""

from pathlib import Path
from unittest import mock

import json

import pytest
from pulumi import automation as auto

from incus_kube.config import LabConfig, NodeConfig, load_lab_config
from incus_kube.orchestrator import (
    check_prerequisites,
    generate_key_pair,
    plain_outputs,
    project_dir,
    resolve_project_path,
    run_destroy,
    run_preview,
    run_up,
    select_stack,
    stack_lab_config,
    stack_outputs,
    stack_state,
)


def _lab(key_pair, manage_firewall=True) -> LabConfig:
    private_path, public_path = key_pair
    return load_lab_config({
        "network": {"manage_firewall": manage_firewall},
        "nodes": {"private_key_path": str(private_path), "public_key_path": str(public_path)},
    })


def _lab_entry(lab: dict) -> dict:
    """Stack config as returned by ``Stack.get_all_config`` for an ``incus-kube:lab`` object."""
    return {"incus-kube:lab": auto.ConfigValue(json.dumps(lab))}


class TestProjectDir:
    def test_defaults_to_cwd(self, tmp_path, monkeypatch):
        monkeypatch.chdir(tmp_path)

        assert project_dir() == tmp_path.resolve()
        assert resolve_project_path("pulumi_key") == tmp_path.resolve() / "pulumi_key"

    def test_env_override(self, tmp_path, monkeypatch):
        monkeypatch.setenv("INCUS_KUBE_PROJECT_DIR", str(tmp_path))

        assert resolve_project_path("keys/id") == tmp_path.resolve() / "keys" / "id"

    def test_absolute_paths_kept(self, tmp_path):
        assert resolve_project_path(tmp_path / "key") == tmp_path / "key"


class TestSelectStack:
    def test_requires_project_file(self, tmp_path, monkeypatch):
        monkeypatch.setenv("INCUS_KUBE_PROJECT_DIR", str(tmp_path))

        with mock.patch("incus_kube.orchestrator.auto.create_or_select_stack") as create:
            with pytest.raises(RuntimeError, match="No Pulumi.yaml"):
                select_stack("dev")

        create.assert_not_called()

    def test_uses_project_dir(self, tmp_path, monkeypatch):
        (tmp_path / "Pulumi.yaml").write_text("name: incus-kube\nruntime: python\n")
        monkeypatch.setenv("INCUS_KUBE_PROJECT_DIR", str(tmp_path))

        with mock.patch("incus_kube.orchestrator.auto.create_or_select_stack") as create:
            select_stack("lab")

        create.assert_called_once_with(stack_name="lab", work_dir=str(tmp_path.resolve()))


class TestStackLabConfig:
    def test_applies_lab_object(self):
        stack = mock.MagicMock()
        stack.get_all_config.return_value = _lab_entry({"workload": {"namespace": "web", "replicas": 5}})

        cfg = stack_lab_config(stack)

        assert cfg.workload.namespace == "web"
        assert cfg.workload.replicas == 5
        assert cfg.network.network_name == "k8s-net"

    def test_env_only_without_lab_object(self, monkeypatch):
        monkeypatch.setenv("INCUS_KUBE_WORKLOAD_NAMESPACE", "from-env")
        stack = mock.MagicMock()
        stack.get_all_config.return_value = {}

        assert stack_lab_config(stack).workload.namespace == "from-env"

    def test_rejects_non_object(self):
        stack = mock.MagicMock()
        stack.get_all_config.return_value = {"incus-kube:lab": auto.ConfigValue("[1, 2]")}

        with pytest.raises(RuntimeError, match="must be an object"):
            stack_lab_config(stack)


class TestCheckPrerequisites:
    def test_requires_ufw_when_managing_firewall(self, key_pair):
        with mock.patch("incus_kube.orchestrator.require_command") as require:
            check_prerequisites(_lab(key_pair))

        assert [c.args[0] for c in require.call_args_list] == ["pulumi", "incus", "sudo", "ufw"]

    def test_skips_ufw_otherwise(self, key_pair):
        with mock.patch("incus_kube.orchestrator.require_command") as require:
            check_prerequisites(_lab(key_pair, manage_firewall=False))

        assert [c.args[0] for c in require.call_args_list] == ["pulumi", "incus"]

    def test_missing_key(self, key_pair):
        key_pair[0].unlink()

        with mock.patch("incus_kube.orchestrator.require_command"):
            with pytest.raises(RuntimeError, match="keys generate"):
                check_prerequisites(_lab(key_pair))


def test_plain_outputs_masks_secrets():
    outputs = {
        "masterIp": auto.OutputValue("10.10.10.10", False),
        "kubeconfig": auto.OutputValue("apiVersion: v1", True),
    }

    assert plain_outputs(outputs) == {"masterIp": "10.10.10.10", "kubeconfig": "[secret]"}
    assert plain_outputs(outputs, show_secrets=True)["kubeconfig"] == "apiVersion: v1"


class TestStackWorkflows:
    @pytest.fixture
    def stack(self):
        with mock.patch("incus_kube.orchestrator.select_stack") as select:
            stack = select.return_value
            stack.get_all_config.return_value = {}
            yield stack

    def test_run_up(self, stack):
        stack.up.return_value.outputs = {"masterIp": auto.OutputValue("10.10.10.10", False)}
        stack.up.return_value.summary.resource_changes = {"create": 14}

        with mock.patch("incus_kube.orchestrator.check_prerequisites"):
            outputs = run_up("dev", refresh=True)

        stack.refresh.assert_called_once()
        stack.up.assert_called_once()
        assert outputs == {"masterIp": "10.10.10.10"}

    def test_run_up_checks_keys_from_lab_object(self, stack, key_pair):
        private_path, public_path = key_pair
        stack.get_all_config.return_value = _lab_entry({
            "nodes": {"private_key_path": str(private_path), "public_key_path": str(public_path)},
        })
        stack.up.return_value.outputs = {}

        with mock.patch("incus_kube.orchestrator.require_command"):
            run_up("dev")

        stack.up.assert_called_once()

    def test_run_up_stops_on_missing_prerequisites(self, stack):
        with mock.patch("incus_kube.orchestrator.check_prerequisites", side_effect=RuntimeError("no incus")):
            with pytest.raises(RuntimeError, match="no incus"):
                run_up("dev")

        stack.up.assert_not_called()

    def test_run_preview_refresh(self, stack):
        stack.preview.return_value.change_summary = {auto.OpType.CREATE: 14}

        summary = run_preview("dev", refresh=True)

        assert stack.preview.call_args.kwargs["refresh"] is True
        assert summary == {"create": 14}

    def test_run_destroy_removes_stack(self, stack):
        run_destroy("dev", remove_stack=True)

        stack.destroy.assert_called_once()
        stack.workspace.remove_stack.assert_called_once_with("dev")

    def test_run_destroy_keeps_stack(self, stack):
        run_destroy("dev")

        stack.workspace.remove_stack.assert_not_called()

    def test_stack_outputs(self, stack):
        stack.outputs.return_value = {"nodeCount": auto.OutputValue(3, False)}

        assert stack_outputs("dev") == {"nodeCount": 3}

    def test_stack_state_unmasks_and_resolves_config(self, stack):
        stack.outputs.return_value = {"kubeconfig": auto.OutputValue("apiVersion: v1", True)}
        stack.get_all_config.return_value = _lab_entry({"workload": {"namespace": "web"}})

        outputs, cfg = stack_state("dev")

        assert outputs == {"kubeconfig": "apiVersion: v1"}
        assert cfg.workload.namespace == "web"


class TestGenerateKeyPair:
    @staticmethod
    def _fake_keygen(*args):
        private_path = Path(args[args.index("-f") + 1])
        private_path.write_text("private")
        private_path.with_name(private_path.name + ".pub").write_text("ssh-ed25519 AAAA pulumi")

    def test_generates_pair(self, tmp_path):
        cfg = NodeConfig(private_key_path=str(tmp_path / "id"), public_key_path=str(tmp_path / "id.pub"))

        with mock.patch("incus_kube.orchestrator.sh") as fake_sh:
            fake_sh.Command.return_value.side_effect = self._fake_keygen
            path = generate_key_pair(cfg)

        fake_sh.Command.assert_called_once_with("ssh-keygen")
        args = fake_sh.Command.return_value.call_args[0]
        assert args[:4] == ("-q", "-t", "ed25519", "-N")
        assert path == tmp_path / "id"
        assert path.stat().st_mode & 0o777 == 0o600

    def test_moves_public_key(self, tmp_path):
        cfg = NodeConfig(private_key_path=str(tmp_path / "id"), public_key_path=str(tmp_path / "keys.pub"))

        with mock.patch("incus_kube.orchestrator.sh") as fake_sh:
            fake_sh.Command.return_value.side_effect = self._fake_keygen
            generate_key_pair(cfg)

        assert (tmp_path / "keys.pub").read_text().startswith("ssh-ed25519")
        assert not (tmp_path / "id.pub").exists()

    def test_keeps_existing_without_force(self, key_pair):
        private_path, public_path = key_pair
        cfg = NodeConfig(private_key_path=str(private_path), public_key_path=str(public_path))

        with mock.patch("incus_kube.orchestrator.sh") as fake_sh:
            generate_key_pair(cfg)

        fake_sh.Command.assert_not_called()
