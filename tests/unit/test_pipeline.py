"""Unit tests for stage ordering and pipeline failure handling."""

import subprocess

import pytest

from vpn_provisioner.errors import (
    InvalidClientNameError,
    PreconditionError,
    StorageAccessError,
    ToolInvocationError,
)
from vpn_provisioner.models import StepOutcome
from vpn_provisioner.network import NetworkConfigurator
from vpn_provisioner.pipeline import ProvisioningPipeline, Stage, order_stages

from ..conftest import make_settings


def noop():
    return StepOutcome.SKIPPED


class TestStageOrdering:
    """Test dependency ordering of stages."""

    def test_requirements_come_first(self):
        stages = [
            Stage("render", noop, ("copy",)),
            Stage("copy", noop, ("build",)),
            Stage("build", noop),
        ]
        assert [stage.name for stage in order_stages(stages)] == ["build", "copy", "render"]

    def test_declaration_order_kept_for_independent_stages(self):
        stages = [Stage("b", noop), Stage("a", noop), Stage("c", noop, ("a",))]
        assert [stage.name for stage in order_stages(stages)] == ["b", "a", "c"]

    def test_unknown_requirement(self):
        with pytest.raises(PreconditionError):
            order_stages([Stage("render", noop, ("missing",))])

    def test_cycle(self):
        with pytest.raises(PreconditionError):
            order_stages([Stage("a", noop, ("b",)), Stage("b", noop, ("a",))])

    def test_default_graph_is_consistent(self, pipeline):
        names = [stage.name for stage in order_stages(pipeline.stages())]

        assert names[:2] == ["ca.init", "ca.build"]
        assert names.index("clients.issue") < names.index("distribute.clients")
        assert names.index("server.auth_key") < names.index("distribute.shared")
        assert names.index("revocation.check") < names.index("distribute.clients")
        assert names.index("compose.clients") < names.index("export.clients")
        assert "network.setup" not in names


class TestPipelineRun:
    """Test run-level behavior."""

    def test_empty_roster_builds_server_side(self, pipeline, settings):
        report = pipeline.run()

        assert report.succeeded
        assert report.clients == []
        assert report.steps["ca.build"] is StepOutcome.CREATED
        assert (settings.openvpn_dir / "server.conf").exists()
        assert not settings.output_dir.exists()

    def test_invalid_client_is_isolated(self, temp_dir, fast_dh):
        pipeline = ProvisioningPipeline(make_settings(temp_dir, clients=["alice", "bad/name", "bob"]))
        report = pipeline.run()

        assert report.failed_clients == ["bad/name"]
        bad = report.client("bad/name")
        assert bad.steps == {"clients.issue": StepOutcome.FAILED}
        assert bad.error.startswith("clients.issue:")
        assert bad.bundle_path is None

        for name in ("alice", "bob"):
            assert report.client(name).steps["export.clients"] is StepOutcome.CREATED
            assert (temp_dir / "ovpn" / f"{name}.ovpn").exists()

    def test_late_client_failure_is_isolated(self, temp_dir, fast_dh, monkeypatch):
        pipeline = ProvisioningPipeline(make_settings(temp_dir, clients=["alice", "bob"]))
        render = pipeline.composer.render_client_bundle

        def flaky(name):
            if name == "bob":
                raise ToolInvocationError("template engine crashed")
            return render(name)

        monkeypatch.setattr(pipeline.composer, "render_client_bundle", flaky)
        report = pipeline.run()

        assert report.failed_clients == ["bob"]
        assert report.client("bob").steps["distribute.clients"] is StepOutcome.CREATED
        assert "export.clients" not in report.client("bob").steps
        assert (temp_dir / "ovpn" / "alice.ovpn").exists()
        assert not (temp_dir / "ovpn" / "bob.ovpn").exists()

    def test_single_shot_failure_aborts(self, temp_dir, fast_dh, monkeypatch):
        pipeline = ProvisioningPipeline(make_settings(temp_dir, clients=["alice"]))

        def fail():
            raise ToolInvocationError("openvpn --genkey failed")

        monkeypatch.setattr(pipeline.server, "generate_auth_key", fail)
        with pytest.raises(ToolInvocationError):
            pipeline.run()

        assert not (temp_dir / "openvpn" / "users").exists()
        assert not (temp_dir / "ovpn").exists()

    def test_storage_error_in_client_stage_aborts(self, temp_dir, fast_dh, monkeypatch):
        pipeline = ProvisioningPipeline(make_settings(temp_dir, clients=["alice", "bob"]))

        def denied(name):
            raise StorageAccessError("Permission denied")

        monkeypatch.setattr(pipeline.distributor, "distribute_client", denied)
        with pytest.raises(StorageAccessError):
            pipeline.run()

    def test_revoked_client_on_roster_is_not_rebundled(self, temp_dir, fast_dh):
        pipeline = ProvisioningPipeline(make_settings(temp_dir, clients=["alice", "bob"]))
        pipeline.run()
        pipeline.revoke_client("alice")
        (temp_dir / "ovpn" / "alice.ovpn").unlink()

        report = pipeline.run()

        alice = report.client("alice")
        assert report.failed_clients == ["alice"]
        assert alice.steps["revocation.check"] is StepOutcome.FAILED
        assert "revoked" in alice.error
        assert "export.clients" not in alice.steps
        assert not (temp_dir / "ovpn" / "alice.ovpn").exists()
        assert set(report.client("bob").steps.values()) == {StepOutcome.SKIPPED}

    def test_rerun_skips_everything(self, temp_dir, fast_dh):
        pipeline = ProvisioningPipeline(make_settings(temp_dir, clients=["alice"]))
        pipeline.run()

        report = pipeline.run()

        assert set(report.steps.values()) == {StepOutcome.SKIPPED}
        assert set(report.client("alice").steps.values()) == {StepOutcome.SKIPPED}
        assert len(fast_dh) == 1

    def test_parallel_clients(self, temp_dir, fast_dh):
        names = ["alice", "bob", "carol", "dave"]
        pipeline = ProvisioningPipeline(make_settings(temp_dir, clients=names, max_workers=4))
        report = pipeline.run()

        assert report.succeeded
        serials = {pipeline.clients.get_serial_number(name) for name in names}
        assert len(serials) == len(names)
        for name in names:
            assert report.client(name).bundle_path == str(temp_dir / "ovpn" / f"{name}.ovpn")

    def test_network_stage_runs_first(self, temp_dir, fast_dh):
        commands = []

        def runner(args):
            commands.append(list(args))
            return subprocess.CompletedProcess(args, 0, stdout="", stderr="")

        settings = make_settings(temp_dir, configure_network=True, nat_source="10.8.0.0/24")
        pipeline = ProvisioningPipeline(settings, network=NetworkConfigurator(runner))

        assert pipeline.stages()[0].name == "network.setup"
        report = pipeline.run()

        assert report.steps["network.setup"] is StepOutcome.SKIPPED
        assert commands[0][0] == "sysctl"
        assert "10.8.0.0/24" in commands[1]


class TestPipelineOperations:
    """Test revoke and status."""

    def test_status_of_fresh_store(self, pipeline):
        state = pipeline.status()

        assert state["pki_initialized"] is False
        assert state["authority_initialized"] is False
        assert state["clients"] == []

    def test_revoke_refreshes_server_crl(self, temp_dir, fast_dh):
        pipeline = ProvisioningPipeline(make_settings(temp_dir, clients=["alice", "bob"]))
        pipeline.run()
        crl_before = (temp_dir / "openvpn" / "server" / "crl.pem").read_bytes()

        pipeline.revoke_client("alice")

        assert (temp_dir / "openvpn" / "server" / "crl.pem").read_bytes() != crl_before
        assert pipeline.status()["revoked"] == ["alice"]

    def test_revoke_rejects_server_identity(self, built_pipeline):
        with pytest.raises(InvalidClientNameError):
            built_pipeline.revoke_client("server")
