"""Dependency-ordered provisioning pipeline.

Each stage names the stages it requires. Single-shot stages run once and
abort the run on failure. Per-client stages fan out over the roster; a
client that fails is reported and dropped from its remaining stages while
the other clients continue. Every per-client stage finishes for all
clients before the next stage starts.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable, Optional

from .bundles import BundleComposer, BundleExporter, TemplateRenderer
from .ca_manager import CAManager
from .client_provisioner import ClientProvisioner
from .distributor import ArtifactDistributor
from .errors import PreconditionError, ProvisioningError, StorageAccessError
from .identity_store import IdentityStore
from .models import ClientReport, ProvisioningReport, StepOutcome
from .network import NetworkConfigurator
from .revocation import RevocationManager
from .server_provisioner import ServerProvisioner
from .settings import ProvisioningSettings

logger = logging.getLogger(__name__)


@dataclass
class Stage:
    """One step of the provisioning graph."""

    name: str
    action: Callable[..., StepOutcome]
    requires: tuple[str, ...] = field(default_factory=tuple)
    per_client: bool = False


def order_stages(stages: Iterable[Stage]) -> list[Stage]:
    """
    Sort stages so every stage follows its requirements.

    Declaration order is kept where the graph allows.

    Raises:
        PreconditionError: On unknown requirements or cycles
    """
    stages = list(stages)
    by_name = {stage.name: stage for stage in stages}
    for stage in stages:
        unknown = [name for name in stage.requires if name not in by_name]
        if unknown:
            raise PreconditionError(f"Stage {stage.name} requires unknown stages: {unknown}")

    ordered = []
    placed = set()
    while len(ordered) < len(stages):
        ready = [
            stage for stage in stages
            if stage.name not in placed and all(name in placed for name in stage.requires)
        ]
        if not ready:
            pending = [stage.name for stage in stages if stage.name not in placed]
            raise PreconditionError(f"Stage dependency cycle among: {pending}")
        ordered.append(ready[0])
        placed.add(ready[0].name)
    return ordered


class ProvisioningPipeline:
    """Wires the provisioning components and runs them in dependency order."""

    def __init__(
        self,
        settings: ProvisioningSettings,
        renderer: Optional[TemplateRenderer] = None,
        network: Optional[NetworkConfigurator] = None
    ):
        self.settings = settings
        self.store = IdentityStore(settings.pki_dir)
        self.ca_manager = CAManager(self.store, settings)
        self.server = ServerProvisioner(self.ca_manager)
        self.clients = ClientProvisioner(self.ca_manager)
        self.revocation = RevocationManager(self.ca_manager)
        self.distributor = ArtifactDistributor(self.store, settings)
        self.composer = BundleComposer(self.store, settings, renderer)
        self.exporter = BundleExporter(self.composer, settings.output_dir, settings.bundle_suffix)
        self.network = network or NetworkConfigurator()

    def stages(self) -> list[Stage]:
        stages = [
            Stage("ca.init", self.ca_manager.initialize_pki),
            Stage("ca.build", self.ca_manager.build_authority, ("ca.init",)),
            Stage("server.dh_params", self.server.generate_dh_params, ("ca.build",)),
            Stage("server.certificate", self.server.issue_server_certificate, ("ca.build",)),
            Stage("server.auth_key", self.server.generate_auth_key, ("ca.build",)),
            Stage("revocation.crl", self.revocation.generate_crl, ("ca.build",)),
            Stage("clients.issue", self.clients.issue_client_certificate, ("ca.build",), per_client=True),
            Stage(
                "distribute.server",
                self.distributor.distribute_server,
                ("server.dh_params", "server.certificate", "server.auth_key", "revocation.crl"),
            ),
            Stage("distribute.shared", self.distributor.distribute_shared, ("ca.build", "server.auth_key")),
            Stage(
                "revocation.check",
                self.revocation.check_active,
                ("clients.issue", "revocation.crl"),
                per_client=True,
            ),
            Stage(
                "distribute.clients",
                self.distributor.distribute_client,
                ("clients.issue", "revocation.check"),
                per_client=True,
            ),
            Stage("compose.server", self.composer.render_server_config, ("distribute.server",)),
            Stage(
                "compose.clients",
                self.composer.render_client_bundle,
                ("distribute.shared", "distribute.clients"),
                per_client=True,
            ),
            Stage("export.clients", self.exporter.export, ("compose.clients",), per_client=True),
        ]

        if self.settings.configure_network:
            stages.insert(0, Stage("network.setup", lambda: self.network.configure(self.settings.nat_source)))

        return stages

    def run(self, roster: Optional[Iterable[str]] = None) -> ProvisioningReport:
        """
        Run every stage for the roster.

        Args:
            roster: Client names; defaults to the configured roster

        Returns:
            Report with single-shot outcomes and one entry per client

        Raises:
            ProvisioningError: If a single-shot stage fails
        """
        names = list(self.settings.clients if roster is None else roster)
        report = ProvisioningReport(clients=[ClientReport(name=name) for name in names])
        completed = set()

        logger.info(f"Starting provisioning run for {len(names)} client(s)")

        for stage in order_stages(self.stages()):
            missing = [name for name in stage.requires if name not in completed]
            if missing:
                raise PreconditionError(f"Stage {stage.name} cannot run before {missing}")

            if stage.per_client:
                self._run_per_client(stage, report.clients)
            else:
                try:
                    outcome = stage.action()
                except ProvisioningError as e:
                    logger.error(f"Stage {stage.name} failed, aborting run: {e}")
                    raise
                report.steps[stage.name] = outcome
                logger.info(f"Stage {stage.name}: {outcome.value}")

            completed.add(stage.name)

        for client in report.clients:
            if not client.failed:
                client.bundle_path = str(self.exporter.export_path(client.name))

        report.finished_at = datetime.now(timezone.utc)
        if report.failed_clients:
            logger.warning(f"Provisioning finished with failed clients: {report.failed_clients}")
        else:
            logger.info("Provisioning finished successfully")
        return report

    def _run_per_client(self, stage: Stage, clients: list[ClientReport]) -> None:
        active = [client for client in clients if not client.failed]
        if not active:
            return

        def run_one(client: ClientReport) -> None:
            try:
                client.steps[stage.name] = stage.action(client.name)
            except StorageAccessError:
                raise
            except ProvisioningError as e:
                logger.error(f"Stage {stage.name} failed for client {client.name}: {e}")
                client.steps[stage.name] = StepOutcome.FAILED
                client.error = f"{stage.name}: {e}"

        if self.settings.max_workers > 1 and len(active) > 1:
            with ThreadPoolExecutor(max_workers=self.settings.max_workers) as executor:
                # list() re-raises the first worker exception
                list(executor.map(run_one, active))
        else:
            for client in active:
                run_one(client)

    def revoke_client(self, name: str) -> int:
        """
        Revoke a client and push the refreshed CRL to the server directory.

        Returns:
            Serial number of the revoked certificate
        """
        self.clients.validate_name(name)
        serial_number = self.revocation.revoke_client(name)
        self.distributor.distribute_server()
        return serial_number

    def status(self) -> dict:
        """Summarize what exists in the identity store."""
        authority = self.ca_manager.is_pki_initialized() and self.ca_manager.is_authority_built()
        server_name = self.settings.server_common_name
        return {
            "pki_initialized": self.ca_manager.is_pki_initialized(),
            "authority_initialized": authority,
            "server_identity": self.store.exists(self.store.cert_path(server_name)),
            "auth_key": self.store.exists(self.store.tls_auth_key_path),
            "crl": self.store.exists(self.store.crl_path),
            "clients": self.clients.list_clients(),
            "revoked": [entry["name"] for entry in self.revocation.revoked_entries()],
        }
