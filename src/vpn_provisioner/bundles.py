"""Server configuration and per-client bundle rendering and export."""

import logging
from pathlib import Path
from typing import Mapping

from jinja2 import Environment, PackageLoader, StrictUndefined, TemplateError

from .distributor import copy_artifact
from .errors import BundleNotFoundError, ToolInvocationError
from .identity_store import IdentityStore, path_lock, read_bytes, should_create, write_atomic
from .models import StepOutcome
from .settings import ProvisioningSettings

logger = logging.getLogger(__name__)

SERVER_TEMPLATE = "server.conf.j2"
CLIENT_TEMPLATE = "client.ovpn.j2"
CLIENT_BUNDLE_NAME = "client.ovpn"
EXPORT_MODE = 0o600


class TemplateRenderer:
    """Renders packaged Jinja2 templates."""

    def __init__(self, environment: Environment = None):
        self.environment = environment or Environment(
            loader=PackageLoader("vpn_provisioner", "templates"),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def render(self, template_id: str, bindings: Mapping[str, object]) -> str:
        """
        Render a template with the given bindings.

        Raises:
            ToolInvocationError: If the template is missing or a binding is undefined
        """
        try:
            template = self.environment.get_template(template_id)
            return template.render(**bindings)
        except TemplateError as e:
            logger.error(f"Failed to render {template_id}: {e}")
            raise ToolInvocationError(f"Rendering {template_id} failed: {e}") from e


def write_if_changed(path: Path, content: str, mode: int) -> StepOutcome:
    data = content.encode("utf-8")
    with path_lock(path):
        if not should_create(path) and read_bytes(path) == data:
            return StepOutcome.SKIPPED
        write_atomic(path, data, mode)
        return StepOutcome.CREATED


class BundleComposer:
    """Renders server.conf and self-contained client bundles."""

    def __init__(self, store: IdentityStore, settings: ProvisioningSettings, renderer: TemplateRenderer = None):
        self.store = store
        self.settings = settings
        self.renderer = renderer or TemplateRenderer()

    @property
    def server_config_path(self) -> Path:
        return self.settings.openvpn_dir / "server.conf"

    def client_bundle_path(self, name: str) -> Path:
        return self.settings.users_dir / name / CLIENT_BUNDLE_NAME

    def server_bindings(self) -> dict:
        server_dir = self.settings.server_dir
        server = self.settings.server_common_name
        network = self.settings.network
        return {
            "ca_cert_path": str(server_dir / "ca.crt"),
            "server_cert_path": str(server_dir / f"{server}.crt"),
            "server_key_path": str(server_dir / f"{server}.key"),
            "dh_path": str(server_dir / "dh.pem"),
            "tls_auth_key_path": str(server_dir / "ta.key"),
            "crl_path": str(server_dir / "crl.pem"),
            "port": network.port,
            "proto": network.proto,
            "device": network.device,
            "server_network": network.server_network,
            "server_netmask": network.server_netmask,
            "dns_servers": network.dns_servers,
            "cipher": network.cipher,
            "redirect_gateway": network.redirect_gateway,
        }

    def render_server_config(self) -> StepOutcome:
        """Render server.conf referencing the distributed artifact paths."""
        content = self.renderer.render(SERVER_TEMPLATE, self.server_bindings())
        outcome = write_if_changed(self.server_config_path, content, 0o644)
        logger.info(f"Server config {outcome.value}: {self.server_config_path}")
        return outcome

    def client_bindings(self, name: str) -> dict:
        """
        Read back the material one client bundle embeds.

        Only the shared CA and TLS key plus this client's own pair are read.
        """
        network = self.settings.network
        return {
            "client_name": name,
            "remote_host": network.remote_host,
            "port": network.port,
            "proto": network.proto,
            "device": network.device,
            "cipher": network.cipher,
            "ca_cert": self.store.read_text(self.store.ca_cert_path),
            "tls_auth_key": self.store.read_text(self.store.tls_auth_key_path),
            "client_cert": self.store.read_text(self.store.cert_path(name)),
            "client_key": self.store.read_text(self.store.key_path(name)),
        }

    def render_client_bundle(self, name: str) -> StepOutcome:
        """Render users/<name>/client.ovpn with inlined key material."""
        content = self.renderer.render(CLIENT_TEMPLATE, self.client_bindings(name))
        path = self.client_bundle_path(name)
        outcome = write_if_changed(path, content, 0o640)
        logger.info(f"Client bundle {outcome.value}: {path}")
        return outcome


class BundleExporter:
    """Retrieves rendered client bundles to the operator's output directory."""

    def __init__(self, composer: BundleComposer, output_dir: Path, suffix: str = ".ovpn"):
        self.composer = composer
        self.output_dir = Path(output_dir)
        self.suffix = suffix

    def export_path(self, name: str) -> Path:
        return self.output_dir / f"{name}{self.suffix}"

    def export(self, name: str) -> StepOutcome:
        """
        Copy a client bundle to <output_dir>/<name><suffix>.

        Returns:
            CREATED if the exported file was written, SKIPPED if unchanged

        Raises:
            BundleNotFoundError: If the bundle has not been rendered
        """
        source = self.composer.client_bundle_path(name)
        if should_create(source):
            raise BundleNotFoundError(name, source)

        destination = self.export_path(name)
        outcome = copy_artifact(source, destination, EXPORT_MODE)
        logger.info(f"Exported bundle for {name}: {destination}")
        return outcome
