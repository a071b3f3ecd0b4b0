"""Server identity provisioning: DH parameters, server certificate, TLS auth key."""

import logging

from vpn_crypto import KeyMaterial, X509Utils

from .ca_manager import CAManager
from .errors import MissingExpectedArtifactError, ToolInvocationError
from .models import StepOutcome

logger = logging.getLogger(__name__)


class ServerProvisioner:
    """Creates the server-side identity once the CA exists."""

    def __init__(self, ca_manager: CAManager):
        self.ca_manager = ca_manager
        self.store = ca_manager.store
        self.settings = ca_manager.settings

    @property
    def server_name(self) -> str:
        return self.settings.server_common_name

    def generate_dh_params(self) -> StepOutcome:
        """Generate Diffie-Hellman parameters into dh.pem."""
        self.ca_manager.get_ca_certificate()

        def generate():
            try:
                pem = KeyMaterial.generate_dh_parameters(self.settings.dh_key_size)
                KeyMaterial.load_dh_parameters(pem)
            except Exception as e:
                logger.error(f"Failed to generate DH parameters: {e}")
                raise ToolInvocationError(f"DH parameter generation failed: {e}") from e
            return pem

        return self.store.create_if_absent(self.store.dh_params_path, generate)

    def issue_server_certificate(self) -> StepOutcome:
        """
        Issue the server certificate and key signed by the CA.

        Raises:
            PreconditionError: If the authority has not been built
        """
        # Fail on a missing CA even when the certificate already exists
        self.ca_manager.get_ca_certificate()

        def generate():
            ca_key, ca_cert = self.ca_manager.require_authority()
            try:
                private_key, cert = X509Utils.create_server_certificate(
                    common_name=self.server_name,
                    ca_private_key=ca_key,
                    ca_cert=ca_cert,
                    organization=self.settings.organization,
                    country=self.settings.country,
                    validity_days=self.settings.cert_validity_days,
                    key_size=self.settings.key_size,
                )
            except Exception as e:
                logger.error(f"Failed to issue server certificate: {e}")
                raise ToolInvocationError(f"Server certificate issuance failed: {e}") from e
            return X509Utils.private_key_to_pem(private_key), X509Utils.certificate_to_pem(cert)

        return self.store.create_pair_if_absent(
            self.store.cert_path(self.server_name),
            self.store.key_path(self.server_name),
            generate,
        )

    def generate_auth_key(self) -> StepOutcome:
        """
        Generate the shared TLS auth key and confirm it is on disk.

        Raises:
            MissingExpectedArtifactError: If ta.key is absent after generation
            ToolInvocationError: If the generated key is malformed
        """
        self.ca_manager.get_ca_certificate()

        path = self.store.tls_auth_key_path

        def generate():
            key = KeyMaterial.generate_tls_auth_key()
            if not KeyMaterial.is_tls_auth_key(key):
                logger.error("Generated TLS auth key is malformed")
                raise ToolInvocationError("TLS auth key generation produced malformed output")
            return key

        outcome = self.store.create_if_absent(path, generate, mode=0o600)

        if not self.store.exists(path):
            logger.error(f"TLS auth key missing after generation: {path}")
            raise MissingExpectedArtifactError(path, f"TLS key (ta.key) is missing: {path}")

        return outcome

    def provision(self) -> dict[str, StepOutcome]:
        """
        Run all server identity steps in order.

        Returns:
            Outcome per step
        """
        logger.info(f"Provisioning server identity: {self.server_name}")
        return {
            "dh_params": self.generate_dh_params(),
            "server_certificate": self.issue_server_certificate(),
            "auth_key": self.generate_auth_key(),
        }
