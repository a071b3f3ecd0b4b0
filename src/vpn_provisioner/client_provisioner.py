"""Client certificate issuance for the roster."""

import logging
from typing import Iterable, Union

from vpn_crypto import X509Utils, CertificateVerifier

from .ca_manager import CAManager
from .errors import InvalidClientNameError, ProvisioningError, ToolInvocationError
from .models import StepOutcome
from .settings import AUTHORITY_NAME, IDENTITY_NAME_PATTERN

logger = logging.getLogger(__name__)


class ClientProvisioner:
    """Issues and inspects per-client certificates."""

    def __init__(self, ca_manager: CAManager):
        """
        Initialize Client Provisioner.

        Args:
            ca_manager: CA Manager instance
        """
        self.ca_manager = ca_manager
        self.store = ca_manager.store
        self.settings = ca_manager.settings

    def validate_name(self, name: str) -> str:
        """
        Check that a roster entry can name a client identity.

        Raises:
            InvalidClientNameError: For empty, path-like, or reserved names
        """
        if not isinstance(name, str) or not IDENTITY_NAME_PATTERN.match(name):
            raise InvalidClientNameError(f"Invalid client name: {name!r}")
        if name in (AUTHORITY_NAME, self.settings.server_common_name):
            raise InvalidClientNameError(f"Client name is reserved: {name!r}")
        return name

    def issue_client_certificate(self, name: str) -> StepOutcome:
        """
        Issue a client certificate and key unless the client already has one.

        Args:
            name: Client name, used as the certificate common name

        Returns:
            CREATED or SKIPPED

        Raises:
            InvalidClientNameError: If the name is not usable
            PreconditionError: If the authority has not been built
            ToolInvocationError: If issuance fails
        """
        self.validate_name(name)
        self.ca_manager.get_ca_certificate()

        def generate():
            ca_key, ca_cert = self.ca_manager.require_authority()
            try:
                private_key, cert = X509Utils.create_client_certificate(
                    common_name=name,
                    ca_private_key=ca_key,
                    ca_cert=ca_cert,
                    organization=self.settings.organization,
                    country=self.settings.country,
                    validity_days=self.settings.cert_validity_days,
                    key_size=self.settings.key_size,
                )
            except Exception as e:
                logger.error(f"Failed to issue client certificate for {name}: {e}")
                raise ToolInvocationError(f"Client certificate issuance failed for {name}: {e}") from e
            return X509Utils.private_key_to_pem(private_key), X509Utils.certificate_to_pem(cert)

        return self.store.create_pair_if_absent(
            self.store.cert_path(name),
            self.store.key_path(name),
            generate,
        )

    def issue_roster(self, names: Iterable[str]) -> dict[str, Union[StepOutcome, ProvisioningError]]:
        """
        Issue certificates for every roster entry independently.

        A failure for one client is recorded and does not stop the others.

        Returns:
            Mapping of client name to outcome or the error raised
        """
        results = {}
        for name in names:
            try:
                results[name] = self.issue_client_certificate(name)
            except ProvisioningError as e:
                logger.error(f"Client {name} failed: {e}")
                results[name] = e
        return results

    def list_clients(self) -> list[str]:
        """
        List clients with issued certificates.

        Returns:
            Sorted client names
        """
        return [name for name in self.store.list_issued() if name != self.settings.server_common_name]

    def get_serial_number(self, name: str) -> int:
        cert = X509Utils.load_certificate(self.store.read_bytes(self.store.cert_path(name)))
        return cert.serial_number

    def get_client_info(self, name: str) -> dict:
        """
        Get information about a client's certificate.

        Raises:
            MissingExpectedArtifactError: If the client has no certificate
        """
        self.validate_name(name)
        cert = X509Utils.load_certificate(self.store.read_bytes(self.store.cert_path(name)))
        info = CertificateVerifier.get_certificate_info(cert)
        info["name"] = name
        return info
