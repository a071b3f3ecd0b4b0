"""Certificate Authority management module."""

import logging

from cryptography import x509
from cryptography.hazmat.primitives.asymmetric import rsa

from vpn_crypto import X509Utils, CertificateVerifier

from .errors import PreconditionError, StorageAccessError, ToolInvocationError
from .identity_store import IdentityStore, should_create
from .models import StepOutcome
from .settings import ProvisioningSettings

logger = logging.getLogger(__name__)


class CAManager:
    """Creates and serves the single VPN certificate authority."""

    def __init__(self, store: IdentityStore, settings: ProvisioningSettings):
        """
        Initialize CA Manager.

        Args:
            store: Identity store holding the PKI working area
            settings: Provisioning settings (subject names, key sizes)
        """
        self.store = store
        self.settings = settings

        logger.info(f"CA Manager initialized with PKI path: {store.pki_dir}")

    def initialize_pki(self) -> StepOutcome:
        """
        Create the PKI working area once.

        Returns:
            CREATED on first run, SKIPPED afterwards
        """
        if not should_create(self.store.pki_dir):
            logger.info(f"PKI working area exists: {self.store.pki_dir}")
            return StepOutcome.SKIPPED

        try:
            self.store.pki_dir.mkdir(parents=True, exist_ok=True)
            self.store.issued_dir.mkdir(exist_ok=True)
            self.store.private_dir.mkdir(mode=0o700, exist_ok=True)
        except OSError as e:
            raise StorageAccessError(f"Cannot create PKI working area {self.store.pki_dir}: {e}") from e

        logger.info(f"PKI working area initialized: {self.store.pki_dir}")
        return StepOutcome.CREATED

    def is_pki_initialized(self) -> bool:
        return self.store.exists(self.store.pki_dir)

    def is_authority_built(self) -> bool:
        return self.store.exists(self.store.ca_cert_path)

    def build_authority(self) -> StepOutcome:
        """
        Build the root CA without passphrase protection.

        Returns:
            CREATED if a new CA was generated, SKIPPED if one exists

        Raises:
            PreconditionError: If initialize_pki() has not run
            ToolInvocationError: If key or certificate generation fails
        """
        if not self.is_pki_initialized():
            raise PreconditionError("PKI not initialized. Call initialize_pki() first.")

        def generate():
            try:
                private_key, cert = X509Utils.create_root_ca(
                    common_name=self.settings.ca_common_name,
                    organization=self.settings.organization,
                    country=self.settings.country,
                    validity_days=self.settings.ca_validity_days,
                    key_size=self.settings.ca_key_size,
                )
            except Exception as e:
                logger.error(f"Failed to build certificate authority: {e}")
                raise ToolInvocationError(f"CA generation failed: {e}") from e
            return X509Utils.private_key_to_pem(private_key), X509Utils.certificate_to_pem(cert)

        outcome = self.store.create_pair_if_absent(
            self.store.ca_cert_path,
            self.store.ca_key_path,
            generate,
        )
        if outcome is StepOutcome.CREATED:
            logger.info(f"Certificate authority built: {self.settings.ca_common_name}")
        return outcome

    def require_authority(self) -> tuple[rsa.RSAPrivateKey, x509.Certificate]:
        """
        Load the CA key and certificate for signing.

        Material is decoded on every call and not cached.

        Returns:
            Tuple of (private_key, certificate)

        Raises:
            PreconditionError: If the authority has not been built
        """
        if not self.is_authority_built():
            raise PreconditionError("Certificate authority not built. Call build_authority() first.")

        private_key = X509Utils.load_private_key(self.store.read_bytes(self.store.ca_key_path))
        cert = X509Utils.load_certificate(self.store.read_bytes(self.store.ca_cert_path))
        return private_key, cert

    def get_ca_certificate(self) -> x509.Certificate:
        """
        Load the CA certificate only.

        Raises:
            PreconditionError: If the authority has not been built
        """
        if not self.is_authority_built():
            raise PreconditionError("Certificate authority not built. Call build_authority() first.")
        return X509Utils.load_certificate(self.store.read_bytes(self.store.ca_cert_path))

    def get_ca_certificate_pem(self) -> str:
        return X509Utils.certificate_to_pem(self.get_ca_certificate()).decode()

    def get_authority_info(self) -> dict:
        """
        Get CA information.

        Returns:
            Dictionary with CA details
        """
        return CertificateVerifier.get_certificate_info(self.get_ca_certificate())
