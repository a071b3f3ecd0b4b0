"""Certificate revocation list management."""

import json
import logging
from datetime import datetime, timezone

from vpn_crypto import X509Utils, CertificateVerifier

from .ca_manager import CAManager
from .errors import PreconditionError, StorageAccessError, ToolInvocationError
from .identity_store import PUBLIC_MODE, path_lock, write_atomic
from .models import StepOutcome

logger = logging.getLogger(__name__)


class RevocationManager:
    """Produces the CRL and records client revocations."""

    def __init__(self, ca_manager: CAManager):
        self.ca_manager = ca_manager
        self.store = ca_manager.store
        self.settings = ca_manager.settings

    def _load_index(self) -> list[dict]:
        if not self.store.exists(self.store.revoked_index_path):
            return []
        try:
            data = json.loads(self.store.read_text(self.store.revoked_index_path))
        except json.JSONDecodeError as e:
            raise StorageAccessError(f"Corrupt revocation index {self.store.revoked_index_path}: {e}") from e
        if not isinstance(data, dict) or not isinstance(data.get("revoked", []), list):
            raise StorageAccessError(f"Malformed revocation index {self.store.revoked_index_path}")
        return data.get("revoked", [])

    def revoked_serials(self) -> list[int]:
        """Serial numbers currently on the revocation list."""
        return [int(entry["serial_number"]) for entry in self._load_index()]

    def revoked_entries(self) -> list[dict]:
        return self._load_index()

    def _build_crl(self) -> bytes:
        ca_key, ca_cert = self.ca_manager.require_authority()
        revoked = [
            (int(entry["serial_number"]), datetime.fromisoformat(entry["revoked_at"]))
            for entry in self._load_index()
        ]
        try:
            crl = X509Utils.create_crl(
                ca_private_key=ca_key,
                ca_cert=ca_cert,
                revoked=revoked,
                validity_days=self.settings.crl_validity_days,
            )
        except Exception as e:
            logger.error(f"Failed to generate CRL: {e}")
            raise ToolInvocationError(f"CRL generation failed: {e}") from e
        return X509Utils.crl_to_pem(crl)

    def generate_crl(self) -> StepOutcome:
        """
        Generate crl.pem unless it already exists.

        Raises:
            PreconditionError: If the authority has not been built
        """
        self.ca_manager.get_ca_certificate()
        return self.store.create_if_absent(self.store.crl_path, self._build_crl)

    def regenerate_crl(self) -> None:
        """Sign a fresh CRL over the current revoked set and swap it in."""
        self.store.replace(self.store.crl_path, self._build_crl())

    def revoke_client(self, name: str) -> int:
        """
        Revoke a client's certificate and refresh the CRL.

        Revoking an already revoked certificate only refreshes the CRL.

        Args:
            name: Client name

        Returns:
            Serial number of the revoked certificate

        Raises:
            MissingExpectedArtifactError: If the client has no certificate
        """
        cert = X509Utils.load_certificate(self.store.read_bytes(self.store.cert_path(name)))
        serial_number = cert.serial_number

        with path_lock(self.store.revoked_index_path):
            entries = self._load_index()
            if any(int(entry["serial_number"]) == serial_number for entry in entries):
                logger.info(f"Client {name} already revoked (serial: {serial_number})")
            else:
                entries.append({
                    "name": name,
                    "serial_number": str(serial_number),
                    "revoked_at": datetime.now(timezone.utc).isoformat(),
                })
                data = json.dumps({"revoked": entries}, indent=2).encode()
                write_atomic(self.store.revoked_index_path, data, PUBLIC_MODE)
                logger.info(f"Client {name} revoked (serial: {serial_number})")

            self.regenerate_crl()

        return serial_number

    def is_revoked(self, name: str) -> bool:
        if not self.store.exists(self.store.cert_path(name)):
            return False
        cert = X509Utils.load_certificate(self.store.read_bytes(self.store.cert_path(name)))
        return cert.serial_number in self.revoked_serials()

    def check_active(self, name: str) -> StepOutcome:
        """
        Stop a revoked client from being distributed or bundled again.

        Raises:
            PreconditionError: If the client's certificate is revoked
        """
        if self.is_revoked(name):
            logger.warning(f"Client {name} is revoked but still on the roster")
            raise PreconditionError(f"Client {name} is revoked; remove it from the roster")
        return StepOutcome.SKIPPED

    def verify_crl(self) -> bool:
        """
        Verify crl.pem against the CA certificate.

        Raises:
            CertificateVerificationError: If the signature check fails
        """
        crl = X509Utils.load_crl(self.store.read_bytes(self.store.crl_path))
        return CertificateVerifier.verify_crl(crl, self.ca_manager.get_ca_certificate())
