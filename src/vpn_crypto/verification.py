"""Certificate and CRL verification utilities."""

from datetime import datetime, timezone
import logging

from cryptography import x509
from cryptography.hazmat.primitives import hashes

logger = logging.getLogger(__name__)


class CertificateVerificationError(Exception):
    """Exception raised when certificate verification fails."""
    pass


class CertificateVerifier:
    """Utility class for verifying material issued by the VPN authority."""

    @staticmethod
    def verify_issued_by(cert: x509.Certificate, ca_cert: x509.Certificate) -> bool:
        """
        Verify that cert is signed by ca_cert.

        Args:
            cert: Certificate to verify
            ca_cert: Issuing CA certificate

        Returns:
            True if verification succeeds

        Raises:
            CertificateVerificationError: If the signature does not match
        """
        try:
            cert.verify_directly_issued_by(ca_cert)
        except (ValueError, TypeError) as e:
            raise CertificateVerificationError(
                f"Issuer mismatch: {cert.subject.rfc4514_string()} "
                f"not issued by {ca_cert.subject.rfc4514_string()}: {e}"
            )
        except Exception as e:
            raise CertificateVerificationError(
                f"Invalid signature: {cert.subject.rfc4514_string()} "
                f"not signed by {ca_cert.subject.rfc4514_string()}: {e}"
            )
        return True

    @staticmethod
    def verify_crl(crl: x509.CertificateRevocationList, ca_cert: x509.Certificate) -> bool:
        """
        Verify that a CRL is signed by the CA and names it as issuer.

        Raises:
            CertificateVerificationError: If the CRL does not belong to the CA
        """
        if crl.issuer != ca_cert.subject:
            raise CertificateVerificationError(
                f"CRL issuer {crl.issuer.rfc4514_string()} does not match CA "
                f"{ca_cert.subject.rfc4514_string()}"
            )

        if not crl.is_signature_valid(ca_cert.public_key()):
            raise CertificateVerificationError("CRL signature is not valid for CA key")

        logger.debug("CRL signature verified against CA")
        return True

    @staticmethod
    def is_within_validity(cert: x509.Certificate, at: datetime = None) -> bool:
        now = at or datetime.now(timezone.utc)
        return cert.not_valid_before_utc <= now <= cert.not_valid_after_utc

    @staticmethod
    def get_certificate_fingerprint(cert: x509.Certificate, algorithm: str = "sha256") -> str:
        """
        Get certificate fingerprint.

        Args:
            cert: Certificate
            algorithm: Hash algorithm (sha256, sha1)

        Returns:
            Hex-encoded fingerprint
        """
        if algorithm == "sha256":
            digest = cert.fingerprint(hashes.SHA256())
        elif algorithm == "sha1":
            digest = cert.fingerprint(hashes.SHA1())
        else:
            raise ValueError(f"Unsupported algorithm: {algorithm}")

        return digest.hex()

    @staticmethod
    def get_certificate_info(cert: x509.Certificate) -> dict:
        """Extract display information from a certificate."""
        common_name = cert.subject.get_attributes_for_oid(x509.oid.NameOID.COMMON_NAME)
        issuer_name = cert.issuer.get_attributes_for_oid(x509.oid.NameOID.COMMON_NAME)

        return {
            "common_name": common_name[0].value if common_name else None,
            "issuer": issuer_name[0].value if issuer_name else None,
            "subject": cert.subject.rfc4514_string(),
            "serial_number": str(cert.serial_number),
            "not_valid_before": cert.not_valid_before_utc.isoformat(),
            "not_valid_after": cert.not_valid_after_utc.isoformat(),
            "fingerprint_sha256": CertificateVerifier.get_certificate_fingerprint(cert),
            "valid": CertificateVerifier.is_within_validity(cert),
        }
