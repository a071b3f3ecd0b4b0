"""X.509 certificate generation utilities for the VPN authority."""

from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional, Tuple
import logging

from cryptography import x509
from cryptography.x509.oid import NameOID, ExtendedKeyUsageOID
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import rsa

logger = logging.getLogger(__name__)


class X509Utils:
    """Utility class for X.509 certificate operations."""

    @staticmethod
    def generate_private_key(key_size: int = 2048) -> rsa.RSAPrivateKey:
        """
        Generate an RSA private key.

        Args:
            key_size: Size of the RSA key in bits (default: 2048)

        Returns:
            RSA private key object
        """
        logger.debug(f"Generating {key_size}-bit RSA private key")
        return rsa.generate_private_key(
            public_exponent=65537,
            key_size=key_size,
        )

    @staticmethod
    def _build_name(common_name: str, organization: Optional[str], country: Optional[str]) -> x509.Name:
        attributes = []
        if country:
            attributes.append(x509.NameAttribute(NameOID.COUNTRY_NAME, country))
        if organization:
            attributes.append(x509.NameAttribute(NameOID.ORGANIZATION_NAME, organization))
        attributes.append(x509.NameAttribute(NameOID.COMMON_NAME, common_name))
        return x509.Name(attributes)

    @staticmethod
    def create_root_ca(
        common_name: str,
        organization: Optional[str] = None,
        country: Optional[str] = None,
        validity_days: int = 3650,
        key_size: int = 4096
    ) -> Tuple[rsa.RSAPrivateKey, x509.Certificate]:
        """
        Create a self-signed root CA certificate.

        Args:
            common_name: Common name for the CA
            organization: Organization name
            country: Two-letter country code
            validity_days: Certificate validity period in days
            key_size: RSA key size of the CA key

        Returns:
            Tuple of (private_key, certificate)
        """
        logger.info(f"Creating root CA: {common_name}")

        private_key = X509Utils.generate_private_key(key_size)

        # Subject and issuer are the same for a self-signed root
        subject = issuer = X509Utils._build_name(common_name, organization, country)
        now = datetime.now(timezone.utc)

        cert = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(issuer)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=validity_days))
            .add_extension(
                x509.BasicConstraints(ca=True, path_length=None),
                critical=True,
            )
            .add_extension(
                x509.KeyUsage(
                    digital_signature=False,
                    key_cert_sign=True,
                    crl_sign=True,
                    key_encipherment=False,
                    content_commitment=False,
                    data_encipherment=False,
                    key_agreement=False,
                    encipher_only=False,
                    decipher_only=False,
                ),
                critical=True,
            )
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()),
                critical=False,
            )
            .sign(private_key, hashes.SHA256())
        )

        logger.info(f"Root CA created successfully: {common_name}")
        return private_key, cert

    @staticmethod
    def _issue_end_entity(
        common_name: str,
        usage: x509.ObjectIdentifier,
        ca_private_key: rsa.RSAPrivateKey,
        ca_cert: x509.Certificate,
        organization: Optional[str],
        country: Optional[str],
        validity_days: int,
        key_size: int,
        san_dns_names: Optional[list] = None
    ) -> Tuple[rsa.RSAPrivateKey, x509.Certificate]:
        private_key = X509Utils.generate_private_key(key_size)
        subject = X509Utils._build_name(common_name, organization, country)
        now = datetime.now(timezone.utc)

        key_usage = x509.KeyUsage(
            digital_signature=True,
            # TLS servers using RSA key exchange need key encipherment
            key_encipherment=usage == ExtendedKeyUsageOID.SERVER_AUTH,
            key_cert_sign=False,
            crl_sign=False,
            content_commitment=False,
            data_encipherment=False,
            key_agreement=False,
            encipher_only=False,
            decipher_only=False,
        )

        builder = (
            x509.CertificateBuilder()
            .subject_name(subject)
            .issuer_name(ca_cert.subject)
            .public_key(private_key.public_key())
            .serial_number(x509.random_serial_number())
            .not_valid_before(now)
            .not_valid_after(now + timedelta(days=validity_days))
            .add_extension(
                x509.BasicConstraints(ca=False, path_length=None),
                critical=True,
            )
            .add_extension(key_usage, critical=True)
            .add_extension(x509.ExtendedKeyUsage([usage]), critical=False)
            .add_extension(
                x509.SubjectKeyIdentifier.from_public_key(private_key.public_key()),
                critical=False,
            )
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_private_key.public_key()),
                critical=False,
            )
        )

        if san_dns_names:
            builder = builder.add_extension(
                x509.SubjectAlternativeName([x509.DNSName(name) for name in san_dns_names]),
                critical=False,
            )

        cert = builder.sign(ca_private_key, hashes.SHA256())
        return private_key, cert

    @staticmethod
    def create_server_certificate(
        common_name: str,
        ca_private_key: rsa.RSAPrivateKey,
        ca_cert: x509.Certificate,
        organization: Optional[str] = None,
        country: Optional[str] = None,
        validity_days: int = 825,
        key_size: int = 2048
    ) -> Tuple[rsa.RSAPrivateKey, x509.Certificate]:
        """
        Create a VPN server certificate signed by the CA.

        Returns:
            Tuple of (private_key, certificate)
        """
        logger.info(f"Creating server certificate for: {common_name}")
        private_key, cert = X509Utils._issue_end_entity(
            common_name,
            ExtendedKeyUsageOID.SERVER_AUTH,
            ca_private_key,
            ca_cert,
            organization,
            country,
            validity_days,
            key_size,
            san_dns_names=[common_name],
        )
        logger.info(f"Server certificate created: {common_name} (serial: {cert.serial_number})")
        return private_key, cert

    @staticmethod
    def create_client_certificate(
        common_name: str,
        ca_private_key: rsa.RSAPrivateKey,
        ca_cert: x509.Certificate,
        organization: Optional[str] = None,
        country: Optional[str] = None,
        validity_days: int = 825,
        key_size: int = 2048
    ) -> Tuple[rsa.RSAPrivateKey, x509.Certificate]:
        """
        Create a VPN client certificate signed by the CA.

        Returns:
            Tuple of (private_key, certificate)
        """
        logger.info(f"Creating client certificate for: {common_name}")
        private_key, cert = X509Utils._issue_end_entity(
            common_name,
            ExtendedKeyUsageOID.CLIENT_AUTH,
            ca_private_key,
            ca_cert,
            organization,
            country,
            validity_days,
            key_size,
        )
        logger.info(f"Client certificate created: {common_name} (serial: {cert.serial_number})")
        return private_key, cert

    @staticmethod
    def create_crl(
        ca_private_key: rsa.RSAPrivateKey,
        ca_cert: x509.Certificate,
        revoked: Iterable[Tuple[int, datetime]] = (),
        validity_days: int = 180
    ) -> x509.CertificateRevocationList:
        """
        Create a certificate revocation list signed by the CA.

        Args:
            ca_private_key: CA private key for signing
            ca_cert: CA certificate
            revoked: Pairs of (serial_number, revocation_date)
            validity_days: Days until the next update is due

        Returns:
            Signed CRL
        """
        now = datetime.now(timezone.utc)
        builder = (
            x509.CertificateRevocationListBuilder()
            .issuer_name(ca_cert.subject)
            .last_update(now)
            .next_update(now + timedelta(days=validity_days))
            .add_extension(
                x509.AuthorityKeyIdentifier.from_issuer_public_key(ca_private_key.public_key()),
                critical=False,
            )
        )

        count = 0
        for serial_number, revocation_date in revoked:
            entry = (
                x509.RevokedCertificateBuilder()
                .serial_number(serial_number)
                .revocation_date(revocation_date)
                .build()
            )
            builder = builder.add_revoked_certificate(entry)
            count += 1

        crl = builder.sign(ca_private_key, hashes.SHA256())
        logger.info(f"CRL created with {count} revoked certificate(s)")
        return crl

    @staticmethod
    def private_key_to_pem(private_key: rsa.RSAPrivateKey) -> bytes:
        """Serialize a private key as unencrypted PKCS8 PEM."""
        return private_key.private_bytes(
            encoding=serialization.Encoding.PEM,
            format=serialization.PrivateFormat.PKCS8,
            encryption_algorithm=serialization.NoEncryption()
        )

    @staticmethod
    def certificate_to_pem(cert: x509.Certificate) -> bytes:
        return cert.public_bytes(serialization.Encoding.PEM)

    @staticmethod
    def crl_to_pem(crl: x509.CertificateRevocationList) -> bytes:
        return crl.public_bytes(serialization.Encoding.PEM)

    @staticmethod
    def load_private_key(pem_data: bytes) -> rsa.RSAPrivateKey:
        """
        Load an unencrypted private key from PEM bytes.

        Args:
            pem_data: PEM-encoded private key

        Returns:
            RSA private key object
        """
        return serialization.load_pem_private_key(pem_data, password=None)

    @staticmethod
    def load_certificate(pem_data: bytes) -> x509.Certificate:
        return x509.load_pem_x509_certificate(pem_data)

    @staticmethod
    def load_crl(pem_data: bytes) -> x509.CertificateRevocationList:
        return x509.load_pem_x509_crl(pem_data)
