"""Diffie-Hellman parameters and OpenVPN static keys."""

import logging
import secrets

from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import dh

logger = logging.getLogger(__name__)

STATIC_KEY_BEGIN = "-----BEGIN OpenVPN Static key V1-----"
STATIC_KEY_END = "-----END OpenVPN Static key V1-----"

# OpenVPN static keys are 2048 bits written as 16 lines of 16 hex-encoded bytes
STATIC_KEY_BYTES = 256
STATIC_KEY_LINE_BYTES = 16


class KeyMaterial:
    """Generates non-certificate key material used by the VPN server."""

    @staticmethod
    def generate_dh_parameters(key_size: int = 2048, generator: int = 2) -> bytes:
        """
        Generate Diffie-Hellman parameters.

        This is slow for production key sizes (minutes for 2048 bits).

        Args:
            key_size: Prime size in bits
            generator: DH generator (2 or 5)

        Returns:
            PKCS#3 PEM-encoded parameters
        """
        logger.info(f"Generating {key_size}-bit Diffie-Hellman parameters")
        parameters = dh.generate_parameters(generator=generator, key_size=key_size)
        return parameters.parameter_bytes(
            serialization.Encoding.PEM,
            serialization.ParameterFormat.PKCS3
        )

    @staticmethod
    def load_dh_parameters(pem_data: bytes) -> dh.DHParameters:
        return serialization.load_pem_parameters(pem_data)

    @staticmethod
    def generate_tls_auth_key() -> bytes:
        """
        Generate an OpenVPN static key for tls-auth/tls-crypt.

        Returns:
            Key file content in OpenVPN "Static key V1" format
        """
        raw = secrets.token_bytes(STATIC_KEY_BYTES)
        lines = [
            raw[i:i + STATIC_KEY_LINE_BYTES].hex()
            for i in range(0, STATIC_KEY_BYTES, STATIC_KEY_LINE_BYTES)
        ]
        body = "\n".join(lines)
        content = (
            "#\n"
            f"# {STATIC_KEY_BYTES * 8} bit OpenVPN static key\n"
            "#\n"
            f"{STATIC_KEY_BEGIN}\n"
            f"{body}\n"
            f"{STATIC_KEY_END}\n"
        )
        return content.encode("ascii")

    @staticmethod
    def is_tls_auth_key(data: bytes) -> bool:
        """Check that data looks like a complete OpenVPN static key."""
        try:
            text = data.decode("ascii")
        except UnicodeDecodeError:
            return False

        if STATIC_KEY_BEGIN not in text or STATIC_KEY_END not in text:
            return False

        body = text.split(STATIC_KEY_BEGIN, 1)[1].split(STATIC_KEY_END, 1)[0]
        hex_digits = "".join(body.split())
        if len(hex_digits) != STATIC_KEY_BYTES * 2:
            return False
        try:
            bytes.fromhex(hex_digits)
        except ValueError:
            return False
        return True
