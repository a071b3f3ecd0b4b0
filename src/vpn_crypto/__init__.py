"""Cryptographic primitives for VPN PKI provisioning."""

from .x509_utils import X509Utils
from .key_material import KeyMaterial
from .verification import CertificateVerifier, CertificateVerificationError

__all__ = ['X509Utils', 'KeyMaterial', 'CertificateVerifier', 'CertificateVerificationError']
