"""Filesystem-backed store for CA, server, and client key material.

The layout follows easy-rsa so an existing PKI directory can be adopted:

    pki/ca.crt              pki/private/ca.key
    pki/dh.pem              pki/ta.key
    pki/issued/<name>.crt   pki/private/<name>.key
    pki/crl.pem             pki/revoked.json

Every artifact is written once through ``create_if_absent`` and never
modified afterwards, except the CRL and revocation index which are replaced
atomically when a client is revoked.
"""

import errno
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Callable, Tuple

from .errors import MissingExpectedArtifactError, StorageAccessError
from .models import StepOutcome

logger = logging.getLogger(__name__)

PRIVATE_MODE = 0o600
PUBLIC_MODE = 0o644

_locks: dict[str, threading.Lock] = {}
_locks_guard = threading.Lock()


def path_lock(path: Path) -> threading.Lock:
    """Return the process-wide lock serializing writers of one path."""
    key = os.path.abspath(path)
    with _locks_guard:
        lock = _locks.get(key)
        if lock is None:
            lock = _locks[key] = threading.Lock()
        return lock


def should_create(path: Path) -> bool:
    """
    Decide whether an artifact needs to be generated.

    An existing file counts as a complete prior creation; its content is
    not inspected.

    Raises:
        StorageAccessError: If the path cannot be checked
    """
    try:
        os.stat(path)
    except (FileNotFoundError, NotADirectoryError):
        return True
    except OSError as e:
        raise StorageAccessError(f"Cannot check artifact {path}: {e}") from e
    return False


def write_atomic(path: Path, data: bytes, mode: int = PUBLIC_MODE) -> None:
    """
    Write data to path via a temporary file and rename.

    Readers observe either the previous content or the complete new
    content, never a partial write.

    Raises:
        StorageAccessError: If the file cannot be written
    """
    path = Path(path)
    tmp_name = None
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        with os.fdopen(fd, "wb") as f:
            os.fchmod(f.fileno(), mode)
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
        tmp_name = None
    except OSError as e:
        raise StorageAccessError(f"Cannot write {path}: {e}") from e
    finally:
        if tmp_name is not None:
            try:
                os.unlink(tmp_name)
            except OSError:
                logger.warning(f"Could not remove temporary file: {tmp_name}")


def read_bytes(path: Path) -> bytes:
    """
    Read an artifact that is expected to exist.

    Raises:
        MissingExpectedArtifactError: If the file is absent
        StorageAccessError: If the file cannot be read
    """
    try:
        return Path(path).read_bytes()
    except FileNotFoundError as e:
        raise MissingExpectedArtifactError(path) from e
    except OSError as e:
        if e.errno == errno.ENOTDIR:
            raise MissingExpectedArtifactError(path) from e
        raise StorageAccessError(f"Cannot read {path}: {e}") from e


class IdentityStore:
    """Repository of identity material keyed by identity name and kind."""

    def __init__(self, pki_dir: Path):
        """
        Initialize the identity store.

        Args:
            pki_dir: PKI working area (not created here)
        """
        self.pki_dir = Path(pki_dir)
        self.issued_dir = self.pki_dir / "issued"
        self.private_dir = self.pki_dir / "private"

    @property
    def ca_cert_path(self) -> Path:
        return self.pki_dir / "ca.crt"

    @property
    def ca_key_path(self) -> Path:
        return self.private_dir / "ca.key"

    @property
    def dh_params_path(self) -> Path:
        return self.pki_dir / "dh.pem"

    @property
    def tls_auth_key_path(self) -> Path:
        return self.pki_dir / "ta.key"

    @property
    def crl_path(self) -> Path:
        return self.pki_dir / "crl.pem"

    @property
    def revoked_index_path(self) -> Path:
        return self.pki_dir / "revoked.json"

    def cert_path(self, name: str) -> Path:
        return self.issued_dir / f"{name}.crt"

    def key_path(self, name: str) -> Path:
        return self.private_dir / f"{name}.key"

    def should_create(self, path: Path) -> bool:
        return should_create(path)

    def exists(self, path: Path) -> bool:
        return not should_create(path)

    def create_if_absent(
        self,
        path: Path,
        generator: Callable[[], bytes],
        mode: int = PUBLIC_MODE
    ) -> StepOutcome:
        """
        Generate and store an artifact unless it already exists.

        Args:
            path: Target artifact path
            generator: Produces the artifact content
            mode: File mode of the stored artifact

        Returns:
            CREATED if the generator ran, SKIPPED otherwise
        """
        with path_lock(path):
            if not should_create(path):
                logger.info(f"Artifact exists, skipping: {path}")
                return StepOutcome.SKIPPED

            data = generator()
            write_atomic(path, data, mode)
            logger.info(f"Artifact created: {path}")
            return StepOutcome.CREATED

    def create_pair_if_absent(
        self,
        cert_path: Path,
        key_path: Path,
        generator: Callable[[], Tuple[bytes, bytes]]
    ) -> StepOutcome:
        """
        Generate and store a key and certificate unless the certificate exists.

        The key is written first, so a stored certificate always has its key.

        Args:
            cert_path: Certificate path (the existence gate)
            key_path: Private key path
            generator: Produces (key_pem, cert_pem)

        Returns:
            CREATED if the generator ran, SKIPPED otherwise
        """
        with path_lock(cert_path):
            if not should_create(cert_path):
                logger.info(f"Certificate exists, skipping: {cert_path}")
                return StepOutcome.SKIPPED

            key_pem, cert_pem = generator()
            with path_lock(key_path):
                write_atomic(key_path, key_pem, PRIVATE_MODE)
            write_atomic(cert_path, cert_pem, PUBLIC_MODE)
            logger.info(f"Key pair created: {cert_path}")
            return StepOutcome.CREATED

    def replace(self, path: Path, data: bytes, mode: int = PUBLIC_MODE) -> None:
        """Atomically supersede a regenerable artifact such as the CRL."""
        with path_lock(path):
            write_atomic(path, data, mode)
            logger.info(f"Artifact replaced: {path}")

    def read_bytes(self, path: Path) -> bytes:
        return read_bytes(path)

    def read_text(self, path: Path) -> str:
        return read_bytes(path).decode("utf-8")

    def list_issued(self) -> list[str]:
        """
        List identity names with issued certificates.

        Returns:
            Sorted certificate names
        """
        if should_create(self.issued_dir):
            return []

        try:
            return sorted(p.stem for p in self.issued_dir.glob("*.crt") if p.is_file())
        except OSError as e:
            raise StorageAccessError(f"Cannot list {self.issued_dir}: {e}") from e
