"""Copies identity material into server-facing and user-facing directories."""

import logging
import os
from pathlib import Path

from .errors import StorageAccessError
from .identity_store import IdentityStore, path_lock, read_bytes, should_create, write_atomic
from .models import StepOutcome
from .settings import ProvisioningSettings

logger = logging.getLogger(__name__)

# Server directory is read by the local OpenVPN process
SERVER_MODE = 0o644
# User-facing material may be fetched off the box
USER_MODE = 0o640


def copy_artifact(source: Path, destination: Path, mode: int) -> StepOutcome:
    """
    Value-copy one artifact, leaving identical destinations untouched.

    Returns:
        CREATED if the destination was written, SKIPPED if already identical
    """
    data = read_bytes(source)

    with path_lock(destination):
        if not should_create(destination) and read_bytes(destination) == data:
            try:
                if (os.stat(destination).st_mode & 0o777) != mode:
                    os.chmod(destination, mode)
            except OSError as e:
                raise StorageAccessError(f"Cannot set mode on {destination}: {e}") from e
            return StepOutcome.SKIPPED

        write_atomic(destination, data, mode)
        logger.info(f"Copied {source.name} to {destination}")
        return StepOutcome.CREATED


def _combine(outcomes) -> StepOutcome:
    if any(outcome is StepOutcome.CREATED for outcome in outcomes):
        return StepOutcome.CREATED
    return StepOutcome.SKIPPED


class ArtifactDistributor:
    """Places copies of PKI material where each consumer expects it."""

    def __init__(self, store: IdentityStore, settings: ProvisioningSettings):
        self.store = store
        self.settings = settings

    def server_artifacts(self) -> list[Path]:
        server = self.settings.server_common_name
        return [
            self.store.ca_cert_path,
            self.store.dh_params_path,
            self.store.tls_auth_key_path,
            self.store.crl_path,
            self.store.key_path(server),
            self.store.cert_path(server),
        ]

    def distribute_server(self) -> StepOutcome:
        """Copy server material into <openvpn_dir>/server."""
        outcomes = [
            copy_artifact(source, self.settings.server_dir / source.name, SERVER_MODE)
            for source in self.server_artifacts()
        ]
        return _combine(outcomes)

    def distribute_shared(self) -> StepOutcome:
        """Copy the CA certificate and TLS key next to the config and into users/."""
        outcomes = []
        for source in (self.store.ca_cert_path, self.store.tls_auth_key_path):
            for directory in (self.settings.openvpn_dir, self.settings.users_dir):
                outcomes.append(copy_artifact(source, directory / source.name, USER_MODE))
        return _combine(outcomes)

    def distribute_client(self, name: str) -> StepOutcome:
        """Copy one client's certificate and key into users/."""
        users_dir = self.settings.users_dir
        outcomes = [
            copy_artifact(self.store.cert_path(name), users_dir / f"{name}.crt", USER_MODE),
            copy_artifact(self.store.key_path(name), users_dir / f"{name}.key", USER_MODE),
        ]
        return _combine(outcomes)
