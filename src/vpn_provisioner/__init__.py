"""VPN PKI provisioning and client bundle service."""

from .ca_manager import CAManager
from .client_provisioner import ClientProvisioner
from .identity_store import IdentityStore
from .pipeline import ProvisioningPipeline, Stage
from .settings import ProvisioningSettings, load_settings

__all__ = [
    'CAManager',
    'ClientProvisioner',
    'IdentityStore',
    'ProvisioningPipeline',
    'ProvisioningSettings',
    'Stage',
    'load_settings',
]
