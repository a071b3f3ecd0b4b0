"""Provisioning configuration."""

import json
import logging
import os
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

CONFIG_PATH_ENV = "VPN_PKI_CONFIG"

# Identity names become file names under issued/ and private/
IDENTITY_NAME_PATTERN = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._@-]{0,63}$")
AUTHORITY_NAME = "ca"


class NetworkSettings(BaseModel):
    """Parameters bound into server.conf and client bundles."""

    remote_host: str = Field(default="vpn.example.com", description="Address clients connect to")
    port: int = Field(default=1194, ge=1, le=65535)
    proto: str = Field(default="udp", pattern="^(udp|tcp)$")
    device: str = Field(default="tun")
    server_network: str = Field(default="10.8.0.0")
    server_netmask: str = Field(default="255.255.255.0")
    dns_servers: list[str] = Field(default_factory=lambda: ["1.1.1.1", "8.8.8.8"])
    cipher: str = Field(default="AES-256-GCM")
    redirect_gateway: bool = Field(default=True)


class ProvisioningSettings(BaseModel):
    """Settings for one provisioning deployment."""

    openvpn_dir: Path = Field(default=Path("/etc/openvpn"), description="OpenVPN configuration root")
    output_dir: Path = Field(default=Path("ovpn"), description="Where client bundles are exported")
    clients: list[str] = Field(default_factory=list, description="Client roster")

    organization: Optional[str] = Field(default=None)
    country: Optional[str] = Field(default=None, min_length=2, max_length=2)
    ca_common_name: str = Field(default="OpenVPN CA")
    server_common_name: str = Field(default="server")

    ca_key_size: int = Field(default=4096, ge=1024)
    key_size: int = Field(default=2048, ge=1024)
    dh_key_size: int = Field(default=2048, ge=512)
    ca_validity_days: int = Field(default=3650, ge=1)
    cert_validity_days: int = Field(default=825, ge=1)
    crl_validity_days: int = Field(default=180, ge=1)

    network: NetworkSettings = Field(default_factory=NetworkSettings)

    bundle_suffix: str = Field(default=".ovpn")
    max_workers: int = Field(default=1, ge=1)
    configure_network: bool = Field(default=False)
    nat_source: str = Field(default="0.0.0.0/0")

    @field_validator("server_common_name")
    @classmethod
    def server_name_usable(cls, value: str) -> str:
        if not IDENTITY_NAME_PATTERN.match(value):
            raise ValueError(f"Invalid server common name: {value!r}")
        if value == AUTHORITY_NAME:
            raise ValueError(f"Server common name collides with the CA: {value!r}")
        return value

    @field_validator("clients")
    @classmethod
    def clients_unique(cls, value: list[str]) -> list[str]:
        seen = set()
        duplicates = set()
        for name in value:
            if name in seen:
                duplicates.add(name)
            seen.add(name)
        if duplicates:
            raise ValueError(f"Duplicate client names in roster: {sorted(duplicates)}")
        return value

    @property
    def pki_dir(self) -> Path:
        return self.openvpn_dir / "easy-rsa" / "pki"

    @property
    def server_dir(self) -> Path:
        return self.openvpn_dir / "server"

    @property
    def users_dir(self) -> Path:
        return self.openvpn_dir / "users"


def load_settings(path: Optional[Path] = None) -> ProvisioningSettings:
    """
    Load settings from a JSON file.

    Args:
        path: Config file path; falls back to $VPN_PKI_CONFIG

    Returns:
        Parsed settings (defaults when no file is configured)
    """
    if path is None:
        env_path = os.environ.get(CONFIG_PATH_ENV)
        path = Path(env_path) if env_path else None

    if path is None:
        logger.info("No configuration file given, using defaults")
        return ProvisioningSettings()

    path = Path(path)
    logger.info(f"Loading configuration from: {path}")
    with open(path, "r") as f:
        data = json.load(f)

    return ProvisioningSettings(**data)
