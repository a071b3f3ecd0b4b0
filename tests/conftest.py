"""Pytest configuration and shared fixtures for provisioning tests."""

import pytest
import tempfile
import shutil
from pathlib import Path
from typing import Generator

from vpn_crypto import KeyMaterial
from vpn_provisioner.pipeline import ProvisioningPipeline
from vpn_provisioner.settings import ProvisioningSettings


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test artifacts."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path, ignore_errors=True)


@pytest.fixture(scope="session")
def dh_params_pem() -> bytes:
    """Generate small DH parameters once per session."""
    return KeyMaterial.generate_dh_parameters(key_size=512)


@pytest.fixture
def fast_dh(monkeypatch, dh_params_pem):
    """Replace DH generation with the session parameters."""
    calls = []

    def generate(key_size=2048, generator=2):
        calls.append(key_size)
        return dh_params_pem

    monkeypatch.setattr(KeyMaterial, "generate_dh_parameters", staticmethod(generate))
    return calls


def make_settings(base: Path, clients=None, **overrides) -> ProvisioningSettings:
    """Build settings rooted in a temporary directory with small keys."""
    values = {
        "openvpn_dir": base / "openvpn",
        "output_dir": base / "ovpn",
        "clients": list(clients or []),
        "organization": "TestOrg",
        "country": "US",
        "ca_common_name": "Test VPN CA",
        "ca_key_size": 2048,
        "key_size": 2048,
        "dh_key_size": 512,
        "network": {"remote_host": "vpn.test.example"},
    }
    values.update(overrides)
    return ProvisioningSettings(**values)


@pytest.fixture
def settings(temp_dir: Path) -> ProvisioningSettings:
    """Provide settings with an empty roster."""
    return make_settings(temp_dir)


@pytest.fixture
def pipeline(settings, fast_dh) -> ProvisioningPipeline:
    """Provide a pipeline over a fresh identity store."""
    return ProvisioningPipeline(settings)


@pytest.fixture
def built_pipeline(pipeline) -> ProvisioningPipeline:
    """Provide a pipeline whose CA has been built."""
    pipeline.ca_manager.initialize_pki()
    pipeline.ca_manager.build_authority()
    return pipeline
