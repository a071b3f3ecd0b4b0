"""Integration tests for the provisioning HTTP service."""

import pytest
from fastapi.testclient import TestClient

from vpn_crypto import X509Utils
from vpn_provisioner.errors import StorageAccessError
from vpn_provisioner.main import API_KEY_ENV, app, get_pipeline
from vpn_provisioner.pipeline import ProvisioningPipeline

from ..conftest import make_settings
from ..utils.test_helpers import extract_inline

API_KEY = "test-api-key"


@pytest.fixture
def api_pipeline(temp_dir, fast_dh, monkeypatch):
    monkeypatch.setenv(API_KEY_ENV, API_KEY)
    pipeline = ProvisioningPipeline(make_settings(temp_dir, clients=["alice", "bob"]))
    app.dependency_overrides[get_pipeline] = lambda: pipeline
    yield pipeline
    app.dependency_overrides.clear()


@pytest.fixture
def client(api_pipeline):
    return TestClient(app)


@pytest.fixture
def provisioned_client(client):
    response = client.post("/provision", headers={"X-API-Key": API_KEY})
    assert response.status_code == 200
    return client


class TestServiceStatus:
    """Test read-only endpoints on an empty store."""

    def test_root(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert response.json()["status"] == "operational"

    def test_health_before_provisioning(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["authority_initialized"] is False
        assert data["clients"] == 0

    def test_ca_certificate_not_initialized(self, client):
        assert client.get("/ca/certificate").status_code == 404

    def test_crl_not_generated(self, client):
        assert client.get("/crl").status_code == 404

    def test_storage_error_returns_error_body(self, client, api_pipeline, monkeypatch):
        def denied(path):
            raise StorageAccessError(f"Permission denied: {path}")

        monkeypatch.setattr(api_pipeline.store, "read_bytes", denied)
        response = client.get("/crl")

        assert response.status_code == 500
        assert response.json()["error"] == "StorageAccessError"
        assert "Permission denied" in response.json()["detail"]


class TestAuthentication:
    """Test API key enforcement on mutating endpoints."""

    def test_provision_requires_key(self, client):
        assert client.post("/provision").status_code == 401

    def test_provision_rejects_wrong_key(self, client):
        response = client.post("/provision", headers={"X-API-Key": "wrong"})
        assert response.status_code == 403

    def test_revoke_requires_key(self, provisioned_client):
        assert provisioned_client.post("/clients/alice/revoke").status_code == 401


class TestProvisioningEndpoints:
    """Test endpoints after a provisioning run."""

    def test_provision_report(self, client):
        response = client.post("/provision", headers={"X-API-Key": API_KEY})

        assert response.status_code == 200
        data = response.json()
        assert data["steps"]["ca.build"] == "created"
        assert [c["name"] for c in data["clients"]] == ["alice", "bob"]
        assert all(c["error"] is None for c in data["clients"])

    def test_health_after_provisioning(self, provisioned_client):
        data = provisioned_client.get("/health").json()

        assert data["authority_initialized"] is True
        assert data["server_identity"] is True
        assert data["clients"] == 2

    def test_list_clients(self, provisioned_client):
        response = provisioned_client.get("/clients")

        assert response.status_code == 200
        clients = response.json()
        assert [c["name"] for c in clients] == ["alice", "bob"]
        assert all(c["bundle_rendered"] and not c["revoked"] for c in clients)

    def test_get_client(self, provisioned_client, api_pipeline):
        response = provisioned_client.get("/clients/alice")

        assert response.status_code == 200
        assert response.json()["serial_number"] == str(api_pipeline.clients.get_serial_number("alice"))

    def test_get_unknown_client(self, provisioned_client):
        assert provisioned_client.get("/clients/carol").status_code == 404

    def test_get_invalid_client_name(self, provisioned_client):
        assert provisioned_client.get("/clients/-alice").status_code == 400

    def test_download_bundle(self, provisioned_client, api_pipeline):
        response = provisioned_client.get("/clients/alice/bundle")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("application/x-openvpn-profile")
        assert "filename=alice.ovpn" in response.headers["content-disposition"]
        store = api_pipeline.store
        assert extract_inline(response.text, "key") == store.read_text(store.key_path("alice")).strip()

    def test_download_revoked_bundle(self, provisioned_client):
        provisioned_client.post("/clients/alice/revoke", headers={"X-API-Key": API_KEY})

        assert provisioned_client.get("/clients/alice/bundle").status_code == 410
        assert provisioned_client.get("/clients/bob/bundle").status_code == 200

    def test_download_missing_bundle(self, provisioned_client):
        assert provisioned_client.get("/clients/carol/bundle").status_code == 404

    def test_ca_certificate(self, provisioned_client, api_pipeline):
        response = provisioned_client.get("/ca/certificate")

        assert response.status_code == 200
        cert = X509Utils.load_certificate(response.json()["certificate"].encode())
        assert cert == api_pipeline.ca_manager.get_ca_certificate()

    def test_revoke_client(self, provisioned_client, api_pipeline):
        response = provisioned_client.post("/clients/alice/revoke", headers={"X-API-Key": API_KEY})

        assert response.status_code == 200
        data = response.json()
        assert data["name"] == "alice"
        assert data["revoked_count"] == 1

        crl = X509Utils.load_crl(provisioned_client.get("/crl").content)
        assert crl.get_revoked_certificate_by_serial_number(int(data["serial_number"])) is not None
        assert provisioned_client.get("/clients/alice").json()["revoked"] is True
        assert provisioned_client.get("/clients/bob").json()["revoked"] is False

    def test_revoke_unknown_client(self, provisioned_client):
        response = provisioned_client.post("/clients/carol/revoke", headers={"X-API-Key": API_KEY})
        assert response.status_code == 404

    def test_revoke_server_identity_rejected(self, provisioned_client):
        response = provisioned_client.post("/clients/server/revoke", headers={"X-API-Key": API_KEY})
        assert response.status_code == 400
