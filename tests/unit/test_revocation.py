"""Unit tests for the revocation manager."""

import json
import threading

import pytest

from vpn_crypto import X509Utils, CertificateVerificationError
from vpn_provisioner.errors import MissingExpectedArtifactError, PreconditionError, StorageAccessError
from vpn_provisioner.models import StepOutcome


class TestCRLGeneration:
    """Test CRL creation."""

    def test_crl_requires_authority(self, pipeline):
        pipeline.ca_manager.initialize_pki()
        with pytest.raises(PreconditionError):
            pipeline.revocation.generate_crl()

    def test_empty_crl_validates(self, built_pipeline):
        assert built_pipeline.revocation.generate_crl() is StepOutcome.CREATED
        assert built_pipeline.revocation.verify_crl() is True

        crl = X509Utils.load_crl(built_pipeline.store.read_bytes(built_pipeline.store.crl_path))
        assert len(crl) == 0
        assert built_pipeline.revocation.revoked_serials() == []

    def test_crl_is_idempotent(self, built_pipeline):
        built_pipeline.revocation.generate_crl()
        before = built_pipeline.store.read_bytes(built_pipeline.store.crl_path)

        assert built_pipeline.revocation.generate_crl() is StepOutcome.SKIPPED
        assert built_pipeline.store.read_bytes(built_pipeline.store.crl_path) == before

    def test_tampered_crl_fails_verification(self, built_pipeline):
        built_pipeline.revocation.generate_crl()

        other_key, other_cert = X509Utils.create_root_ca("Test VPN CA", organization="TestOrg", country="US", key_size=2048)
        forged = X509Utils.crl_to_pem(X509Utils.create_crl(other_key, other_cert))
        built_pipeline.store.replace(built_pipeline.store.crl_path, forged)

        with pytest.raises(CertificateVerificationError):
            built_pipeline.revocation.verify_crl()


class TestClientRevocation:
    """Test revoking client certificates."""

    def test_revoke_client(self, built_pipeline):
        revocation = built_pipeline.revocation
        built_pipeline.clients.issue_client_certificate("alice")
        built_pipeline.clients.issue_client_certificate("bob")
        revocation.generate_crl()

        serial_number = revocation.revoke_client("alice")

        assert serial_number == built_pipeline.clients.get_serial_number("alice")
        assert revocation.revoked_serials() == [serial_number]
        assert revocation.is_revoked("alice") is True
        assert revocation.is_revoked("bob") is False

        crl = X509Utils.load_crl(built_pipeline.store.read_bytes(built_pipeline.store.crl_path))
        assert crl.get_revoked_certificate_by_serial_number(serial_number) is not None
        assert revocation.verify_crl() is True

    def test_revoke_twice_keeps_one_entry(self, built_pipeline):
        revocation = built_pipeline.revocation
        built_pipeline.clients.issue_client_certificate("alice")

        revocation.revoke_client("alice")
        revocation.revoke_client("alice")

        index = json.loads(built_pipeline.store.read_text(built_pipeline.store.revoked_index_path))
        assert len(index["revoked"]) == 1
        assert index["revoked"][0]["name"] == "alice"

    def test_revoke_replaces_existing_crl(self, built_pipeline):
        revocation = built_pipeline.revocation
        built_pipeline.clients.issue_client_certificate("alice")
        revocation.generate_crl()
        before = built_pipeline.store.read_bytes(built_pipeline.store.crl_path)

        revocation.revoke_client("alice")

        assert built_pipeline.store.read_bytes(built_pipeline.store.crl_path) != before
        assert not any(p.name.endswith(".tmp") for p in built_pipeline.store.pki_dir.iterdir())

    def test_revoke_does_not_touch_client_material(self, built_pipeline):
        store = built_pipeline.store
        built_pipeline.clients.issue_client_certificate("alice")
        cert_before = store.read_bytes(store.cert_path("alice"))

        built_pipeline.revocation.revoke_client("alice")

        assert store.read_bytes(store.cert_path("alice")) == cert_before

    def test_revoke_unknown_client(self, built_pipeline):
        with pytest.raises(MissingExpectedArtifactError):
            built_pipeline.revocation.revoke_client("nobody")

    def test_revoke_completes_while_holding_index_lock(self, built_pipeline):
        revocation = built_pipeline.revocation
        built_pipeline.clients.issue_client_certificate("alice")
        revocation.generate_crl()
        result = {}

        worker = threading.Thread(target=lambda: result.update(serial=revocation.revoke_client("alice")))
        worker.daemon = True
        worker.start()
        worker.join(timeout=20)

        assert not worker.is_alive(), "revoke_client did not return"
        assert result["serial"] == built_pipeline.clients.get_serial_number("alice")

    def test_check_active(self, built_pipeline):
        revocation = built_pipeline.revocation
        built_pipeline.clients.issue_client_certificate("alice")
        assert revocation.check_active("alice") is StepOutcome.SKIPPED

        revocation.revoke_client("alice")
        with pytest.raises(PreconditionError):
            revocation.check_active("alice")


class TestRevocationIndex:
    """Test handling of the on-disk revocation index."""

    @pytest.mark.parametrize("content", ["[]", '"revoked"', '{"revoked": {}}', "{not json"])
    def test_malformed_index_is_storage_error(self, built_pipeline, content):
        store = built_pipeline.store
        store.replace(store.revoked_index_path, content.encode())

        with pytest.raises(StorageAccessError):
            built_pipeline.revocation.revoked_serials()

    def test_missing_index_is_empty(self, built_pipeline):
        assert built_pipeline.revocation.revoked_entries() == []
