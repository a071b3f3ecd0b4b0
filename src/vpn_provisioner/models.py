"""Data models for provisioning results and the HTTP API."""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class StepOutcome(str, Enum):
    """Result of one artifact-producing step."""

    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


class ClientReport(BaseModel):
    """Per-client provisioning results."""

    name: str = Field(..., description="Client name from the roster")
    steps: dict[str, StepOutcome] = Field(default_factory=dict, description="Outcome per stage")
    error: Optional[str] = Field(None, description="Error that stopped this client")
    bundle_path: Optional[str] = Field(None, description="Exported bundle location")

    @property
    def failed(self) -> bool:
        return self.error is not None


class ProvisioningReport(BaseModel):
    """Result of a full provisioning run."""

    steps: dict[str, StepOutcome] = Field(default_factory=dict, description="Outcome per single-shot stage")
    clients: list[ClientReport] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    finished_at: Optional[datetime] = None

    @property
    def failed_clients(self) -> list[str]:
        return [client.name for client in self.clients if client.failed]

    @property
    def succeeded(self) -> bool:
        return not self.failed_clients

    def client(self, name: str) -> Optional[ClientReport]:
        for report in self.clients:
            if report.name == name:
                return report
        return None


class ClientInfo(BaseModel):
    """Issued client certificate information."""

    name: str = Field(..., description="Client name")
    serial_number: str = Field(..., description="Certificate serial number")
    not_valid_before: str = Field(..., description="Certificate start date")
    not_valid_after: str = Field(..., description="Certificate expiration date")
    fingerprint_sha256: str = Field(..., description="SHA-256 fingerprint")
    revoked: bool = Field(..., description="Whether the certificate is on the CRL")
    bundle_rendered: bool = Field(..., description="Whether client.ovpn has been rendered")


class RevocationResponse(BaseModel):
    """Response model for client revocation."""

    name: str
    serial_number: str
    revoked_count: int = Field(..., description="Number of serials now on the CRL")


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str = Field(..., description="Service status")
    authority_initialized: bool = Field(..., description="Whether the CA has been built")
    server_identity: bool = Field(..., description="Whether the server certificate exists")
    clients: int = Field(..., description="Number of issued client certificates")
    timestamp: datetime = Field(..., description="Current server time")


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Detailed error information")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="Error timestamp")
