"""FastAPI provisioning service - main application."""

from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional
import logging
import os
import secrets

from fastapi import FastAPI, HTTPException, Request, status, Depends, Header
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from .errors import (
    BundleNotFoundError,
    InvalidClientNameError,
    MissingExpectedArtifactError,
    PreconditionError,
    ProvisioningError,
)
from .models import ClientInfo, ErrorResponse, HealthResponse, ProvisioningReport, RevocationResponse
from .pipeline import ProvisioningPipeline
from .settings import load_settings

API_KEY_ENV = "VPN_PKI_API_KEY"

logger = logging.getLogger(__name__)

app = FastAPI(
    title="VPN PKI Provisioner",
    description="Provisions OpenVPN PKI material and serves client bundles",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.environ.get("VPN_PKI_CORS_ORIGINS", "*").split(","),
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.exception_handler(ProvisioningError)
async def provisioning_error_handler(request: Request, exc: ProvisioningError):
    logger.error(f"Unhandled provisioning error on {request.url.path}: {exc}")
    body = ErrorResponse(error=type(exc).__name__, detail=str(exc))
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=body.model_dump(mode="json"),
    )


@lru_cache(maxsize=1)
def get_pipeline() -> ProvisioningPipeline:
    """Build the pipeline from settings on first use."""
    return ProvisioningPipeline(load_settings())


def verify_api_key(x_api_key: Optional[str] = Header(None)) -> str:
    """
    Verify API key from header.

    When $VPN_PKI_API_KEY is set the header must match it.
    """
    if not x_api_key:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="API key required"
        )

    expected = os.environ.get(API_KEY_ENV)
    if expected and not secrets.compare_digest(x_api_key, expected):
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid API key"
        )
    return x_api_key


def _client_info(pipeline: ProvisioningPipeline, name: str) -> ClientInfo:
    info = pipeline.clients.get_client_info(name)
    return ClientInfo(
        name=name,
        serial_number=info["serial_number"],
        not_valid_before=info["not_valid_before"],
        not_valid_after=info["not_valid_after"],
        fingerprint_sha256=info["fingerprint_sha256"],
        revoked=pipeline.revocation.is_revoked(name),
        bundle_rendered=pipeline.store.exists(pipeline.composer.client_bundle_path(name)),
    )


@app.get("/", response_model=dict)
async def root():
    """Root endpoint."""
    return {
        "service": "VPN PKI Provisioner",
        "version": "1.0.0",
        "status": "operational"
    }


@app.get("/health", response_model=HealthResponse)
def health_check(pipeline: ProvisioningPipeline = Depends(get_pipeline)):
    """Health check endpoint."""
    try:
        state = pipeline.status()
        return HealthResponse(
            status="healthy",
            authority_initialized=state["authority_initialized"],
            server_identity=state["server_identity"],
            clients=len(state["clients"]),
            timestamp=datetime.now(timezone.utc)
        )
    except ProvisioningError as e:
        logger.error(f"Health check failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Service unhealthy"
        )


@app.post("/provision", response_model=ProvisioningReport)
def provision(
    pipeline: ProvisioningPipeline = Depends(get_pipeline),
    api_key: str = Depends(verify_api_key)
):
    """
    Run the provisioning pipeline for the configured roster.

    Requires API key authentication.
    """
    try:
        return pipeline.run()
    except ProvisioningError as e:
        logger.error(f"Provisioning failed: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Provisioning failed: {str(e)}"
        )


@app.get("/clients", response_model=list[ClientInfo])
def list_clients(pipeline: ProvisioningPipeline = Depends(get_pipeline)):
    """List all clients with issued certificates."""
    try:
        return [_client_info(pipeline, name) for name in pipeline.clients.list_clients()]
    except ProvisioningError as e:
        logger.error(f"Failed to list clients: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to list clients: {str(e)}"
        )


@app.get("/clients/{name}", response_model=ClientInfo)
def get_client(name: str, pipeline: ProvisioningPipeline = Depends(get_pipeline)):
    """Get certificate information for one client."""
    try:
        return _client_info(pipeline, name)
    except InvalidClientNameError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except MissingExpectedArtifactError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Client not found: {name}"
        )
    except ProvisioningError as e:
        logger.error(f"Failed to get client info: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to get client info: {str(e)}"
        )


@app.get("/clients/{name}/bundle")
def download_bundle(name: str, pipeline: ProvisioningPipeline = Depends(get_pipeline)):
    """Download a client's rendered configuration bundle."""
    try:
        pipeline.clients.validate_name(name)
        path = pipeline.composer.client_bundle_path(name)
        if not pipeline.store.exists(path):
            raise BundleNotFoundError(name, path)
        if pipeline.revocation.is_revoked(name):
            raise HTTPException(
                status_code=status.HTTP_410_GONE,
                detail=f"Client certificate revoked: {name}"
            )
        content = pipeline.store.read_bytes(path)
    except InvalidClientNameError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except MissingExpectedArtifactError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Bundle not found for client: {name}"
        )

    filename = pipeline.exporter.export_path(name).name
    return Response(
        content=content,
        media_type="application/x-openvpn-profile",
        headers={"Content-Disposition": f"attachment; filename={filename}"}
    )


@app.post("/clients/{name}/revoke", response_model=RevocationResponse)
def revoke_client(
    name: str,
    pipeline: ProvisioningPipeline = Depends(get_pipeline),
    api_key: str = Depends(verify_api_key)
):
    """
    Revoke a client's certificate and refresh the CRL.

    Requires API key authentication.
    """
    try:
        serial_number = pipeline.revoke_client(name)
    except InvalidClientNameError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except MissingExpectedArtifactError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Client not found: {name}"
        )
    except PreconditionError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))
    except ProvisioningError as e:
        logger.error(f"Failed to revoke client: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to revoke client: {str(e)}"
        )

    return RevocationResponse(
        name=name,
        serial_number=str(serial_number),
        revoked_count=len(pipeline.revocation.revoked_serials()),
    )


@app.get("/ca/certificate", response_class=JSONResponse)
def download_ca_certificate(pipeline: ProvisioningPipeline = Depends(get_pipeline)):
    """Download CA certificate in PEM format."""
    try:
        cert_pem = pipeline.ca_manager.get_ca_certificate_pem()
    except PreconditionError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Certificate authority not initialized"
        )

    return JSONResponse(content={"certificate": cert_pem})


@app.get("/crl")
def download_crl(pipeline: ProvisioningPipeline = Depends(get_pipeline)):
    """Download the current CRL in PEM format."""
    try:
        crl_pem = pipeline.store.read_bytes(pipeline.store.crl_path)
    except MissingExpectedArtifactError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="CRL not generated"
        )

    return Response(content=crl_pem, media_type="application/x-pem-file")


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    uvicorn.run(
        "vpn_provisioner.main:app",
        host="0.0.0.0",
        port=8000,
        log_level="info"
    )
