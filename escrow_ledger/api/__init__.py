"""
Escrow Ledger API Application Factory
"""

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .identities import router as identities_router
from .campaigns import router as campaigns_router
from .audit import router as audit_router
from ..errors import EscrowError
from ..logging_config import get_logger
from .. import __version__


logger = get_logger("escrow.api")


async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
    """Render domain errors with their status code and structured body"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Escrow Ledger API",
        description="Identity-gated crowdfunding escrow ledger",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(EscrowError, escrow_error_handler)

    # Include routers
    app.include_router(identities_router, prefix="/identities", tags=["Identities"])
    app.include_router(campaigns_router, prefix="/campaigns", tags=["Campaigns"])
    app.include_router(audit_router, prefix="/audit", tags=["Audit"])

    # Health check endpoint
    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "escrow_ledger_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "system": "Escrow Ledger",
            "version": __version__,
            "description": "Identity-gated crowdfunding escrow ledger",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "identities": "/identities",
                "campaigns": "/campaigns",
                "audit": "/audit"
            }
        }

    return app


app = create_app()


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "escrow_ledger.api:app",
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
