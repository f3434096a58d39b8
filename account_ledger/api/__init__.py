"""
Account Ledger API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import uvicorn

from .accounts import router as accounts_router
from .dependencies import LedgerSystem
from .errors import register_error_handlers
from .. import __version__
from ..config import get_config
from ..logging_config import setup_logging


def create_app(system: Optional[LedgerSystem] = None) -> FastAPI:
    """
    Create and configure the FastAPI application

    Args:
        system: Pre-built ledger system; built from configuration when omitted
            and closed again on shutdown

    Returns:
        Configured FastAPI app
    """
    owns_system = system is None
    if owns_system:
        config = get_config()
        setup_logging(config.log_level, log_format=config.log_format, log_file=config.log_file)
        system = LedgerSystem.from_config(config)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_system:
            system.close()

    app = FastAPI(
        title="Account Ledger API",
        description="Account lookup, balances, history and atomic money movements",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )
    app.state.ledger_system = system

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure appropriately for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_error_handlers(app)
    app.include_router(accounts_router, prefix="/api/v1/accounts", tags=["Bank account operations"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "account_ledger_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Account Ledger API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "accounts": "/api/v1/accounts",
                "balance": "/api/v1/accounts/balance",
                "transactions": "/api/v1/accounts/transactions",
                "transaction": "/api/v1/accounts/transaction",
            }
        }

    return app


def run_server(host: str = "0.0.0.0", port: int = 8090, debug: bool = False):
    """Run the FastAPI server"""
    uvicorn.run(
        "account_ledger.api:create_app",
        factory=True,
        host=host,
        port=port,
        reload=debug,
        log_level="info"
    )
