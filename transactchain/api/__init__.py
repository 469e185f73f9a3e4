"""
TransactChain API Application Factory
"""

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .accounts import router as accounts_router
from .transfers import router as transfers_router
from .admin import router as admin_router
from ..config import get_config
from ..errors import ErrorKind, LedgerError
from ..logging_config import setup_logging


STATUS_BY_KIND = {
    ErrorKind.INVALID_INPUT: 422,
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.SELF_TRANSFER: 400,
    ErrorKind.ROLE_FORBIDDEN: 403,
    ErrorKind.INSUFFICIENT_FUNDS: 409,
    ErrorKind.INSUFFICIENT_FUNDS_FOR_FEE: 409,
    ErrorKind.CONFLICT: 409,
    ErrorKind.SECRET_MISMATCH: 403,
    ErrorKind.STORAGE_UNAVAILABLE: 503,
    ErrorKind.TRY_AGAIN: 503,
}


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="TransactChain API",
        description="Ledger core with atomic transfers and cross-border fees",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        headers = {"Retry-After": "1"} if exc.is_retryable else None
        return JSONResponse(
            status_code=STATUS_BY_KIND.get(exc.kind, 400),
            content=exc.to_dict(),
            headers=headers
        )

    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transfers_router, tags=["Transfers"])
    app.include_router(admin_router, tags=["Admin"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "transactchain",
            "version": "1.0.0"
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "TransactChain API",
            "version": "1.0.0",
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "accounts": "/accounts",
                "transfers": "/transfers",
                "transactions": "/transactions",
                "admin": "/admin",
                "bank": "/bank/accounts",
            }
        }

    return app


app = create_app()


def run_server(host: str = None, port: int = None, debug: bool = False):
    """Run the API with uvicorn using configured logging"""
    config = get_config()
    setup_logging(config.log_level, config.log_format, config.log_file)
    uvicorn.run(
        "transactchain.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        workers=config.api_workers,
        reload=debug
    )
