"""
Cooperative Banking API Application Factory
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from .loans import router as loans_router
from .installments import router as installments_router
from .users import router as users_router
from .reports import router as reports_router


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Cooperative Banking API",
        description="Savings and loans cooperative core: loans, installments and financial reports",
        version=__version__,
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

    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(installments_router, prefix="/installments", tags=["Installments"])
    app.include_router(users_router, prefix="/users", tags=["Users"])
    app.include_router(reports_router, prefix="/reports", tags=["Reports"])

    @app.get("/health")
    async def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "coop_banking_api",
            "version": __version__
        }

    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Cooperative Banking API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "loans": "/loans",
                "installments": "/installments",
                "users": "/users",
                "reports": "/reports/financial"
            }
        }

    return app


app = create_app()
