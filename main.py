"""
BitBucket PR Dashboard backend
Serves repository listings, merged pull requests and PR analytics for the dashboard
"""
import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import settings, get_bitbucket_settings
from api.routes import api_router
from api.endpoints.bitbucket import close_bitbucket_connector
from models.bitbucket import Dialect
from utils.logging import get_logger

logger = get_logger(__name__)

app = FastAPI(
    title=settings.app_name,
    description="Reporting backend for BitBucket pull request analytics",
    version="1.0.0",
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(api_router, prefix="/api")


@app.on_event("shutdown")
async def shutdown_event():
    """Release the BitBucket HTTP client"""
    await close_bitbucket_connector()
    logger.info("BitBucket connector closed")


@app.get("/")
async def root():
    """Health check endpoint"""
    return {"message": f"{settings.app_name} API", "status": "healthy"}


@app.get("/health")
async def health_check():
    """Detailed health check"""
    bitbucket = get_bitbucket_settings()
    return {
        "status": "healthy",
        "app_name": settings.app_name,
        "version": "1.0.0",
        "bitbucket_configured": bool(bitbucket.bitbucket_domain and bitbucket.bitbucket_api_token),
        "bitbucket_dialect": Dialect.from_domain(bitbucket.domain).value if bitbucket.bitbucket_domain else None,
    }


if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower()
    )
