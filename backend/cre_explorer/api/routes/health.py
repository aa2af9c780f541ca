from fastapi import APIRouter

from cre_explorer.core.config import settings
from cre_explorer.core.database import check_database_connection

router = APIRouter(tags=["health"])


@router.get("/health")
def health_check():
    """Detailed health check."""
    connected = check_database_connection()
    return {
        "status": "healthy" if connected else "degraded",
        "database": "connected" if connected else "unreachable",
        "version": settings.APP_VERSION,
    }
