from fastapi import APIRouter
from cre_explorer.api.routes import (
    data,
    properties,
    sales,
    opportunities,
    owners,
    heatmap,
    dashboard,
    searches,
    portfolios,
    health,
)

api_router = APIRouter()

api_router.include_router(data.router)
api_router.include_router(properties.router)
api_router.include_router(sales.router)
api_router.include_router(opportunities.router)
api_router.include_router(owners.router)
api_router.include_router(heatmap.router)
api_router.include_router(dashboard.router)
api_router.include_router(searches.router)
api_router.include_router(portfolios.router)
api_router.include_router(health.router)
