from fastapi import APIRouter
from jobtracker.api.v1.endpoints import gmail, jobs

api_router = APIRouter(prefix="/api/v1")

# Include all endpoint routers
api_router.include_router(gmail.router)
api_router.include_router(jobs.router)
