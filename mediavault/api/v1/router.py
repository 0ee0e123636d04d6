from fastapi import APIRouter

from mediavault.api.v1.buckets import router as buckets_router
from mediavault.api.v1.dimensions import router as dimensions_router
from mediavault.api.v1.files import router as files_router
from mediavault.api.v1.orphans import router as orphans_router

api_router = APIRouter()
api_router.include_router(files_router)
api_router.include_router(buckets_router)
api_router.include_router(dimensions_router)
api_router.include_router(orphans_router)
