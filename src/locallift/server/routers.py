from fastapi import APIRouter

from locallift.batches.api.batch_router import router as batch_router

router = APIRouter()

router.include_router(batch_router, prefix="/batches", tags=["batches"])
