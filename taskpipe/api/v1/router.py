from fastapi import APIRouter

from taskpipe.api.v1.endpoints.tasks import router as tasks_router

router = APIRouter()


@router.get("/ping")
async def ping():
    return {"ping": "pong"}


router.include_router(tasks_router)
