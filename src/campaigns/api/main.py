from fastapi import APIRouter, FastAPI, Request
from fastapi.responses import JSONResponse
from loguru import logger

from campaigns.api.endpoints import health, jobs, mail, message, queue
from campaigns.errors import CampaignError

api_router = APIRouter(prefix="/api")
api_router.include_router(mail.router)
api_router.include_router(message.router)
api_router.include_router(queue.router)
api_router.include_router(jobs.router)

app = FastAPI(
    title="Campaign Delivery",
    version="0.1.0",
    description="Campaign job store, delivery workers, scheduler and job queue triggers.",
)

app.include_router(health.router)
app.include_router(api_router)


@app.exception_handler(CampaignError)
async def campaign_error_handler(request: Request, exc: CampaignError):
    if exc.status_code >= 500:
        logger.error(f"[API] {request.method} {request.url.path} -> {exc.code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.message, "code": exc.code},
    )
