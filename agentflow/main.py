from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
from agentflow.config import settings
from agentflow.api import webhooks, versions, schedules
from agentflow.container import build_container
from agentflow.core.errors import AgentFlowError, RateLimitedError
from agentflow.core.logging import logger
from agentflow.database import AsyncSessionLocal
from agentflow.integrations.http_client import HttpClient

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    services = build_container(AsyncSessionLocal)
    app.state.services = services
    if settings.SCHEDULER_ENABLED:
        await services.scheduler.start()
    yield
    # Shutdown
    await services.scheduler.stop()
    await services.scheduler.wait_for_inflight()
    await HttpClient.close_client()

app = FastAPI(
    title=settings.PROJECT_NAME,
    openapi_url=f"{settings.API_V1_STR}/openapi.json",
    lifespan=lifespan,
)

# Set all CORS enabled origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(AgentFlowError)
async def agentflow_error_handler(request: Request, exc: AgentFlowError):
    headers = None
    if isinstance(exc, RateLimitedError) and exc.retry_after:
        headers = {"Retry-After": str(exc.retry_after)}
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.reason}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.reason}, headers=headers)

app.include_router(webhooks.router, prefix=f"{settings.API_V1_STR}/webhooks", tags=["webhooks"])
app.include_router(versions.router, prefix=settings.API_V1_STR, tags=["versions"])
app.include_router(schedules.router, prefix=f"{settings.API_V1_STR}/schedules", tags=["schedules"])

@app.get("/")
async def root():
    return {"message": "AgentFlow Automation API is running"}

@app.get("/health")
async def health_check():
    return {"status": "healthy"}
