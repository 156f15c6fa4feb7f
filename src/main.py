from contextlib import asynccontextmanager
from uuid import uuid4

from fastapi import FastAPI, Request
from src.events.backfill import shutdown_backfill_scheduler
from src.routers import webhooks


@asynccontextmanager
async def lifespan(_app: FastAPI):
    yield
    shutdown_backfill_scheduler()


app = FastAPI(title="Call Webhook Engine", version="0.1.0", lifespan=lifespan)


@app.middleware("http")
async def attach_request_id(request: Request, call_next):
    request_id = (
        request.headers.get("X-Request-ID")
        or request.headers.get("X-Correlation-ID")
        or str(uuid4())
    )
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response

app.include_router(webhooks.router)


@app.get("/")
async def root():
    return {"status": "ok", "service": "call-webhook-engine"}


@app.get("/health")
async def health():
    return {"status": "healthy"}
