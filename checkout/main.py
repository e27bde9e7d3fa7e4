# checkout/main.py
from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from checkout.api.routers.checkout_preview import router as checkout_preview_router
from checkout.core.config import get_settings
from checkout.core.logging import setup_logging
from checkout.http_problem_handlers import register_exception_handlers
from checkout.obs.metrics import PrometheusMiddleware
from checkout.obs.metrics import router as metrics_router

settings = get_settings()
setup_logging(settings.LOG_LEVEL, json=settings.JSON_LOG)
logger = logging.getLogger("checkout")

app = FastAPI(
    title="Grocery Checkout",
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://127.0.0.1:8081",
        "http://localhost:8081",
        "http://127.0.0.1:3000",
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(PrometheusMiddleware)

register_exception_handlers(app)

app.include_router(checkout_preview_router)
app.include_router(metrics_router)


@app.get("/healthz")
async def healthz():
    return {"status": "ok", "env": settings.ENV}


logger.info("checkout app ready env=%s api=%s", settings.ENV, settings.API_BASE_URL)
