from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from paperqc.api.v2.errors import install_error_handlers
from paperqc.api.v2.router import router as v2_router
from paperqc.core.config import get_settings
from paperqc.core.logging import configure_logging

settings = get_settings()
configure_logging(logging.INFO)

if settings.store_backend != "memory":
    from paperqc.infra.db.session import init_db

    init_db()

app = FastAPI(title=settings.app_name, version="2.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)

install_error_handlers(app)
app.include_router(v2_router)


@app.get("/healthz", tags=["health"])
def healthz() -> dict[str, str]:
    return {"ok": "true"}
