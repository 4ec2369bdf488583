# datadesk/main.py
from __future__ import annotations

import logging
from fastapi.middleware.cors import CORSMiddleware

from datadesk.deps import settings
from datadesk.docs import create_app
from datadesk.routers import cleanup, health, natural_query, tables

_settings = settings()

logging.basicConfig(
    level=getattr(logging, _settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

# Quiet noisy third-party loggers
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("google").setLevel(logging.WARNING)
logging.getLogger("aiomysql").setLevel(logging.WARNING)

app = create_app(_settings)

# CORS (dev-open; tighten for prod)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# health router defines its own paths ("/health", "/health/db")
app.include_router(health.router)

# api routers carry their own "/api/v1/..." prefixes
app.include_router(natural_query.router)
app.include_router(cleanup.router)
app.include_router(tables.router)
