# datadesk/docs.py
from fastapi import FastAPI
from fastapi.openapi.utils import get_openapi
from typing import Any, Dict, List

from datadesk.settings import Settings

TAGS_METADATA: List[Dict[str, Any]] = [
    {
        "name": "health",
        "description": "Liveness & database readiness checks.",
    },
    {
        "name": "natural-query",
        "description": (
            "Ask a question in plain language. It is routed to the **entities** or **dms** database, "
            "planned into a read-only `SELECT` by Gemini and self-corrected on execution errors."
        ),
    },
    {
        "name": "cleanup",
        "description": (
            "AI-assisted data cleanup. Defaults to **dry run**: returns proposed changes and an `UPDATE` "
            "script preview. Set `dryRun=false` to write safe changes back. Also lists same-named entities, "
            "proposes which duplicate to keep with a deletion plan, and capitalizes DMS user names."
        ),
    },
    {
        "name": "tables",
        "description": "Paginated browsing of the registered tables.",
    },
]


def create_app(settings: Settings) -> FastAPI:
    """
    Central place for Swagger/OpenAPI metadata and docs URLs.
    """
    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description=(
            "Natural-language querying and AI-assisted cleanup over the **entities** and **dms** "
            "MySQL databases, with **Gemini** for routing, SQL planning and cleaning.\n\n"
            "Use `POST /api/v1/natural-query` to ask questions and `POST /api/v1/cleanup` to clean a table page."
        ),
        openapi_url="/openapi.json",
        docs_url="/docs",     # Swagger UI
        redoc_url="/redoc",   # ReDoc
        contact={"name": "Datadesk Team"},
        license_info={"name": "MIT"},
    )

    app.openapi_tags = TAGS_METADATA

    def custom_openapi():
        if app.openapi_schema:
            return app.openapi_schema

        schema = get_openapi(
            title=app.title,
            version=app.version,
            description=app.description,
            routes=app.routes,
            tags=TAGS_METADATA,
        )
        schema["servers"] = [
            {"url": "http://127.0.0.1:8001", "description": "Local dev"},
        ]
        app.openapi_schema = schema
        return app.openapi_schema

    app.openapi = custom_openapi
    return app
