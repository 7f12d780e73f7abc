from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.routes.pages import router as pages_router
from api.routes.runs import router as runs_router
from zim_lexicon import __version__
from zim_lexicon.ingestion import SchemaVersionError


def create_app() -> FastAPI:
    app = FastAPI(title="ZIM Lexicon API", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(pages_router)
    app.include_router(runs_router)

    @app.exception_handler(SchemaVersionError)
    async def schema_not_ready(request: Request, exc: SchemaVersionError) -> JSONResponse:
        return JSONResponse(status_code=503, content={"detail": str(exc)})

    @app.get("/healthz")
    def health() -> dict:
        return {"status": "ok"}

    return app


app = create_app()
