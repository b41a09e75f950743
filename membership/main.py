import logging

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response
from starlette.exceptions import HTTPException as StarletteHTTPException

from membership.api.billing import router as billing_router
from membership.api.membership import router as membership_router
from membership.api.webhook import router as webhook_router
from membership.config import get_settings
from membership.database import Base, engine
from membership.models.token import MembershipToken  # noqa: F401  (registers the table)

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "Content-Type",
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


def create_app() -> FastAPI:
    settings = get_settings()

    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if settings.token_store_backend == "sql":
        Base.metadata.create_all(bind=engine)

    app = FastAPI(
        title="Membership Access",
        docs_url=None if settings.env == "prod" else "/docs",
        redoc_url=None if settings.env == "prod" else "/redoc",
    )

    # Preflights are answered by the route below with an empty body; every
    # other /api response gets the same CORS headers here.
    @app.middleware("http")
    async def add_cors_headers(request: Request, call_next):
        response = await call_next(request)
        if request.url.path.startswith("/api/"):
            response.headers.update(CORS_HEADERS)
        return response

    @app.options("/api/{path:path}", include_in_schema=False)
    def preflight(path: str):
        return Response(status_code=200, headers=CORS_HEADERS)

    @app.get("/health")
    def health_check():
        return {"status": "ok"}

    app.include_router(membership_router)
    app.include_router(billing_router)
    app.include_router(webhook_router)

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request, exc):
        detail = "Method not allowed" if exc.status_code == 405 else exc.detail
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": detail},
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request, exc):
        errors = exc.errors()

        # Body that is not JSON at all is treated as a server-side failure
        if any(err.get("type") == "json_invalid" for err in errors):
            return JSONResponse(status_code=500, content={"error": "Invalid request body"})

        first = errors[0] if errors else {}
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid field '{field}': {first.get('msg')}" if field else "Invalid request body"
        return JSONResponse(status_code=400, content={"error": message})

    return app


app = create_app()
