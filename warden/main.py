import importlib
from typing import Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, status
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from warden.authorization import Authorizer
from warden.core import config
from warden.core.errors import AuthorizationDenied, ConfigurationError, ValidationError
from warden.features.principals.schemas import Principal
from warden.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


class ScopeRequest(BaseModel):
    """Body of a scope query; a null principal means an anonymous caller."""
    principal: Optional[Principal] = None
    verb: str = "list"


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.warden."), timing=timing, tags=tags))


def get_authorizer(request: Request) -> Authorizer:
    return request.app.state.authorizer


def load_authorizer(path: Optional[str] = config.AUTHORIZER_FACTORY) -> Authorizer:
    """Import and call the "package.module:callable" factory named by AUTHORIZER_FACTORY."""
    if not path or ":" not in path:
        raise ConfigurationError("AUTHORIZER_FACTORY must be set to 'package.module:callable'")
    module_name, _, attribute = path.partition(":")
    factory = getattr(importlib.import_module(module_name), attribute)
    return factory()


@router.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


@router.get("/contracts/{resource_type}")
async def describe_resource(
    resource_type: str,
    role: str,
    authorizer: Authorizer = Depends(get_authorizer),
):
    """Per-role contract: visible attributes with their flags, and permitted actions."""
    if resource_type not in authorizer.catalog:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Resource type not found")
    return authorizer.describe_resource(resource_type, role)


@router.post("/scopes/{resource_type}")
async def resolve_scope(
    resource_type: str,
    body: ScopeRequest,
    authorizer: Authorizer = Depends(get_authorizer),
):
    """Filter description narrowing `resource_type` for the given principal."""
    if resource_type not in authorizer.catalog:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Resource type not found")
    scope = authorizer.scope(body.principal, resource_type, verb=body.verb)
    return {"resource_type": resource_type, "filter": scope.model_dump()}


def install_exception_handlers(app: FastAPI) -> None:
    """Map engine errors to HTTP responses. Host applications call this too."""

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(_request: Request, exc: RequestValidationError):
        errors = dict()
        for error in exc.errors():
            if "loc" not in error or "msg" not in error:
                continue
            key = error["loc"][-1]
            if key == "__root__":
                key = "root"
            errors[key] = error["msg"]
        log.info("Request validation error %s", errors)
        return JSONResponse(status_code=400, content=jsonable_encoder(errors))

    @app.exception_handler(AuthorizationDenied)
    async def authorization_denied_handler(_request: Request, exc: AuthorizationDenied):
        if exc.not_found:
            return JSONResponse(status_code=404, content={"detail": "Not found"})
        return JSONResponse(status_code=403, content={"detail": "Forbidden", "reason": exc.reason})

    @app.exception_handler(ValidationError)
    async def payload_validation_handler(_request: Request, exc: ValidationError):
        return JSONResponse(
            status_code=422,
            content={"detail": "Attributes not permitted", "attributes": exc.attributes},
        )

    @app.exception_handler(RateLimitExceeded)
    def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
        return JSONResponse({"error": "You are going too fast"}, status_code=429)


def create_app(authorizer: Optional[Authorizer] = None) -> FastAPI:
    """
    Build the HTTP adapter around an Authorizer.

    Without an argument the Authorizer comes from AUTHORIZER_FACTORY, which
    lets uvicorn start the app with `factory=True`.
    """
    log.info("Initializing server")
    if authorizer is None:
        authorizer = load_authorizer()

    app = FastAPI(
        title="Warden",
        description="Authorization and API-surface derivation",
        version="0.1.0",
        docs_url="/docs" if config.ENABLE_DOCS else None,
        redoc_url="/redoc" if config.ENABLE_DOCS else None,
        openapi_url="/openapi.json" if config.ENABLE_DOCS else None,
    )
    app.state.authorizer = authorizer
    app.state.limiter = Limiter(key_func=get_remote_address)

    app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

    if config.ENABLE_DOCS:
        log.warning("Docs enabled")
    if config.ALLOW_ORIGIN:
        log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
        app.add_middleware(
            CORSMiddleware,
            allow_origins=[config.ALLOW_ORIGIN],
            allow_credentials=True,
            allow_methods=["*"],
            allow_headers=["*"],
        )

    install_exception_handlers(app)
    app.include_router(router)
    return app
