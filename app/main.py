from fastapi import FastAPI
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from starlette.middleware.cors import CORSMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from timing_asgi import TimingMiddleware, TimingClient  # type: ignore
from timing_asgi.integrations import StarletteScopeToName  # type: ignore

from app.core import config
from app.core.database.engine import init_db
from app.core.errors import (
    BadRequest,
    Forbidden,
    PermissionConfigError,
    StoreFault,
    Unauthorized,
    UnknownRole,
)
from app.features.sessions.routes import router as auth_router
from app.features.users.routes import router as user_router
from app.features.organizations.routes import router as organization_router
from app.features.roles.routes import router as role_router
from app.features.tags.routes import router as tag_router
from app.features.sessions.dependencies import get_authorization_header
from app.utils import get_logger


log = get_logger(__name__)
log.info("Initializing server")
app = FastAPI(
    title="Authorization Core",
    description="Role-based authorization with organization-scoped roles, tags, and session tokens",
    version="0.1.0",
    docs_url="/docs" if config.ENABLE_DOCS else None,
    redoc_url="/redoc" if config.ENABLE_DOCS else None,
    openapi_url="/openapi.json" if config.ENABLE_DOCS else None
)
limiter = Limiter(key_func=get_authorization_header)
app.state.limiter = limiter


class PrintTimings(TimingClient):
    def timing(self, metric_name, timing, tags):
        log.debug(dict(route=metric_name.removeprefix("main.app.features."), timing=timing, tags=tags))


app.add_middleware(TimingMiddleware, client=PrintTimings(), metric_namer=StarletteScopeToName("main", app))

if config.ENABLE_DOCS:
    log.warning("Docs enabled")
if config.ALLOW_ORIGIN:
    log.warning("Setting allow origin to %s", config.ALLOW_ORIGIN)
    origins = [config.ALLOW_ORIGIN]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )


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


@app.exception_handler(RateLimitExceeded)
def rate_limit_exceeded_handler(_request: Request, _exc: RateLimitExceeded) -> Response:
    return JSONResponse({"error": "You are going too fast"}, status_code=429)


# Authentication and permission failures carry no detail for the client
@app.exception_handler(Unauthorized)
async def unauthorized_handler(_request: Request, _exc: Unauthorized) -> Response:
    return JSONResponse(
        {"error": "Unauthorized"},
        status_code=401,
        headers={"WWW-Authenticate": "Bearer"},
    )


@app.exception_handler(Forbidden)
async def forbidden_handler(_request: Request, _exc: Forbidden) -> Response:
    return JSONResponse({"error": "Forbidden"}, status_code=403)


@app.exception_handler(BadRequest)
async def bad_request_handler(_request: Request, exc: BadRequest) -> Response:
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(UnknownRole)
async def unknown_role_handler(_request: Request, exc: UnknownRole) -> Response:
    log.info("Rejected unknown role %s", exc.role_name)
    return JSONResponse({"error": str(exc)}, status_code=400)


@app.exception_handler(StoreFault)
async def store_fault_handler(_request: Request, exc: StoreFault) -> Response:
    log.error("Store failure during %s", exc.operation, exc_info=exc.cause or exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


@app.exception_handler(PermissionConfigError)
async def permission_config_handler(_request: Request, exc: PermissionConfigError) -> Response:
    log.error("Permission configuration error: %s", exc)
    return JSONResponse({"error": "Internal server error"}, status_code=500)


@app.on_event("startup")
async def startup():
    """Initialize database on application startup."""
    log.info("Initializing database...")
    await init_db()
    log.info("Database initialized successfully")


@app.get("/")
async def root():
    """Root endpoint - API health check."""
    return {
        "message": "Authorization Core API",
        "version": "0.1.0",
        "status": "online",
        "docs": "/docs" if config.ENABLE_DOCS else None,
        "authentication": {
            "info": "Protected endpoints require a Bearer token in the Authorization header or the auth cookie",
            "organization": "Pass the target organization as X-Organization-ID, ?organizationID=, or in the path",
            "public_endpoints": ["/", "/health", "/auth/login", "/auth/logout"]
        }
    }


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Include routers
app.include_router(auth_router, prefix="/auth", tags=["auth"])

app.include_router(user_router, prefix="/users", tags=["users"])
# Alias for singular form (if frontend uses /user/me)
app.include_router(user_router, prefix="/user", tags=["users"], include_in_schema=False)

# Organization routes
app.include_router(organization_router, prefix="/organizations", tags=["organizations"])
# Alias for singular form
app.include_router(organization_router, prefix="/organization", tags=["organizations"], include_in_schema=False)

# Role catalog and role grant routes
app.include_router(role_router, prefix="/roles", tags=["roles"])

# Tag routes
app.include_router(tag_router, prefix="/tags", tags=["tags"])
