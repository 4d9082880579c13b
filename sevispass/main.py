# FastAPI entrypoint
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from sevispass.config import LOG_LEVEL, TOKEN_CONFIG
from sevispass.api.v1.sevispass import router as sevispass_router
from sevispass.api.v1.citypass import router as citypass_router
from sevispass.api.v1.admin import router as admin_router
from sevispass.services.identity.pipeline import get_pipeline
from sevispass.services.identity.token_broker import TokenSweeper

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    sweeper = None
    if TOKEN_CONFIG["enable_sweeper"]:
        sweeper = TokenSweeper(get_pipeline().tokens)
        sweeper.start()
    yield
    if sweeper is not None:
        sweeper.stop()


app = FastAPI(title="SevisPass API", version="1.0.0", lifespan=lifespan)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    content = exc.detail if isinstance(exc.detail, dict) else {"error": exc.detail}
    return JSONResponse(status_code=exc.status_code, content=content, headers=getattr(exc, "headers", None))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    location = [str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path", "header")]
    return JSONResponse(
        status_code=400,
        content={"error": first.get("msg", "Invalid request"), "field": ".".join(location) or None},
    )


# Include routers
app.include_router(sevispass_router, prefix="/api/v1")
app.include_router(citypass_router, prefix="/api/v1")
app.include_router(admin_router, prefix="/api/v1")


@app.get('/')
def read_root():
    return {"msg": "SevisPass API", "version": "1.0.0"}


@app.get('/health')
def health():
    return {"status": "ok"}
