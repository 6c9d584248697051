import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from carefinder import __version__
from carefinder.errors import CarefinderError
from carefinder.logging import bind_request, configure_logging, get_logger
from carefinder.server.routers.recommendations import router as recommendations_router
from carefinder.server.runtime import get_runtime_async, reset_runtime

_logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    runtime = await get_runtime_async()
    configure_logging(runtime.config.log_level)
    yield
    await reset_runtime()


app = FastAPI(
    title="carefinder",
    description="Hybrid counseling-center recommendation API",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(recommendations_router)


@app.middleware("http")
async def bind_request_context(request: Request, call_next):
    bind_request(request_id=request.headers.get("x-request-id") or uuid.uuid4().hex[:8], path=request.url.path)
    return await call_next(request)


@app.exception_handler(CarefinderError)
async def carefinder_error_handler(request: Request, exc: CarefinderError):
    if exc.status_code >= 500:
        _logger.error("%s %s failed: %s", request.method, request.url.path, exc)
    else:
        _logger.warning("%s %s rejected: %s", request.method, request.url.path, exc)
    headers = {}
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers["Retry-After"] = str(retry_after)
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "error": exc.to_dict()},
        headers=headers,
    )


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body") or None
    return JSONResponse(
        status_code=400,
        content={
            "success": False,
            "error": {
                "code": "INVALID_INPUT",
                "message": first.get("msg", "Invalid request"),
                "field": field,
                "details": {"errors": [{"loc": list(e.get("loc", ())), "msg": e.get("msg")} for e in errors]},
            },
        },
    )


@app.get("/health")
async def health():
    return {"status": "ok"}
