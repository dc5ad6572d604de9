import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .database import init_db
from .errors import ConcurrentModification, ConstraintViolation, CoreError, NotFound, ValidationFailure
from .routers.nodes import router as nodes_router
from .settings.config import settings

logging.basicConfig(level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO))
logger = logging.getLogger(__name__)

app = FastAPI(title="alilm core")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Update for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ----------------------
# Route Includes
# ----------------------
app.include_router(nodes_router)


# ----------------------
# Core errors -> HTTP
# ----------------------
STATUS_FOR = (
    (NotFound, 404),
    (ValidationFailure, 422),
    (ConcurrentModification, 409),
    (ConstraintViolation, 409),
)


def status_for(exc: CoreError) -> int:
    for cls, code in STATUS_FOR:
        if isinstance(exc, cls):
            return code
    return 400


@app.exception_handler(CoreError)
async def _core_error_handler(request: Request, exc: CoreError):
    status = status_for(exc)
    if status == 409:
        logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.code, exc.message)
    return JSONResponse(status_code=status, content={"error": exc.to_dict()})


@app.on_event("startup")
async def on_startup():
    from . import models  # Required for SQLAlchemy model detection
    await init_db()


@app.get("/healthz")
async def healthz():
    return {"ok": True}


def run():
    uvicorn.run("alilm.main:app", host=settings.HOST, port=settings.PORT)


if __name__ == "__main__":
    run()
