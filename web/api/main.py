"""FastAPI bracket API - tournaments, voting and admin progression."""
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from popbracket.errors import BracketError, InvalidSelection, IntegrityViolation
from popbracket.models import init_db

from web.api.admin_routes import router as admin_router
from web.api.routes import router as api_router
from web.api.utils import error_status
from web.api.vote_routes import router as vote_router

logger = logging.getLogger("popbracket.api")


@asynccontextmanager
async def lifespan(app: FastAPI):
    await init_db()
    yield


app = FastAPI(title="Popularity Bracket API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.include_router(api_router)
app.include_router(vote_router)
app.include_router(admin_router)


@app.exception_handler(BracketError)
async def bracket_error_handler(request: Request, exc: BracketError):
    detail = exc.message
    if isinstance(exc, IntegrityViolation) and not isinstance(exc, InvalidSelection):
        logger.error("Integrity violation on %s %s: %s", request.method, request.url.path, exc.message)
        detail = "Conflicting update, please retry"
    return JSONResponse(status_code=error_status(exc), content={"detail": detail})


@app.get("/api/health")
async def health():
    return {"status": "ok"}
