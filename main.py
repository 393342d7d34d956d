from __future__ import annotations

import os, logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import List, Optional

# load environment variables from .env
from dotenv import load_dotenv
load_dotenv()

import mysql.connector
from fastapi.middleware.cors import CORSMiddleware
from fastapi import APIRouter, Body, FastAPI, HTTPException, status, Request
from fastapi import Query, Path
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
import uvicorn

import db
from models.base import DeleteResult, ErrorBody
from models.health import Health
from models.app_data import AppData, AppDataCreate, AppDataUpdate
from models.feedback import (
    Feedback, FeedbackCreate, FeedbackStatus, FeedbackType, FeedbackUpdate, VoteRequest
)

# -------------------------------------------------------------------
# Config
# -------------------------------------------------------------------
port = int(os.environ.get("FASTAPIPORT", 8000))
_prefix = os.getenv("API_PREFIX", "/api/v1").strip("/")
API_PREFIX = f"/{_prefix}" if _prefix else ""

logger = logging.getLogger("uvicorn.error")

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables if needed and log DB reachability
    try:
        db.bootstrap_schema()
        logger.info("DB startup check: OK")
    except Exception as e:
        logger.error(f"DB startup check: FAILED ({e})")
    yield

app = FastAPI(
    title="App Hub API",
    version="1.0.0",
    lifespan=lifespan,
)

# allow whatever origins you expect (localhost:3000 in dev, prod domains later)
allowed_origins = os.getenv("CORS_ORIGINS", "http://localhost:3000").split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in allowed_origins],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# -------------------------------------------------------------------
# Error bodies: {"error": "..."}
# -------------------------------------------------------------------
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    problems = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path"))
        problems.append(f"{loc}: {err.get('msg')}" if loc else err.get("msg", ""))
    message = "Invalid request" + (f" ({'; '.join(problems)})" if problems else "")
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content={"error": message})

@app.exception_handler(mysql.connector.Error)
async def db_error_handler(request: Request, exc: mysql.connector.Error):
    logger.error(f"DB error on {request.method} {request.url.path}: {exc}")
    return JSONResponse(status_code=500, content={"error": "Internal server error"})

router = APIRouter(
    prefix=API_PREFIX,
    responses={code: {"model": ErrorBody} for code in (400, 404, 409, 500)},
)

# -------------------------------------------------------------------
# Health
# -------------------------------------------------------------------
@router.get("/health", response_model=Health)
def get_health():
    return Health(status="ok", timestamp=datetime.utcnow().isoformat() + "Z")

# -------------------------------------------------------------------
# APPS
# -------------------------------------------------------------------
@router.get("/apps", response_model=List[AppData])
def list_apps(
    search: Optional[str] = Query(
        default=None,
        description="Case-insensitive search across name/description",
    ),
    tech_stack: Optional[List[str]] = Query(
        default=None,
        alias="techStack",
        description="Repeatable; matches apps using any of the given technologies",
    ),
):
    techs = [t.strip() for t in tech_stack or [] if t and t.strip()]
    return db.list_apps(search=search or None, tech_stack=techs or None)

@router.get("/apps/{id}", response_model=AppData)
def get_app(id: str = Path(...)):
    found = db.fetch_app(id)
    if not found:
        raise HTTPException(status_code=404, detail="App not found")
    return found

@router.post("/apps", response_model=AppData, status_code=status.HTTP_201_CREATED)
def create_app(payload: AppDataCreate):
    try:
        return db.insert_app(payload)
    except mysql.connector.Error as e:
        if e.errno == db.DUPLICATE_KEY:
            raise HTTPException(status_code=409, detail="App with this ID already exists")
        raise

@router.put("/apps/{id}", response_model=AppData)
def update_app(payload: AppDataUpdate, id: str = Path(...)):
    if not db.app_exists(id):
        raise HTTPException(status_code=404, detail="App not found")
    updated = db.update_app(id, payload.model_dump(exclude_unset=True))
    if not updated:
        # deleted between the check and the update
        raise HTTPException(status_code=404, detail="App not found")
    return updated

@router.delete("/apps/{id}", response_model=DeleteResult)
def delete_app(id: str = Path(...)):
    if not db.delete_app(id):
        raise HTTPException(status_code=404, detail="App not found")
    return DeleteResult(message="App deleted successfully", id=id)

# -------------------------------------------------------------------
# FEEDBACK
# -------------------------------------------------------------------
@router.get("/feedback", response_model=List[Feedback])
def list_feedback(
    app_id: Optional[str] = Query(default=None, alias="appId"),
    status_: Optional[FeedbackStatus] = Query(default=None, alias="status"),
    type_: Optional[FeedbackType] = Query(default=None, alias="type"),
):
    return db.list_feedback(
        app_id=app_id or None,
        status=status_.value if status_ else None,
        type=type_.value if type_ else None,
    )

@router.get("/feedback/{id}", response_model=Feedback)
def get_feedback(id: str = Path(...)):
    found = db.fetch_feedback(id)
    if not found:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return found

@router.post("/feedback", response_model=Feedback, status_code=status.HTTP_201_CREATED)
def create_feedback(payload: FeedbackCreate):
    if not db.app_exists(payload.app_id):
        raise HTTPException(status_code=404, detail="App not found")
    try:
        return db.insert_feedback(payload)
    except mysql.connector.Error as e:
        if e.errno == db.DUPLICATE_KEY:
            raise HTTPException(status_code=409, detail="Feedback with this ID already exists")
        raise

@router.put("/feedback/{id}", response_model=Feedback)
def update_feedback(payload: FeedbackUpdate, id: str = Path(...)):
    updated = db.update_feedback(id, payload.model_dump(exclude_unset=True))
    if not updated:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return updated

@router.post("/feedback/{id}/vote", response_model=Feedback)
def vote_feedback(id: str = Path(...), payload: Optional[VoteRequest] = Body(default=None)):
    increment = payload.increment if payload else 1
    voted = db.vote_feedback(id, increment)
    if not voted:
        raise HTTPException(status_code=404, detail="Feedback not found")
    return voted

@router.delete("/feedback/{id}", response_model=DeleteResult)
def delete_feedback(id: str = Path(...)):
    if not db.delete_feedback(id):
        raise HTTPException(status_code=404, detail="Feedback not found")
    return DeleteResult(message="Feedback deleted successfully", id=id)

app.include_router(router)

# -------------------------------------------------------------------
# Entrypoint
# -------------------------------------------------------------------
if __name__ == "__main__":
    uvicorn.run("main:app", host="0.0.0.0", port=port, reload=True)
