"""
Point d'entrée principal de l'agent de synchronisation des présences.
Démarrage : uvicorn attendance_sync.main:app --reload
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import attendance_sync.models  # noqa: F401 (enregistre tous les modèles dans Base.metadata avant create_all)
from attendance_sync.config import settings
from attendance_sync.database import Base, SessionLocal, engine
from attendance_sync.routers import connection, offline_queue
from attendance_sync.runtime import build_runtime
from attendance_sync.scheduler import start_scheduler, stop_scheduler
from attendance_sync.services.snapshot_service import load_snapshot, save_snapshot

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Cycle de vie de l'agent :
    - démarrage : tables locales, restauration du snapshot, file et scheduler démarrés
    - arrêt : scheduler et file arrêtés, snapshot enregistré
    """
    Base.metadata.create_all(bind=engine)
    runtime = build_runtime(settings)
    app.state.runtime = runtime

    db = SessionLocal()
    try:
        snapshot = load_snapshot(db)
    finally:
        db.close()
    if snapshot is not None:
        runtime.queue.restore(snapshot)

    runtime.queue.start()
    start_scheduler(runtime)
    yield
    stop_scheduler(runtime)
    runtime.queue.stop()

    db = SessionLocal()
    try:
        save_snapshot(db, runtime.queue.snapshot())
    finally:
        db.close()


app = FastAPI(
    title="Attendance Sync Agent",
    description="Agent de synchronisation offline des scans de présence (QR)",
    version="0.1.0",
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json",
    lifespan=lifespan,
)

# CORS : autorise tous les ports localhost (interface de la borne servie en local).
app.add_middleware(
    CORSMiddleware,
    allow_origins=[],
    allow_origin_regex=r"https?://(localhost|127\.0\.0\.1)(:\d+)?",
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Accept"],
)


app.include_router(offline_queue.router)
app.include_router(connection.router)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """
    Intercepte toutes les exceptions non gérées pour garantir que la réponse 500
    passe bien par CORSMiddleware (qui injecte les headers CORS).
    """
    logger.error("Exception non gérée : %s", exc, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={"detail": "Une erreur interne est survenue."},
    )


@app.get("/api/health", tags=["Santé"])
def health_check():
    """Vérifie que l'agent est opérationnel."""
    return {"status": "ok", "service": "Attendance Sync Agent", "version": "0.1.0"}
