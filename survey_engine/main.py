# survey_engine/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from survey_engine.api.v1.endpoints import admin_stats, admin_surveys, health, responses
from survey_engine.core.config import settings
from survey_engine.core.errors import SurveyEngineError
from survey_engine.core.logging import configure_logging

API_V1_PREFIX = "/api/v1"

configure_logging()

app = FastAPI(
    title=settings.APP_NAME,
    description="Motor de encuestas de la plataforma de engagement",
    version="1.0.0",
)

# CORS (en prod: restringe orígenes con CORS_ORIGINS)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(SurveyEngineError)
def survey_engine_error_handler(_request: Request, exc: SurveyEngineError):
    return JSONResponse(status_code=exc.status_code, content={"code": exc.code, "detail": exc.detail})


# Routers versionados
app.include_router(health.router,    prefix=API_V1_PREFIX)
app.include_router(responses.router, prefix=API_V1_PREFIX)

# Admin: monta AQUÍ el prefijo /api/v1/admin
app.include_router(admin_surveys.router, prefix=f"{API_V1_PREFIX}/admin")
app.include_router(admin_stats.router,   prefix=f"{API_V1_PREFIX}/admin")


@app.get("/")
def root():
    return {
        "message": "Survey Engine API",
        "version": "1.0.0",
        "docs": "/docs",
        "api_v1": API_V1_PREFIX,
    }
