# stockledger/main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from stockledger.core.config import settings
from stockledger.core.logging_setup import setup_logging
from stockledger.api.exception_handlers import register_exception_handlers
from stockledger.api.router import api_router

setup_logging(settings)

app = FastAPI(
    title=settings.PROJECT_NAME,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.BACKEND_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_exception_handlers(app)

app.include_router(api_router, prefix=settings.API_V1_STR)


# Health
@app.get("/")
def root():
    return {"message": f"{settings.PROJECT_NAME} API running", "version": "v1"}
