from fastapi import FastAPI
from margin_tracker.core.config import settings
from margin_tracker.core.errors import register_error_handlers
from margin_tracker.core.logging import setup_logging
from fastapi.middleware.cors import CORSMiddleware
from margin_tracker.api.api import api_router
from margin_tracker.api.middleware import AuthGateMiddleware

setup_logging()

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
    openapi_url=f"{settings.API_PREFIX}/openapi.json"
)

# Set up CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify actual origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Redirects between protected pages and the login page
app.add_middleware(AuthGateMiddleware)

register_error_handlers(app)

app.include_router(api_router, prefix=settings.API_PREFIX)
