# main.py
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from config.logging_config import configure_logging
from config.settings import get_settings
from middleware.rate_limit import limiter
from middleware.request_logging import RequestLoggingMiddleware
from routers.billing_routes import router as billing_router
from routers.stripe_webhook_routes import router as stripe_webhook_router

configure_logging()

app = FastAPI(title="Role-play Training Billing")

origins = get_settings().cors_origins or ["http://localhost:5173"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["authorization", "x-client-info", "apikey", "content-type", "stripe-signature"],
    max_age=86400,
)
app.add_middleware(RequestLoggingMiddleware)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)

# Include routers
app.include_router(stripe_webhook_router)
app.include_router(billing_router)


@app.get("/health")
def health():
    return {"status": "ok"}


# db startup
from database import Base, engine
import models  # this triggers models/__init__.py which imports all tables

Base.metadata.create_all(bind=engine)
