import logging
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from config import CORS_ORIGINS, WATCH_MODE
from routers.webhook import router as webhook_router

# --------------------------------------------------------------------------
# --- Configuration & Setup ---
# --------------------------------------------------------------------------

logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")

app = FastAPI(
    title="Render Orchestrator",
    description="Renders generated scripts into videos and previews and stores the results."
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# --------------------------------------------------------------------------
# --- API Endpoints ---
# --------------------------------------------------------------------------

app.include_router(webhook_router)

if WATCH_MODE:
    logging.info("👀 WATCH mode: webhooks are ignored, queued videos are picked up by the Celery beat poller")
