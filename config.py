"""
Configuration file for the render orchestrator.
Contains all global constants, read from the environment with local defaults.
"""

import os

# --- Environment ---
APP_ENV = os.getenv("APP_ENV", "production")
PROJECT_ROOT = os.getcwd()
PORT = int(os.getenv("PORT", "8080"))
CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

# --- Database / broker ---
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{os.path.join(PROJECT_ROOT, 'render_jobs.db')}")
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")

# --- Artifact store ---
STORAGE_BACKEND = os.getenv("STORAGE_BACKEND", "supabase")  # supabase | local
SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_SERVICE_KEY = os.getenv("SUPABASE_SERVICE_KEY", "")
STORAGE_BUCKET = os.getenv("STORAGE_BUCKET", "videos")
STORAGE_TIMEOUT = float(os.getenv("STORAGE_TIMEOUT", "60"))
LOCAL_STORAGE_ROOT = os.getenv("LOCAL_STORAGE_ROOT", os.path.join(PROJECT_ROOT, "storage"))
LOCAL_STORAGE_PUBLIC_URL = os.getenv("LOCAL_STORAGE_PUBLIC_URL", "http://localhost:8080/storage")

# --- Renderer ---
RENDERER_ROOT = os.getenv("RENDERER_ROOT", "/app/mulmocast-cli")
RENDERER_COMMAND = os.getenv("RENDERER_COMMAND", "yarn")
WORK_ROOT = os.getenv("WORK_ROOT", os.path.join(RENDERER_ROOT, "temp"))
VIDEO_RENDER_TIMEOUT = int(os.getenv("VIDEO_RENDER_TIMEOUT", "600"))  # 10 minutes
PREVIEW_RENDER_TIMEOUT = int(os.getenv("PREVIEW_RENDER_TIMEOUT", "300"))  # 5 minutes

# --- Moderation recovery ---
MAX_RENDER_ATTEMPTS = int(os.getenv("MAX_RENDER_ATTEMPTS", "5"))
FALLBACK_IMAGE_URL = os.getenv("FALLBACK_IMAGE_URL", "https://placehold.co/1920x1080/ffffff/ffffff/png")
CREDIT_IMAGE_URL = os.getenv("CREDIT_IMAGE_URL", "")

# --- Admission / uploads ---
MAX_CONCURRENT_REQUESTS = int(os.getenv("MAX_CONCURRENT_REQUESTS", "1"))
CONCURRENT_UPLOAD_LIMIT = int(os.getenv("CONCURRENT_UPLOAD_LIMIT", "1"))
UPLOAD_MAX_RETRIES = int(os.getenv("UPLOAD_MAX_RETRIES", "3"))
UPLOAD_BASE_DELAY = float(os.getenv("UPLOAD_BASE_DELAY", "2.0"))

# --- Notifications ---
SLACK_WEBHOOK_URL = os.getenv("SLACK_WEBHOOK_URL", "")

# --- Polling ---
WATCH_MODE = os.getenv("WATCH_MODE", "false").lower() == "true"
POLLING_INTERVAL = float(os.getenv("POLLING_INTERVAL", "5"))
COMPLETION_POLL_ATTEMPTS = int(os.getenv("COMPLETION_POLL_ATTEMPTS", "60"))
COMPLETION_POLL_INTERVAL = float(os.getenv("COMPLETION_POLL_INTERVAL", "10"))

# --- Content safety ---
# Substrings that tend to trip the image model's moderation.
PROBLEMATIC_KEYWORDS = [
    # exposure / sexual
    "全裸", "ヌード", "nude", "naked", "裸", "ヌーディスト", "露出",
    "性的", "sexual", "セックス", "sex", "エロ", "ero", "porn",
    "下着", "underwear", "lingerie", "ビキニ", "bikini",
    # violence / weapons
    "暴力", "violence", "血", "blood", "gore", "流血",
    "銃", "gun", "武器", "weapon", "刃物", "knife",
    "殺", "kill", "murder", "殺人",
    "戦争", "war", "爆発", "explosion",
    # drugs
    "ドラッグ", "drug", "薬物", "麻薬", "cocaine", "marijuana",
    "覚醒剤", "アルコール中毒", "alcoholism",
    # self-harm
    "自殺", "suicide", "自傷", "self-harm",
    "飛び降り", "jump", "首吊り", "hanging",
    # extremism / discrimination
    "テロ", "terror", "terrorism",
    "差別", "discrimination", "人種差別", "racism",
]

MODERATION_MARKERS = [
    "moderation_blocked",
    "Request was rejected as a result of the safety system",
]

CONTENT_TYPES = {
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".json": "application/json",
    ".xml": "application/xml",
    ".mp4": "video/mp4",
    ".mp3": "audio/mp3",
    ".wav": "audio/wav",
}
