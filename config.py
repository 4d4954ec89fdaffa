import os
from dotenv import load_dotenv

# Load .env from project root (same folder as main.py)
load_dotenv()

DEBUG = os.getenv("DEBUG", "False").lower() == "true"
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()

SECRET_KEY = os.getenv("SECRET_KEY", "vitalnotes-dev-secret")
SESSION_SECRET = os.getenv("SESSION_SECRET", SECRET_KEY)

DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("DATABASE_URI") or "sqlite:///./vitalnotes.db"
DATABASE_PATH = os.getenv("DATABASE_PATH", DATABASE_URL.replace("sqlite:///", "", 1) if DATABASE_URL.startswith("sqlite:///") else "vitalnotes.db")

# Blob storage (user uploads)
STORAGE_DIR = os.getenv("STORAGE_DIR", os.path.join(".", "storage", "user-uploads"))
SIGNED_URL_TTL_SECONDS = int(os.getenv("SIGNED_URL_TTL_SECONDS", "3600"))

# External generation service (OpenAI-compatible)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1")
REPORT_MODEL = os.getenv("REPORT_MODEL", "o4-mini-2025-04-16")
CLASSIFY_MODEL = os.getenv("CLASSIFY_MODEL", "gpt-4o-2024-11-20")
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))

# Report context budget, in cost units (characters / 4).
# The allowances were tuned against that approximation; keep them together.
MAX_CONTEXT_TOKENS_APPROX = int(os.getenv("MAX_CONTEXT_TOKENS_APPROX", "20000"))
IMAGE_TOKEN_COST = int(os.getenv("IMAGE_TOKEN_COST", "800"))
PDF_TOKEN_COST = int(os.getenv("PDF_TOKEN_COST", "1500"))
MAX_IMAGE_EDGE_PX = int(os.getenv("MAX_IMAGE_EDGE_PX", "1024"))
