"""
Runtime settings read from the environment (and a local .env file).
Values are read once at import; tests override them by passing explicit arguments
to the components instead of mutating these module constants.
"""
import os
from typing import FrozenSet

from dotenv import load_dotenv

load_dotenv()

# Model backend
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("API_KEY")
TEXT_MODEL = os.getenv("TEXT_MODEL", "gemini-2.5-flash")
IMAGE_MODEL = os.getenv("IMAGE_MODEL", "gemini-2.5-flash-image-preview")

# Image patch retry policy: total attempts per change = PATCH_MAX_RETRIES + 1,
# sleeping attempt * PATCH_RETRY_BASE_DELAY seconds between attempts.
PATCH_MAX_RETRIES = int(os.getenv("PATCH_MAX_RETRIES", "2"))
PATCH_RETRY_BASE_DELAY = float(os.getenv("PATCH_RETRY_BASE_DELAY", "1.0"))

# Review estimates
COST_PER_IMAGE_GENERATION = float(os.getenv("COST_PER_IMAGE_GENERATION", "0.025"))
CHARS_PER_TOKEN = 4

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

ACCEPTED_IMAGE_TYPES: FrozenSet[str] = frozenset({"image/png", "image/jpeg"})

# In-memory session store bounds
MAX_SESSIONS = int(os.getenv("MAX_SESSIONS", "100"))
SESSION_IDLE_TTL = float(os.getenv("SESSION_IDLE_TTL", "3600"))
