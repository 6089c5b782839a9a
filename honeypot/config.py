import os
from typing import Optional
from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_int(name: str) -> Optional[int]:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else None


API_KEY = os.getenv("HONEYPOT_API_KEY", "mySecretKey123")  # Default for testing

# Text-generation providers (a provider without a key is left out of the chain)
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
GROQ_API_KEY = os.getenv("GROQ_API_KEY")
GROQ_MODEL = os.getenv("GROQ_MODEL", "llama-3.3-70b-versatile")

PROVIDER_TIMEOUT_SECONDS = float(os.getenv("PROVIDER_TIMEOUT_SECONDS", "8"))
CLASSIFIER_TIMEOUT_SECONDS = float(os.getenv("CLASSIFIER_TIMEOUT_SECONDS", "8"))

# Runaway guard for the stopping policy
MAX_MESSAGES = int(os.getenv("MAX_MESSAGES", "20"))

CALLBACK_URL = os.getenv(
    "GUVI_CALLBACK_URL",
    "https://hackathon.guvi.in/api/updateHoneyPotFinalResult"
)

EVIDENCE_FILE = os.getenv("EVIDENCE_FILE", os.path.join("data", "evidence.json"))

ENABLE_TYPING_DELAY = _env_bool("ENABLE_TYPING_DELAY", True)
RANDOM_SEED = _env_int("RANDOM_SEED")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
