"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DATA_DIR", str(BASE_DIR / "data")))
STORAGE_DIR = Path(os.getenv("STORAGE_DIR", str(DATA_DIR / "knowledge-base")))
DB_PATH = Path(os.getenv("DB_PATH", str(DATA_DIR / "fundingiq.sqlite")))
LANGUAGES_PATH = Path(__file__).parent / "languages.yaml"

# Ensure data directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)
STORAGE_DIR.mkdir(parents=True, exist_ok=True)

# AI gateway (OpenAI-compatible chat completions)
GATEWAY_BASE_URL = os.getenv("GATEWAY_BASE_URL", "https://ai.gateway.lovable.dev/v1")
GATEWAY_API_KEY = os.getenv("GATEWAY_API_KEY", "")
CHAT_MODEL = os.getenv("CHAT_MODEL", "google/gemini-2.5-flash")
KEYWORD_MODEL = os.getenv("KEYWORD_MODEL", CHAT_MODEL)
CHAT_TEMPERATURE = float(os.getenv("CHAT_TEMPERATURE", "0.7"))
CHAT_MAX_TOKENS = int(os.getenv("CHAT_MAX_TOKENS", "2048"))
GATEWAY_TIMEOUT = float(os.getenv("GATEWAY_TIMEOUT", "60.0"))

# Object storage
STORAGE_TIMEOUT = float(os.getenv("STORAGE_TIMEOUT", "10.0"))
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(20 * 1024 * 1024)))

# Chunking (character-based, 800/150 is the fixed default)
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", "800"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "150"))
MIN_CHUNK_LENGTH = int(os.getenv("MIN_CHUNK_LENGTH", "50"))

# Keyword synthesis. Only the first KEYWORD_CHUNK_LIMIT chunks of a document
# get keywords; later chunks are indexed for lexical scoring only.
KEYWORD_CHUNK_LIMIT = int(os.getenv("KEYWORD_CHUNK_LIMIT", "20"))
KEYWORD_CONCURRENCY = int(os.getenv("KEYWORD_CONCURRENCY", "4"))
KEYWORD_INPUT_CHARS = int(os.getenv("KEYWORD_INPUT_CHARS", "1500"))

# Retrieval
CANDIDATE_LIMIT = int(os.getenv("CANDIDATE_LIMIT", "500"))
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "5"))

# Query
HISTORY_LIMIT = int(os.getenv("HISTORY_LIMIT", "10"))
MAX_QUERY_LENGTH = int(os.getenv("MAX_QUERY_LENGTH", "2000"))
DEFAULT_LANGUAGE = os.getenv("DEFAULT_LANGUAGE", "en")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
