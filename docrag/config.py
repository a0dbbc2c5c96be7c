"""Application configuration with sensible defaults."""
import os
from pathlib import Path

# Paths
BASE_DIR = Path(__file__).parent.parent
DATA_DIR = Path(os.getenv("DOCRAG_DATA_DIR", str(BASE_DIR / "data")))
DOCUMENTS_DIR = Path(os.getenv("DOCUMENTS_DIR", str(DATA_DIR / "documents")))
STORE_DIR = Path(os.getenv("STORE_DIR", str(DATA_DIR / "store")))
PROMPTS_DIR = Path(__file__).parent / "prompts"
PROMPT_TEMPLATE_PATH = Path(
    os.getenv("PROMPT_TEMPLATE_PATH", str(PROMPTS_DIR / "answer.txt"))
)

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_TIMEOUT = float(os.getenv("OLLAMA_TIMEOUT", "60.0"))
CHAT_MODEL = os.getenv("CHAT_MODEL", "llama3.2")
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "nomic-embed-text")

# Chunking parameters (in word tokens)
CHUNK_TARGET_SIZE = int(os.getenv("CHUNK_TARGET_SIZE", "512"))
CHUNK_OVERLAP = int(os.getenv("CHUNK_OVERLAP", "50"))
CHUNK_MIN_SIZE = int(os.getenv("CHUNK_MIN_SIZE", "5"))
CHUNK_MAX_SIZE = int(os.getenv("CHUNK_MAX_SIZE", "1000"))
EMBED_BATCH_SIZE = int(os.getenv("EMBED_BATCH_SIZE", "10"))

# Retrieval parameters
RETRIEVAL_TOP_K = int(os.getenv("RETRIEVAL_TOP_K", "5"))
RETRIEVAL_MIN_SCORE = float(os.getenv("RETRIEVAL_MIN_SCORE", "0.7"))  # cosine, [-1, 1]

# HTTP
API_PREFIX = os.getenv("API_PREFIX", "")
MAX_QUESTION_LENGTH = int(os.getenv("MAX_QUESTION_LENGTH", "2000"))
MAX_SEARCH_TOP_K = int(os.getenv("MAX_SEARCH_TOP_K", "100"))
CORS_ALLOW_ORIGIN = os.getenv("CORS_ALLOW_ORIGIN", "*")
SERVICE_NAME = os.getenv("SERVICE_NAME", "docrag")

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
