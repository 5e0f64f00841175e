import os
import sys
from pathlib import Path


# Keep tests deterministic and local-only.
os.environ["PAPERQC_SKIP_DOTENV"] = "1"
os.environ["PAPERQC_STORE_BACKEND"] = "db"
os.environ["PAPERQC_STORE_LATENCY_MS"] = "0"
os.environ["PAPERQC_OCR_BACKEND"] = "mock"
os.environ["PAPERQC_LLM_BACKEND"] = "mock"
os.environ["PAPERQC_LLM_TIMEOUT_SECONDS"] = "5"
os.environ["PAPERQC_LLM_MAX_RETRIES"] = "0"
os.environ["GEMINI_API_KEY"] = ""

PROJECT_ROOT = Path(__file__).resolve().parents[1]
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

TEST_DB_PATH = PROJECT_ROOT / "test_paperqc.db"
os.environ["DATABASE_URL"] = f"sqlite:///{TEST_DB_PATH}"
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()
