import os, sys
import tempfile
from pathlib import Path

# Add src/ to sys.path for imports
sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

# Offline defaults: no model server, throwaway database
os.environ.setdefault("EMB_BACKEND", "hashing")
os.environ.setdefault("EMB_DIM", "384")
os.environ.setdefault("RAG_TOP_K", "5")
os.environ.setdefault("RAG_MIN_SCORE", "0.5")
os.environ.setdefault("OPENAI_API_KEY", "test-openai")
os.environ.setdefault(
    "SQL_DB_PATH", str(Path(tempfile.gettempdir()) / "offline_rag_test.db")
)
