import os
from pathlib import Path

_DEFAULT_SQLITE_PATH = (
    Path(__file__).resolve().parent.parent.parent.parent / "data" / "memory.db"
)


def _as_bool(raw) -> bool:
    return str(raw).lower() in ("1", "true", "yes")


class Rag:
    def __init__(self, config: dict | None = None) -> None:
        rag_cfg = (config or {}).get("offlinerag", {}).get("retrieval", {})
        self.SQL_DB_PATH: str = str(rag_cfg.get("sql_db_path", os.getenv("SQL_DB_PATH", str(_DEFAULT_SQLITE_PATH))))

        # Embedding backend: "hashing" (offline bag-of-words), "ollama" or "openai".
        # Switching backends means re-embedding every collection.
        self.EMB_BACKEND: str = str(rag_cfg.get("emb_backend", os.getenv("EMB_BACKEND", "hashing"))).lower()
        self.EMB_MODEL_ID: str = str(rag_cfg.get("emb_model_id", os.getenv("EMB_MODEL_ID", "all-minilm")))
        self.EMB_DIM: int = int(rag_cfg.get("emb_dim", os.getenv("EMB_DIM", "384")))

        # Relevance gate
        self.TOP_K: int = int(rag_cfg.get("top_k", os.getenv("RAG_TOP_K", "5")))
        self.MIN_SCORE: float = float(rag_cfg.get("min_score", os.getenv("RAG_MIN_SCORE", "0.5")))
        self.INCLUDE_SOURCES: bool = _as_bool(rag_cfg.get("include_sources", os.getenv("RAG_INCLUDE_SOURCES", "1")))
        max_chars = rag_cfg.get("max_chars_per_fragment", os.getenv("RAG_MAX_CHARS_PER_FRAGMENT", "0"))
        self.MAX_CHARS_PER_FRAGMENT: int | None = int(max_chars) or None

        # Narrow a query to the categories it names (e.g. "router manual")
        self.DETECT_CATEGORIES: bool = _as_bool(
            rag_cfg.get("detect_categories", os.getenv("RAG_DETECT_CATEGORIES", "0"))
        )

        # Strip tokenizer markers, control characters and mojibake before chunking
        self.CLEAN_TEXT: bool = _as_bool(rag_cfg.get("clean_text", os.getenv("RAG_CLEAN_TEXT", "1")))

        # Chunking
        self.CHUNK_MAX_CHARS: int = int(rag_cfg.get("chunk_max_chars", os.getenv("CHUNK_MAX_CHARS", "1000")))
        self.CHUNK_MIN_CHARS: int = int(rag_cfg.get("chunk_min_chars", os.getenv("CHUNK_MIN_CHARS", "20")))
        self.CHUNK_OVERLAP: int = int(rag_cfg.get("chunk_overlap", os.getenv("CHUNK_OVERLAP", "200")))

        # Pooled model execution contexts
        self.POOL_SIZE: int = int(rag_cfg.get("pool_size", os.getenv("EMB_POOL_SIZE", "3")))
        self.POOL_TIMEOUT: float = float(rag_cfg.get("pool_timeout", os.getenv("EMB_POOL_TIMEOUT", "30")))

        self.MAINTENANCE_INTERVAL: int = int(
            rag_cfg.get("maintenance_interval", os.getenv("MAINTENANCE_INTERVAL", "3600"))
        )
