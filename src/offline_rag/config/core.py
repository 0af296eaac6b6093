import os
from pathlib import Path

_DATA_DIR = Path(__file__).resolve().parent.parent.parent.parent / "data"

_DEFAULT_REFUSAL = (
    "I don't have any information about that in my knowledge base, "
    "so I can't answer it."
)


class Core:
    def __init__(self, config: dict | None = None) -> None:
        cfg = (config or {}).get("offlinerag", {})
        folders_cfg = cfg.get("folders", {})

        self.DEFAULT_COLLECTION: str = str(
            cfg.get("default_collection", os.getenv("DEFAULT_COLLECTION", "default"))
        )
        self.INBOX_DIR: str = str(
            folders_cfg.get("inbox", os.getenv("INBOX_DIR", str(_DATA_DIR / "inbox")))
        )
        self.ARCHIVE_DIR: str = str(
            folders_cfg.get("archive", os.getenv("ARCHIVE_DIR", str(_DATA_DIR / "archive")))
        )
        self.REFUSAL_MESSAGE: str = str(
            cfg.get("refusal_message", os.getenv("REFUSAL_MESSAGE", _DEFAULT_REFUSAL))
        )
