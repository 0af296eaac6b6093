"""Application configuration"""

import logging
from dotenv import load_dotenv

from .loader import load_raw_config
from .core import Core
from .rag import Rag
from .local_llm import LocalLLM

load_dotenv()

LOG_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s]: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

logging.basicConfig(format=LOG_FORMAT, datefmt=DATE_FORMAT, level=logging.INFO)
logging.getLogger("httpx").setLevel(logging.WARNING)

_RAW_CONFIG = load_raw_config()

core = Core(_RAW_CONFIG)
rag = Rag(_RAW_CONFIG)
local_llm = LocalLLM(_RAW_CONFIG)


class Config:
    core = core
    rag = rag
    local_llm = local_llm


__all__ = ["core", "rag", "local_llm", "Config"]
