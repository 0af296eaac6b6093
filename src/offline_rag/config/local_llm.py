import os


class LocalLLM:
    def __init__(self, config: dict | None = None) -> None:
        llm_cfg = (config or {}).get("offlinerag", {}).get("local_llm", {})
        self.LOCAL_MODEL_ID: str = str(llm_cfg.get("local_model_id", os.getenv("LOCAL_MODEL_ID", "tinyllama")))
        self.LOCAL_SERVER_URL: str = str(
            llm_cfg.get("local_server_url", os.getenv("LOCAL_SERVER_URL", "http://localhost:11434"))
        )
        self.OPENAI_API_KEY: str | None = os.getenv(str(llm_cfg.get("openai_key_env", "OPENAI_API_KEY")))
