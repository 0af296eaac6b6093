"""Helpers for interacting with a local Ollama server"""

from offline_rag.config import local_llm
from ollama import AsyncClient
import numpy as np

client = AsyncClient(host=local_llm.LOCAL_SERVER_URL)


def new_client() -> AsyncClient:
    """Return a fresh client; used to fill execution-context pools."""
    return AsyncClient(host=local_llm.LOCAL_SERVER_URL)


async def chat(
        messages: list[dict],
        model = local_llm.LOCAL_MODEL_ID
    ) -> str:
    """
    Send a prompt to the local Ollama server and return its reply.

    Example input messages list[dict]:

    .. code-block:: python
        [
            {
                "role": "system",
                "content": "Answer only from the provided context."
            },
            {
                "role": "user",
                "content": "How do I reset the device?"
            }
        ]
    """
    resp = await client.chat(
        model=model,
        messages=messages
    )

    return resp.message.content.strip()


async def embed_text(text: str, model: str, *, session: AsyncClient | None = None) -> np.ndarray:
    """
    Return a float32 numpy vector for ``text`` from the Ollama embed endpoint.

    :param session: Client to use (a pooled context); defaults to the module client.
    """
    resp = await (session or client).embed(model=model, input=text)
    return np.asarray(resp.embeddings[0], dtype=np.float32)
