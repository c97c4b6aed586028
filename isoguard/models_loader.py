import logging
from typing import Optional

from openai import AsyncOpenAI

logger = logging.getLogger("models_loader")


class ClientRegistry:
    """Creates the provider client on first use and keeps it for the process."""

    def __init__(self):
        self._openai: Optional[AsyncOpenAI] = None

    def get_openai(self) -> Optional[AsyncOpenAI]:
        if self._openai is None:
            try:
                self._openai = AsyncOpenAI()
                logger.info("Initialized OpenAI client")
            except Exception as e:
                # Missing OPENAI_API_KEY lands here; callers report it per request
                logger.exception("OpenAI client init failed: %s", e)
                self._openai = None
        return self._openai
