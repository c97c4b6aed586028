"""
Service configuration, read from the environment (and a local .env file).

OPENAI_API_KEY is read by the OpenAI SDK itself and is not repeated here.
"""
import os

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()


class Settings(BaseModel):
    vision_model: str = "gpt-4o"
    chat_model: str = "gpt-4o"
    image_model: str = "gpt-image-1"
    image_size: str = "1024x1024"
    log_level: str = "INFO"


def load_settings() -> Settings:
    defaults = Settings()
    return Settings(
        vision_model=os.getenv("ISOGUARD_VISION_MODEL", defaults.vision_model),
        chat_model=os.getenv("ISOGUARD_CHAT_MODEL", defaults.chat_model),
        image_model=os.getenv("ISOGUARD_IMAGE_MODEL", defaults.image_model),
        image_size=os.getenv("ISOGUARD_IMAGE_SIZE", defaults.image_size),
        log_level=os.getenv("ISOGUARD_LOG_LEVEL", defaults.log_level).upper(),
    )
