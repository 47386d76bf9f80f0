# backend/tilerelay/core/config.py
import logging
from pathlib import Path
from typing import List, Optional
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parents[3]
BACKEND = Path(__file__).resolve().parents[2]
for p in (ROOT / ".env", BACKEND / ".env"):
    if p.exists():
        load_dotenv(p)

CHROME_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/115.0.0.0 Safari/537.36"
)

class Settings(BaseSettings):
    APP_NAME: str = "wplace-tile-relay"
    API_PREFIX: str = "/api"
    HOST: str = "127.0.0.1"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    PROXY_USER_AGENT: str = CHROME_USER_AGENT
    PROXY_TIMEOUT: float = 30.0
    # empty list = open relay
    PROXY_ALLOWED_HOSTS: List[str] = []

    TILE_ORIGIN: str = "https://backend.wplace.live/files/s0/tiles"
    WORKER_PROXY_BASE_URL: str = "http://127.0.0.1:8000"
    WORKER_INCLUDE_BLOB: bool = True

    model_config = SettingsConfigDict(
        env_file=[str(ROOT / ".env"), str(BACKEND / ".env")],
        env_file_encoding="utf-8"
    )

settings = Settings()


def configure_logging(level: Optional[str] = None) -> None:
    logging.basicConfig(
        level=(level or settings.LOG_LEVEL).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
