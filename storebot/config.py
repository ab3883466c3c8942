from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import List, Optional

class Settings(BaseSettings):
    DATABASE_URL: str
    BOT_TOKEN: str
    SECRET_PATH: str = "teststore"
    WEBHOOK_SECRET_TOKEN: Optional[str] = None
    MINI_APP_URL: str = "https://teststorewebv1.netlify.app/"
    # Comma separated, order matters for admin notifications
    ADMIN_IDS: str = ""
    EDIT_SUM_COMMAND: str = "edit"
    TELEGRAM_API_URL: str = "https://api.telegram.org"
    TELEGRAM_TIMEOUT: float = 10.0
    LOG_LEVEL: str = "INFO"
    ENVIRONMENT: str = "development"

    class Config:
        env_file = ".env"

    @property
    def admin_ids(self) -> List[str]:
        return [a.strip() for a in self.ADMIN_IDS.split(",") if a.strip()]

@lru_cache()
def get_settings():
    return Settings()
