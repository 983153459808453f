from pydantic_settings import BaseSettings
from typing import List, Optional
from urllib.parse import urlparse

class Settings(BaseSettings):
    # Basic settings
    PROJECT_NAME: str = "fedblog"
    API_V1_STR: str = "/api/v1"

    # Site identity
    BASE_URL: str = "http://localhost:3000"
    FEDIVERSE_DOMAIN: Optional[str] = None
    FEDIVERSE_USERNAME: str = "blog"
    FEDIVERSE_DISPLAY_NAME: str = "Blog & Wiki"
    FEDIVERSE_DESCRIPTION: str = "A blog and wiki with ActivityPub support"

    # Storage settings
    DATA_DIR: str = "./activitypub-data"
    ENV_FILE: str = ".env"
    CONTENT_FILE: Optional[str] = None

    # ActivityPub settings
    INCLUDE_WIKI_IN_ACTIVITYPUB: bool = True
    ACTIVITY_LOG_LIMIT: int = 1000
    KEY_LOCK_TIMEOUT: float = 10.0

    # Delivery settings (seconds)
    DELIVERY_TIMEOUT: float = 10.0
    BROADCAST_DELAY: float = 0.1
    FOLLOW_PUSH_DELAY: float = 0.3
    FOLLOW_PUSH_INITIAL_DELAY: float = 1.0
    FOLLOW_PUSH_BLOG_LIMIT: int = 3
    FOLLOW_PUSH_WIKI_LIMIT: int = 2
    USER_AGENT: str = "fedblog/1.0"

    # CORS settings
    ALLOWED_HOSTS: List[str] = ["*"]

    # Logging
    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"

    @property
    def base_url(self) -> str:
        return self.BASE_URL.rstrip("/")

    @property
    def domain(self) -> str:
        """Domain used in acct: handles; falls back to the BASE_URL host."""
        if self.FEDIVERSE_DOMAIN:
            return self.FEDIVERSE_DOMAIN
        return urlparse(self.base_url).hostname or "localhost"

settings = Settings()
