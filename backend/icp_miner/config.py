"""Application configuration."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""
    
    # Environment
    ENVIRONMENT: str = "development"
    LOG_LEVEL: str = "INFO"
    
    # Database
    DATABASE_URL: str = "postgresql+asyncpg://leadgen:leadgen123@db:5432/leadgen"
    
    # External collaborators
    FINDER_API_URL: str = "http://finder:3000"
    FINDER_API_KEY: Optional[str] = None
    EMAIL_GENERATION_URL: str = "http://agents:3000/api/agents/sales/leadContactGeneration"
    EMAIL_VALIDATION_URL: str = "http://agents:3000/api/integrations/neverbounce/validate"
    SERVICE_API_KEY: Optional[str] = None
    
    # Timeouts & retries (applied to every external call)
    EXTERNAL_CALL_TIMEOUT_SECONDS: float = 30.0
    EXTERNAL_CALL_MAX_ATTEMPTS: int = 3
    RETRY_BACKOFF_MIN_SECONDS: float = 1.0
    RETRY_BACKOFF_MAX_SECONDS: float = 10.0
    PAGE_TIMEOUT_SECONDS: float = 600.0
    
    # ICP mining defaults (overridable per invocation)
    ICP_MINING_MAX_PAGES: int = 20
    ICP_MINING_PAGE_SIZE: int = 10  # Finder API page size
    ICP_MINING_TARGET_LEADS: int = 40
    ICP_MINING_PENDING_LIMIT: int = 50
    PAGE_WORKERS: int = 4
    
    # Scheduler
    ENABLE_SCHEDULER: bool = True
    MINING_INTERVAL_MINUTES: int = 15
    
    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
