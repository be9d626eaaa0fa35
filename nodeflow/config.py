"""
Configuration settings for the Nodeflow engine.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings with environment variable support."""
    
    # Application
    APP_NAME: str = "Nodeflow"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = True
    
    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 8000
    
    # Execution engine
    DEFAULT_ERROR_POLICY: str = "stop"  # "stop" or "continue"
    NODE_TIMEOUT: Optional[float] = None  # Seconds, per node
    NODE_MAX_RETRIES: int = 0
    RETRY_BACKOFF: float = 1.0  # Seconds, multiplied by the attempt number
    
    # Nodes
    AGENT_MAX_TOOL_CALLS: int = 5
    HTTP_TIMEOUT: float = 30.0  # Seconds
    
    # Logging
    LOG_LEVEL: str = "INFO"
    
    class Config:
        env_file = ".env"
        case_sensitive = True


# Global settings instance
settings = Settings()
