from typing import List, Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # === PUBLIC DATA (not secrets) ===
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Hostel Exchange API"

    # === DATABASE SETTINGS (from .env) ===
    MONGODB_URL: str = Field(
        default="mongodb://localhost:27017/hostel_exchange", description="MongoDB connection string"
    )

    # === APPLICATION SETTINGS ===
    DEBUG: bool = Field(default=False)
    LOG_LEVEL: str = Field(default="INFO")
    ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=60 * 24 * 7, description="JWT lifetime (7 days)")

    # === SECRETS (from .env) ===
    SECRET_KEY: str = Field(default="change-me-in-production", description="Secret key for JWT tokens")

    # === AI SUGGESTIONS ===
    GEMINI_API_KEY: Optional[str] = Field(default=None, description="API key for Gemini suggestions")
    GEMINI_MODEL: str = Field(default="gemini-1.5-flash", description="Gemini model used for suggestions")
    GEMINI_BASE_URL: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta", description="Gemini REST API base URL"
    )
    GEMINI_TIMEOUT: float = Field(default=20.0, description="Timeout for Gemini requests in seconds")

    # === UPLOADS ===
    UPLOAD_PATH: str = Field(default="./uploads", description="Directory for uploaded files")
    MAX_FILE_SIZE: int = Field(default=5 * 1024 * 1024, description="Maximum upload size in bytes")

    # === MATCH REQUESTS ===
    MATCH_REQUEST_TTL_DAYS: int = Field(default=7, description="Days before a pending match request expires")
    APPROVAL_MAX_RETRIES: int = Field(default=3, description="Retries for a conflicting approval write")

    # === WEB APP SETTINGS ===
    FRONTEND_URL: str = Field(default="http://localhost:5173", description="Frontend origin")
    CORS_ORIGINS: str = Field(default="", description="Allowed CORS origins (comma-separated). Empty = frontend only.")

    @property
    def cors_origins_list(self) -> List[str]:
        """Get allowed CORS origins as a list, always including the frontend"""
        origins = [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]
        if self.FRONTEND_URL and self.FRONTEND_URL not in origins:
            origins.append(self.FRONTEND_URL)
        return origins

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
