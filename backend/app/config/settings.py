"""
Configuration settings for EduTrack online tests.
"""

import os
from typing import List

from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Application settings loaded from environment."""

    # Database
    MONGODB_URL: str = os.environ.get("MONGODB_URI", "mongodb://localhost:27017")
    DATABASE_NAME: str = os.environ.get("DATABASE_NAME", "edutrack")

    # Server
    PORT: int = int(os.environ.get("PORT", 8001))
    HOST: str = os.environ.get("HOST", "0.0.0.0")
    DEBUG: bool = os.environ.get("DEBUG", "False").lower() == "true"
    CORS_ORIGINS: List[str] = os.environ.get("CORS_ORIGINS", "*").split(",")

    # Sessions
    SESSION_COOKIE_NAME: str = os.environ.get("SESSION_COOKIE_NAME", "session_token")

    # Online tests
    DEFAULT_DURATION_MINUTES: int = int(os.environ.get("DEFAULT_DURATION_MINUTES", 60))
    DEFAULT_PASSING_PERCENTAGE: float = float(os.environ.get("DEFAULT_PASSING_PERCENTAGE", 40))
    DEFAULT_TIMEZONE_OFFSET: str = os.environ.get("DEFAULT_TIMEZONE_OFFSET", "+05:30")
    MAX_RESUMES: int = int(os.environ.get("MAX_RESUMES", 1))
    LEADERBOARD_SIZE: int = 10

    # Sweeper
    SWEEP_INTERVAL_SECONDS: int = int(os.environ.get("SWEEP_INTERVAL_SECONDS", 60))

    # Logging
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")

    def validate(self):
        """Validate critical settings."""
        if not self.MONGODB_URL:
            raise ValueError("MONGODB_URI environment variable not set")
        if self.DEFAULT_DURATION_MINUTES <= 0:
            raise ValueError("DEFAULT_DURATION_MINUTES must be positive")
        if not 0 <= self.DEFAULT_PASSING_PERCENTAGE <= 100:
            raise ValueError("DEFAULT_PASSING_PERCENTAGE must be between 0 and 100")
        return True


# Global settings instance
settings = Settings()
