"""Runtime configuration read from the environment."""
import os

# Use PostgreSQL in production (from DATABASE_URL env var), SQLite locally
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./token_registry.db")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Attribute validation limits
MAX_ATTRIBUTES = int(os.getenv("MAX_ATTRIBUTES", "20"))
MAX_KEY_LENGTH = int(os.getenv("MAX_KEY_LENGTH", "64"))
MAX_TEXT_LENGTH = int(os.getenv("MAX_TEXT_LENGTH", "256"))
MAX_DESCRIPTION_LENGTH = int(os.getenv("MAX_DESCRIPTION_LENGTH", "500"))
