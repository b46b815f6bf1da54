
from pydantic_settings import BaseSettings
from functools import lru_cache

from typing import List

class Settings(BaseSettings):
    API_V1_STR: str = "/api/v1"
    PROJECT_NAME: str = "Knowledge Hub API"
    BACKEND_CORS_ORIGINS: List[str] = []
    LOG_LEVEL: str = "INFO"

    # Database
    POSTGRES_USER: str = ""
    POSTGRES_PASSWORD: str = ""
    POSTGRES_SERVER: str = ""
    POSTGRES_DB: str = ""

    DATABASE_URL: str = ""

    # Google (embedding + generation)
    GOOGLE_API_KEY: str = ""
    EMBEDDING_MODEL: str = "models/text-embedding-004"
    EMBEDDING_DIM: int = 768
    GENERATION_PROVIDER: str = "gemini"  # "gemini" | "ollama"
    GENERATION_MODEL: str = "gemini-2.0-flash"

    # Local LLM (Ollama)
    OLLAMA_BASE_URL: str = ""
    LOCAL_MODEL_NAME: str = ""
    OLLAMA_TIMEOUT: float = 120.0

    # Ingestion
    CHUNK_SIZE: int = 1000
    CHUNK_OVERLAP: int = 200
    EMBED_BATCH_SIZE: int = 5
    MAX_UPLOAD_BYTES: int = 10 * 1024 * 1024

    # Retrieval
    CHAT_MATCH_THRESHOLD: float = 0.5
    CHAT_MATCH_COUNT: int = 5
    CHAT_TEMPERATURE: float = 0.3
    TOOL_MATCH_THRESHOLD: float = 0.7
    TOOL_MATCH_COUNT: int = 3

    # MCP gateway
    MCP_KEEPALIVE_SECONDS: float = 15.0

    # Rate limits (slowapi syntax)
    CHAT_RATE_LIMIT: str = "20/minute"
    UPLOAD_RATE_LIMIT: str = "10/minute"

    class Config:
        case_sensitive = True
        env_file = ".env"
        extra = "ignore" # Bỏ qua các biến thừa trong .env không được khai báo

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        # Nếu chưa có DATABASE_URL, tự động build từ các biến thành phần
        if not self.DATABASE_URL and self.POSTGRES_SERVER:
            from urllib.parse import quote_plus
            encoded_pwd = quote_plus(self.POSTGRES_PASSWORD)
            self.DATABASE_URL = f"postgresql+asyncpg://{self.POSTGRES_USER}:{encoded_pwd}@{self.POSTGRES_SERVER}/{self.POSTGRES_DB}"

        # Local dev fallback khi không cấu hình Postgres
        if not self.DATABASE_URL:
            self.DATABASE_URL = "sqlite+aiosqlite:///./knowledge_hub.db"

        # Đảm bảo dùng asyncpg driver
        if self.DATABASE_URL.startswith("postgresql://"):
            self.DATABASE_URL = self.DATABASE_URL.replace("postgresql://", "postgresql+asyncpg://", 1)


@lru_cache()
def get_settings():
    return Settings()
