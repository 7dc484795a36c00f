from pydantic_settings import BaseSettings
from functools import lru_cache
from typing import Optional

class Settings(BaseSettings):
    app_name: str = "BookSwap API"
    environment: str = "development"
    debug: bool = False
    api_v1_prefix: str = "/api/v1"
    frontend_url: str = "http://localhost:3000"

    # "supabase" in deployed environments, "memory" for local runs
    store_backend: str = "supabase"
    supabase_url: Optional[str] = None
    supabase_key: Optional[str] = None
    supabase_jwt_secret: str = "your-secret-key"
    jwt_algorithm: str = "HS256"
    jwt_audience: str = "authenticated"

    store_timeout_seconds: float = 10.0
    review_min_length: int = 10

    class Config:
        env_file = ".env"

@lru_cache()
def get_settings() -> Settings:
    return Settings()
