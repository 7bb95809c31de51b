import pathlib
from functools import lru_cache
from typing import Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from sqlalchemy.engine import URL, make_url

# Load environment variables from .env file
# Try multiple paths to find .env file
project_root = pathlib.Path(__file__).parent.parent.parent.parent
env_paths = [
    project_root / ".env",
    pathlib.Path.cwd() / ".env",
]

for env_path in env_paths:
    if env_path.exists():
        load_dotenv(env_path)
        break


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=[str(p) for p in env_paths if p.exists()],
        case_sensitive=False,
        extra="ignore",  # Allow extra environment variables
        frozen=True,
    )

    # Upstream admin panel
    redemption_api_base_url: str = Field(...)
    admin_username: str = Field(...)
    admin_password: str = Field(...)
    upstream_timeout_seconds: float = Field(default=30.0)

    # Shared secret expected in the x-api-key header
    api_key: str = Field(...)

    # Database; DATABASE_URL wins over the individual DB_* parts
    database_url: Optional[str] = Field(default=None)
    db_driver: str = Field(default="mysql+aiomysql")
    db_host: str = Field(default="localhost")
    db_port: int = Field(default=3306)
    db_user: str = Field(default="root")
    db_password: str = Field(default="")
    db_name: str = Field(default="voapi_relay")
    db_pool_size: int = Field(default=10)

    host: str = Field(default="0.0.0.0")
    port: int = Field(default=3000)
    debug: bool = Field(default=False)
    log_dir: Optional[str] = Field(default=None)

    @property
    def upstream_root(self) -> str:
        return self.redemption_api_base_url.rstrip("/")

    @property
    def sqlalchemy_url(self) -> URL:
        """Connection URL for the async engine."""
        if self.database_url:
            return make_url(self.database_url)
        return URL.create(
            self.db_driver,
            username=self.db_user,
            password=self.db_password or None,
            host=self.db_host,
            port=self.db_port,
            database=self.db_name,
        )


@lru_cache
def get_settings() -> Settings:
    """Build the process-wide settings once."""
    return Settings()
