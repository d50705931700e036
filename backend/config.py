import os
from typing import List, Optional

from dotenv import load_dotenv

# Load environment variables from .env in the project root (optional, good for local dev)
dotenv_path = os.path.join(os.path.dirname(__file__), '..', '.env')
if os.path.exists(dotenv_path):
    load_dotenv(dotenv_path=dotenv_path)


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"{name} must be a number, got {raw!r}")


class Settings:
    """Process configuration, read once from the environment."""

    def __init__(self):
        self.APP_ENV = os.getenv("APP_ENV", "development")

        # --- Database ---
        self.DATABASE_URL: Optional[str] = os.getenv("DATABASE_URL")
        self.DB_USER = os.getenv("DB_USER")
        self.DB_PASSWORD = os.getenv("DB_PASSWORD")
        self.DB_HOST = os.getenv("DB_HOST", "127.0.0.1")
        self.DB_PORT = _int("DB_PORT", 5432)
        self.DB_NAME = os.getenv("DB_NAME")
        self.DB_POOL_SIZE = _int("DB_POOL_SIZE", 10)
        self.DB_POOL_TIMEOUT = _int("DB_POOL_TIMEOUT", 5)
        self.CREATE_TABLES = os.getenv("CREATE_TABLES", "0").lower() in ("1", "true", "yes")

        # --- SSH tunnel (optional) ---
        self.SSH_HOST = os.getenv("SSH_HOST")
        self.SSH_PORT = _int("SSH_PORT", 22)
        self.SSH_USERNAME = os.getenv("SSH_USERNAME")
        self.SSH_PASSWORD = os.getenv("SSH_PASSWORD")
        self.SSH_PRIVATE_KEY = os.getenv("SSH_PRIVATE_KEY")

        # --- Sessions ---
        self.AUTH_SECRET = os.getenv("AUTH_SECRET") or os.getenv("SECRET_KEY")
        self.SESSION_DAYS = _int("SESSION_DAYS", 7)

        # --- HTTP ---
        self.CORS_ORIGINS: List[str] = [
            o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()
        ]

        # --- Personalized recommendations ---
        self.RECOMMENDER_SIMILARITY = os.getenv("RECOMMENDER_SIMILARITY", "agreement").lower()
        self.RECOMMENDER_NEIGHBOURS = _int("RECOMMENDER_NEIGHBOURS", 20)
        self.RECOMMENDER_BOOST = _float("RECOMMENDER_BOOST", 0.1)

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.lower() == "production"

    @property
    def use_ssh_tunnel(self) -> bool:
        return bool(self.SSH_HOST)

    def database_url(self, port_override: Optional[int] = None) -> str:
        """
        Resolve the SQLAlchemy URL. DATABASE_URL wins; otherwise the URL is built
        from the DB_* parts. When a tunnel is up, the host becomes the local end.
        """
        if self.DATABASE_URL and port_override is None:
            return self.DATABASE_URL
        if not all([self.DB_USER, self.DB_NAME]):
            raise ValueError(
                "Database is not configured. Set DATABASE_URL or DB_USER/DB_PASSWORD/DB_HOST/DB_PORT/DB_NAME."
            )
        host = "127.0.0.1" if port_override is not None else self.DB_HOST
        port = port_override if port_override is not None else self.DB_PORT
        password = self.DB_PASSWORD or ""
        return f"postgresql+psycopg2://{self.DB_USER}:{password}@{host}:{port}/{self.DB_NAME}"


settings = Settings()
