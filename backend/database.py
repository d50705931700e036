import threading
from typing import Any, Dict, List, NamedTuple, Optional

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker

from config import settings
import tunnel

# Base class for SQLAlchemy models (defined in models.py)
Base = declarative_base()

# SessionLocal is bound to the engine the first time the engine is built
SessionLocal = sessionmaker(autocommit=False, autoflush=False)

_engine: Optional[Engine] = None
_lock = threading.Lock()


def _mask(url: str) -> str:
    return "postgresql://.../...@..." if url.startswith("postgresql") else url


def _enable_sqlite_foreign_keys(engine: Engine) -> None:
    @event.listens_for(engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(url: str, **kwargs) -> Engine:
    """Create an engine for `url` with the pool settings this service expects."""
    if url.startswith("sqlite"):
        kwargs.setdefault("connect_args", {"check_same_thread": False})
        engine = create_engine(url, **kwargs)
        _enable_sqlite_foreign_keys(engine)
        return engine
    if url.startswith("postgresql"):
        return create_engine(
            url,
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=0,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_pre_ping=True,
            pool_recycle=1800,
            **kwargs,
        )
    raise ValueError(f"Unsupported database type in DATABASE_URL: {_mask(url)}")


def get_engine() -> Engine:
    """Build the process-wide engine once (opening the SSH tunnel first if configured) and reuse it."""
    global _engine
    if _engine is not None:
        return _engine
    with _lock:
        if _engine is None:
            port = tunnel.ensure_ssh_tunnel() if settings.use_ssh_tunnel else None
            url = settings.database_url(port_override=port)
            print(f"Connecting to database: {_mask(url)}")
            _engine = build_engine(url)
            SessionLocal.configure(bind=_engine)
    return _engine


def shutdown() -> None:
    """Dispose the pool and close the tunnel. Safe to call more than once."""
    global _engine
    with _lock:
        if _engine is not None:
            _engine.dispose()
            _engine = None
            print("Database pool disposed.")
    tunnel.close_ssh_tunnel()


class QueryResult(NamedTuple):
    rows: List[Dict[str, Any]]
    rowcount: int


def query(sql: str, params: Optional[Dict[str, Any]] = None) -> QueryResult:
    """Run one parameterized statement in its own transaction."""
    with get_engine().begin() as conn:
        result = conn.execute(text(sql), params or {})
        rows = [dict(row._mapping) for row in result] if result.returns_rows else []
        return QueryResult(rows=rows, rowcount=result.rowcount)


# --- Dependency to get DB session ---
def get_db():
    """FastAPI dependency that provides a SQLAlchemy database session."""
    get_engine()
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
