import logging
import threading
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, Optional

from sqlalchemy import create_engine
from sqlalchemy.engine import URL, Engine

logger = logging.getLogger(__name__)

DEFAULT_SSL_MODE = "require"
DEFAULT_SCHEMA = "public"
DEFAULT_TTL = timedelta(minutes=15)
CONNECT_TIMEOUT_SECONDS = 5


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class ConnectionContext:
    id: str
    host: str
    port: int
    database: str
    username: str
    password: str = field(repr=False, default="")
    ssl_mode: str = DEFAULT_SSL_MODE
    schema: str = DEFAULT_SCHEMA
    created_at: datetime = field(default_factory=_utcnow)

    def identity(self, environment_name: str) -> str:
        return f"{environment_name} {self.host}:{self.port}/{self.database} ({self.username})"


class ConnectionRegistry:
    """In-memory connection store; entries expire after ``ttl``."""

    def __init__(self, ttl: timedelta = DEFAULT_TTL, clock=_utcnow):
        self.ttl = ttl
        self._clock = clock
        self._store: Dict[str, ConnectionContext] = {}
        self._lock = threading.Lock()

    def create(self, host: str, port: int, database: str, username: str, password: str,
               ssl_mode: Optional[str] = None, schema: Optional[str] = None) -> ConnectionContext:
        ctx = ConnectionContext(
            id=f"pt-{uuid.uuid4()}",
            host=host,
            port=port,
            database=database,
            username=username,
            password=password,
            ssl_mode=ssl_mode if ssl_mode and ssl_mode.strip() else DEFAULT_SSL_MODE,
            schema=schema if schema and schema.strip() else DEFAULT_SCHEMA,
            created_at=self._clock(),
        )
        with self._lock:
            self._store[ctx.id] = ctx
        logger.info("Registered connection %s -> %s:%s/%s", ctx.id, host, port, database)
        return ctx

    def get(self, connection_id: str) -> Optional[ConnectionContext]:
        with self._lock:
            ctx = self._store.get(connection_id)
            if ctx is None:
                return None
            if self._expired(ctx):
                del self._store[connection_id]
                logger.info("Connection %s expired", connection_id)
                return None
            return ctx

    def delete(self, connection_id: str) -> bool:
        with self._lock:
            return self._store.pop(connection_id, None) is not None

    def purge_expired(self) -> int:
        with self._lock:
            expired = [cid for cid, ctx in self._store.items() if self._expired(ctx)]
            for cid in expired:
                del self._store[cid]
        return len(expired)

    def _expired(self, ctx: ConnectionContext) -> bool:
        return self._clock() > ctx.created_at + self.ttl


def build_url(ctx: ConnectionContext) -> URL:
    return URL.create(
        "postgresql+psycopg2",
        username=ctx.username,
        password=ctx.password,
        host=ctx.host,
        port=ctx.port,
        database=ctx.database,
    )


def build_engine(ctx: ConnectionContext, connect_timeout: int = CONNECT_TIMEOUT_SECONDS) -> Engine:
    logger.info(
        "Building engine for connection_id=%s host=%s port=%s db=%s user=%s sslmode=%s schema=%s",
        ctx.id, ctx.host, ctx.port, ctx.database, ctx.username, ctx.ssl_mode, ctx.schema,
    )
    return create_engine(
        build_url(ctx),
        future=True,
        pool_pre_ping=True,
        connect_args={"connect_timeout": connect_timeout, "sslmode": ctx.ssl_mode},
    )
