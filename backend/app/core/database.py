"""
Configurazione Database - SQLAlchemy 2.0 Async
Progetto: Riconciliazione Versamenti (Deposit Reconciliation)

Il ledger è l'unica risorsa mutabile condivisa: fatture e note di credito
arrivano dall'importazione vendite, versamenti e allocazioni da questo
servizio. Qui vivono engine, session factory e le dependency FastAPI.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.core.config import settings

logger = logging.getLogger(__name__)


def _engine_options(database_url: str) -> dict[str, Any]:
    """Opzioni dell'engine; SQLite in memoria non accetta il dimensionamento del pool."""
    options: dict[str, Any] = {"echo": settings.debug, "pool_pre_ping": True}
    if ":memory:" not in database_url:
        options["pool_size"] = settings.db_pool_size
        options["max_overflow"] = settings.db_max_overflow
    return options


engine: AsyncEngine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

# expire_on_commit=False: i service leggono gli oggetti dopo il commit
# senza lazy load (non ammesso nelle sessioni async)
AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


@asynccontextmanager
async def session_scope() -> AsyncGenerator[AsyncSession, None]:
    """
    Sessione con rollback automatico su eccezione.

    Usata direttamente dai task in background (commit delle allocazioni),
    che sopravvivono alla richiesta HTTP che li ha avviati.
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Dependency FastAPI: una sessione per richiesta."""
    async with session_scope() as session:
        yield session


async def init_db() -> None:
    """Verifica all'avvio che il ledger sia raggiungibile."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        logger.error("Ledger non raggiungibile (%s): %s", engine.url.render_as_string(hide_password=True), e)
        raise
    logger.info("Connessione al ledger stabilita (%s)", engine.dialect.name)


async def close_db() -> None:
    await engine.dispose()
    logger.info("Connessioni al ledger chiuse")
