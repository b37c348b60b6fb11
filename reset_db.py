import argparse
import asyncio
import logging
import os
import sys

# Aggiungi backend/ alla PYTHONPATH per importare app.*
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "backend"))

from app.core.database import AsyncSessionLocal, engine
from app.models import Base, PaymentMethod

logger = logging.getLogger("reset_db")


async def reset(methods: list[tuple[str, str]]) -> None:
    logger.info("Connessione al database, eliminazione tabelle del ledger...")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
        logger.info("Tabelle eliminate. Creazione nuove tabelle...")
        await conn.run_sync(Base.metadata.create_all)

    if methods:
        async with AsyncSessionLocal() as session:
            session.add_all(PaymentMethod(code=code, name=name) for code, name in methods)
            await session.commit()
        logger.info("Creati %d metodi di pagamento", len(methods))

    await engine.dispose()
    logger.info("Database resettato con successo!")


def _parse_method(value: str) -> tuple[str, str]:
    code, _, name = value.partition(":")
    if not code:
        raise argparse.ArgumentTypeError(f"Metodo non valido: {value!r} (atteso codice:nome)")
    return code, name or code


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Ricrea lo schema del ledger allocazioni")
    parser.add_argument(
        "--method",
        action="append",
        type=_parse_method,
        default=[],
        help="Metodo di pagamento da creare, formato codice:nome (ripetibile)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    asyncio.run(reset(args.method))
