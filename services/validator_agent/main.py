"""
Agente validador - punto de entrada del dispositivo

Lee escaneos por stdin (los lectores QR USB actúan como teclado) y muestra
el resultado. Uso:

    python -m services.validator_agent.main --event-id <uuid>
"""
import argparse
import asyncio
import json
import logging
import sys

from shared.config import settings
from services.validator_agent.services.agent import ValidatorAgent
from services.validator_agent.services.offline_queue import OfflineQueue
from services.validator_agent.services.remote_client import RemoteValidatorClient

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger(__name__)


async def run(event_id: str, api_url: str, offline_db: str):
    queue = OfflineQueue(offline_db)
    client = RemoteValidatorClient(base_url=api_url)
    agent = ValidatorAgent(queue, client, event_id=event_id)

    await agent.start()
    loop = asyncio.get_running_loop()
    try:
        while True:
            line = await loop.run_in_executor(None, sys.stdin.readline)
            if not line:
                break
            command = line.strip()
            if not command:
                continue
            if command == ":status":
                print(json.dumps(await agent.status(), ensure_ascii=False))
            elif command == ":sync":
                print(json.dumps(await agent.reconciler.sync_now(), ensure_ascii=False))
            else:
                result = await agent.scan(command)
                print(json.dumps(result, ensure_ascii=False, default=str))
    finally:
        await agent.stop()


def main():
    parser = argparse.ArgumentParser(description="Agente validador de entradas")
    parser.add_argument("--event-id", default=settings.VALIDATOR_EVENT_ID, help="Evento a validar")
    parser.add_argument("--api-url", default=settings.VALIDATOR_API_URL, help="URL del backend")
    parser.add_argument("--offline-db", default=settings.OFFLINE_DB_URL, help="URL de la base offline local")
    args = parser.parse_args()

    if not args.event_id:
        parser.error("Falta --event-id (o VALIDATOR_EVENT_ID)")
    if not settings.VALIDATOR_API_TOKEN:
        logger.warning("VALIDATOR_API_TOKEN no configurado, el backend rechazará las validaciones")

    try:
        asyncio.run(run(args.event_id, args.api_url, args.offline_db))
    except KeyboardInterrupt:
        logger.info("Agente detenido")


if __name__ == "__main__":
    main()
