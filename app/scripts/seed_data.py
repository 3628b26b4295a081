import os
import sys
import asyncio

# Needed to import core, models and services when run as a script
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.db import get_session_factory, init_models
from schemas.port import PortCreate
from services.port_service import PortService

PORTS = [
    {"instance_url": "https://port-01.example.com", "server_region": "eu-west", "db_host": "db-01.internal", "db_name": "port01"},
    {"instance_url": "https://port-02.example.com", "server_region": "eu-west", "db_host": "db-02.internal", "db_name": "port02"},
    {"instance_url": "https://port-03.example.com", "server_region": "us-east", "db_host": "db-03.internal", "db_name": "port03"},
]

async def seed():
    await init_models()
    service = PortService(get_session_factory())

    result = await service.bulk_import([PortCreate(**p).model_dump() for p in PORTS], operator_id="seed")
    print(f"Seeded {result.imported} ports ({result.failed} skipped)")

if __name__ == "__main__":
    asyncio.run(seed())
