"""Persistence for locally issued OAuth client registrations."""

import asyncio
import json
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import aiofiles

from shared.logging import get_logger
from shared.models import ClientRegistration

logger = get_logger(__name__)


class ClientStore(ABC):
    """
    Key-value store of client registrations.

    ``store`` is an upsert and ``remove`` is idempotent.
    """

    @abstractmethod
    async def store(self, client_id: str, registration: ClientRegistration) -> None:
        pass

    @abstractmethod
    async def get(self, client_id: str) -> Optional[ClientRegistration]:
        pass

    @abstractmethod
    async def remove(self, client_id: str) -> None:
        pass


class InMemoryClientStore(ClientStore):
    """Registrations held in process memory."""

    def __init__(self) -> None:
        self._clients: dict[str, ClientRegistration] = {}

    async def store(self, client_id: str, registration: ClientRegistration) -> None:
        self._clients[client_id] = registration.model_copy(deep=True)

    async def get(self, client_id: str) -> Optional[ClientRegistration]:
        registration = self._clients.get(client_id)
        return registration.model_copy(deep=True) if registration else None

    async def remove(self, client_id: str) -> None:
        self._clients.pop(client_id, None)


class FileClientStore(ClientStore):
    """
    Registrations persisted as one JSON document.

    The file is read once and rewritten after every change.
    """

    def __init__(self, path: str) -> None:
        self.path = Path(path)
        self._clients: Optional[dict[str, ClientRegistration]] = None
        self._lock = asyncio.Lock()

    async def _load(self) -> dict[str, ClientRegistration]:
        if self._clients is not None:
            return self._clients

        clients: dict[str, ClientRegistration] = {}
        if self.path.exists():
            async with aiofiles.open(self.path, "r") as f:
                raw = await f.read()
            data = json.loads(raw) if raw.strip() else {}
            clients = {
                client_id: ClientRegistration.model_validate(record)
                for client_id, record in data.items()
            }
            logger.info("Client registrations loaded", path=str(self.path), count=len(clients))

        self._clients = clients
        return clients

    async def _save(self, clients: dict[str, ClientRegistration]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        document = {client_id: r.model_dump(mode="json") for client_id, r in clients.items()}
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        async with aiofiles.open(tmp_path, "w") as f:
            await f.write(json.dumps(document, indent=2))
        tmp_path.replace(self.path)

    async def store(self, client_id: str, registration: ClientRegistration) -> None:
        async with self._lock:
            clients = dict(await self._load())
            clients[client_id] = registration.model_copy(deep=True)
            await self._save(clients)
            self._clients = clients

    async def get(self, client_id: str) -> Optional[ClientRegistration]:
        async with self._lock:
            clients = await self._load()
        registration = clients.get(client_id)
        return registration.model_copy(deep=True) if registration else None

    async def remove(self, client_id: str) -> None:
        async with self._lock:
            clients = dict(await self._load())
            if clients.pop(client_id, None) is not None:
                await self._save(clients)
                self._clients = clients
