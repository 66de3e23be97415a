"""Key-value storage available to handlers through the context handle."""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional


class KeyValueStorage(ABC):
    """Async key-value store shared by all requests of a server."""

    @abstractmethod
    async def get(self, key: str) -> Optional[Any]:
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        pass

    async def exists(self, key: str) -> bool:
        return await self.get(key) is not None


class InMemoryStorage(KeyValueStorage):
    """Process-local storage. Contents are lost on restart."""

    def __init__(self) -> None:
        self._data: dict[str, Any] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[Any]:
        return self._data.get(key)

    async def set(self, key: str, value: Any) -> None:
        async with self._lock:
            self._data[key] = value

    async def delete(self, key: str) -> bool:
        async with self._lock:
            return self._data.pop(key, None) is not None

    async def exists(self, key: str) -> bool:
        return key in self._data
