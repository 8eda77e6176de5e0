from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Optional

ChunkCallback = Callable[[str], None]


class Generator(ABC):
    @abstractmethod
    async def generate(
        self,
        prompt: str,
        options: Optional[Dict[str, Any]] = None,
        on_chunk: Optional[ChunkCallback] = None,
    ) -> str:
        """Return the full answer text. ``on_chunk`` receives partial text as it streams."""
        ...
