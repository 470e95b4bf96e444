from __future__ import annotations

from abc import ABC
from typing import Any

from loguru import logger

from holder_rewards.core.clients.ChainClient import ChainClient


class BaseAdapter(ABC):
    """Read-only on-chain adapter bound to an injected :class:`ChainClient`."""

    adapter_type: str | None = None

    def __init__(
        self, name: str, chain: ChainClient, config: dict[str, Any] | None = None
    ):
        self.name = name
        self.chain = chain
        self.config = config or {}
        self.logger = logger.bind(adapter=self.__class__.__name__)

    async def close(self) -> None:
        pass
