import asyncio
from typing import Any

from eth_utils import to_checksum_address
from loguru import logger
from web3 import AsyncHTTPProvider, AsyncWeb3

from holder_rewards.core.constants.base import DEFAULT_RPC_MAX_RETRIES, DEFAULT_RPC_TIMEOUT
from holder_rewards.core.errors import ChainReadError, ConfigurationError
from holder_rewards.core.utils.retry import is_transient_rpc_error, retry_async


class ChainClient:
    """Explicitly owned handle to one chain RPC endpoint.

    Components receive the client in their constructor; there is no shared
    module-level web3 instance. Every read goes through :meth:`call`, which
    bounds it with ``timeout_s``, retries transient provider failures and
    turns anything else into :class:`ChainReadError`.
    """

    def __init__(
        self,
        rpc_url: str | None = None,
        *,
        chain_id: int,
        timeout_s: float = DEFAULT_RPC_TIMEOUT,
        max_retries: int = DEFAULT_RPC_MAX_RETRIES,
        web3: AsyncWeb3 | None = None,
    ) -> None:
        if web3 is None:
            if not rpc_url:
                raise ConfigurationError("No RPC URL configured", chain_id=chain_id)
            web3 = AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.web3 = web3
        self.rpc_url = rpc_url
        self.chain_id = int(chain_id)
        self.timeout_s = float(timeout_s)
        self.max_retries = int(max_retries)
        self.logger = logger.bind(component="ChainClient", chain_id=self.chain_id)

    @classmethod
    def from_settings(cls, settings: Any) -> "ChainClient":
        if not settings.rpc_urls:
            raise ConfigurationError(
                "No RPC URL configured", chain_id=settings.chain_id
            )
        if len(settings.rpc_urls) > 1:
            logger.debug(
                f"{len(settings.rpc_urls)} RPC URLs configured; using {settings.rpc_urls[0]}"
            )
        return cls(
            settings.rpc_urls[0],
            chain_id=settings.chain_id,
            timeout_s=settings.rpc_timeout_s,
            max_retries=settings.rpc_max_retries,
        )

    def contract(self, address: str, abi: list[dict[str, Any]]) -> Any:
        return self.web3.eth.contract(address=to_checksum_address(address), abi=abi)

    async def call(
        self,
        fn: Any,
        *,
        label: str,
        block_identifier: str | int = "latest",
    ) -> Any:
        async def _once() -> Any:
            return await asyncio.wait_for(
                fn.call(block_identifier=block_identifier), timeout=self.timeout_s
            )

        def _on_retry(attempt: int, exc: Exception, delay_s: float) -> None:
            self.logger.debug(
                f"{label} attempt {attempt + 1} failed ({exc!r}); retrying in {delay_s:.2f}s"
            )

        try:
            return await retry_async(
                _once,
                max_retries=self.max_retries + 1,
                should_retry=is_transient_rpc_error,
                on_retry=_on_retry,
            )
        except TimeoutError as exc:
            raise ChainReadError(
                f"{label} timed out after {self.timeout_s:.1f}s",
                call=label,
                chain_id=self.chain_id,
                timeout_s=self.timeout_s,
            ) from exc
        except Exception as exc:
            raise ChainReadError(
                f"{label} failed: {exc}", call=label, chain_id=self.chain_id
            ) from exc

    async def close(self) -> None:
        provider = getattr(self.web3, "provider", None)
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()

    async def __aenter__(self) -> "ChainClient":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()
