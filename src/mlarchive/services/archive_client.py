import logging

import httpx

from mlarchive.services.retry import with_retry

logger = logging.getLogger(__name__)


class ArchiveClient:
    """Downloads mbox archives published by a mailing-list server."""

    def __init__(
        self,
        *,
        retry_max_attempts: int = 3,
        retry_base_delay_seconds: float = 1.0,
        retry_max_delay_seconds: float = 8.0,
        timeout_seconds: float = 20.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.retry_max_attempts = max(1, retry_max_attempts)
        self.retry_base_delay_seconds = max(0.1, retry_base_delay_seconds)
        self.retry_max_delay_seconds = max(self.retry_base_delay_seconds, retry_max_delay_seconds)
        self.timeout_seconds = timeout_seconds
        self._transport = transport

    async def fetch_archive(self, url: str) -> str:
        if not url:
            raise RuntimeError("An archive URL is required to fetch a remote archive")

        async def _call() -> httpx.Response:
            async with httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport) as client:
                return await client.get(url, headers={"User-Agent": "mailing-list-archive"})

        response = await with_retry(
            operation="archive_fetch",
            call=_call,
            max_attempts=self.retry_max_attempts,
            base_delay_seconds=self.retry_base_delay_seconds,
            max_delay_seconds=self.retry_max_delay_seconds,
            logger=logger,
        )
        # mbox archives are served as text/plain without a reliable charset.
        text = response.content.decode("utf-8")
        logger.info(
            "Fetched mbox archive",
            extra={"event": "archive_fetched", "url": url, "size_bytes": len(response.content)},
        )
        return text
