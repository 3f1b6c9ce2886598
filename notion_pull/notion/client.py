"""Notion APIクライアント（リトライ付き）"""

import asyncio
import logging
import re
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx
from notion_client import APIErrorCode, APIResponseError, AsyncClient
from notion_client.errors import HTTPResponseError, RequestTimeoutError

logger = logging.getLogger(__name__)

T = TypeVar("T")

PAGE_SIZE = 100
MAX_ATTEMPTS = 3
INITIAL_RETRY_DELAY = 0.5  # 秒。試行ごとに倍にする

RETRYABLE_STATUS = {429}
NETWORK_ERRORS = (httpx.NetworkError, httpx.TimeoutException, httpx.RemoteProtocolError)

NOTION_ID_PATTERN = re.compile(
    r"([0-9a-f]{8}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{4}-?[0-9a-f]{12})(?:[?#].*)?$",
    re.IGNORECASE,
)


def normalize_id(value: str) -> str:
    """ページ/ブロックIDをハイフン付き小文字UUIDに正規化

    ハイフンなしのIDやIDで終わるNotionのURLも受け付ける。
    IDを含まない値はそのまま返す。
    """
    value = value.strip()
    match = NOTION_ID_PATTERN.search(value)
    if not match:
        return value
    clean = match.group(1).replace("-", "").lower()
    return f"{clean[:8]}-{clean[8:12]}-{clean[12:16]}-{clean[16:20]}-{clean[20:]}"


def is_retryable(error: BaseException) -> bool:
    """限流・5xx・一時的なネットワーク障害ならTrue"""
    if isinstance(error, APIResponseError) and error.code == APIErrorCode.RateLimited:
        return True
    if isinstance(error, HTTPResponseError):
        status = getattr(error, "status", None)
        return isinstance(status, int) and (status in RETRYABLE_STATUS or status >= 500)
    if isinstance(error, RequestTimeoutError):
        return True
    return isinstance(error, NETWORK_ERRORS)


def retry_delay(attempt: int) -> float:
    """attempt回目の失敗後の待ち時間（秒）"""
    return INITIAL_RETRY_DELAY * (2 ** (attempt - 1))


async def with_retries(operation: Callable[[], Awaitable[T]], description: str) -> T:
    """指数バックオフ付きで操作を実行"""
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= MAX_ATTEMPTS or not is_retryable(e):
                raise
            delay = retry_delay(attempt)
            logger.warning(
                "%s に失敗、%.1f秒後にリトライします (%d/%d): %s",
                description,
                delay,
                attempt,
                MAX_ATTEMPTS,
                e,
            )
            await asyncio.sleep(delay)
            attempt += 1


class NotionApiClient:
    """Notion API読み取り用クライアント"""

    def __init__(
        self,
        token: str,
        proxy: str | None = None,
        timeout: float = 30.0,
        http_client: httpx.AsyncClient | None = None,
    ):
        if http_client is None:
            http_client = httpx.AsyncClient(proxy=proxy) if proxy else httpx.AsyncClient()
        self.client = AsyncClient(
            client=http_client,
            auth=token,
            timeout_ms=int(timeout * 1000),
        )

    async def __aenter__(self) -> "NotionApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self.client.aclose()

    async def retrieve_page(self, page_id: str) -> dict:
        """ページ情報を取得"""
        page_id = normalize_id(page_id)
        return await with_retries(
            lambda: self.client.pages.retrieve(page_id=page_id),
            f"pages.retrieve({page_id})",
        )

    async def list_block_children(self, block_id: str, start_cursor: str | None = None) -> dict:
        """子ブロックを1ページ分取得"""
        block_id = normalize_id(block_id)
        params = {"block_id": block_id, "page_size": PAGE_SIZE}
        if start_cursor:
            params["start_cursor"] = start_cursor
        return await with_retries(
            lambda: self.client.blocks.children.list(**params),
            f"blocks.children.list({block_id})",
        )

    async def search_pages(self, start_cursor: str | None = None) -> dict:
        """アクセス可能なページを1ページ分検索"""
        params = {
            "filter": {"property": "object", "value": "page"},
            "page_size": PAGE_SIZE,
        }
        if start_cursor:
            params["start_cursor"] = start_cursor
        return await with_retries(
            lambda: self.client.search(**params),
            "search",
        )

    async def get_all_block_children(self, block_id: str) -> list[dict]:
        """子ブロックをすべて取得（ページネーションを最後まで辿る）"""
        return await self._collect(lambda cursor: self.list_block_children(block_id, cursor))

    async def search_all_pages(self) -> list[dict]:
        """アクセス可能なすべてのページを取得"""
        return await self._collect(self.search_pages)

    async def _collect(self, fetch: Callable[[str | None], Awaitable[dict]]) -> list[dict]:
        results = []
        cursor = None

        while True:
            response = await fetch(cursor)
            results.extend(response.get("results", []))

            if not response.get("has_more"):
                break
            cursor = response.get("next_cursor")
            if not cursor:
                break

        return results
