"""アセットのダウンロード"""

import asyncio
import logging
from pathlib import Path

import httpx

from notion_pull.notion.models import AssetDescriptor, AssetPlan, PageNode

logger = logging.getLogger(__name__)

DOWNLOAD_TIMEOUT = 30.0


class DownloadCache:
    """1回のエクスポート実行内でURLごとの取得状況を覚える

    取得タスクと書き出し済みファイルのパスだけを持ち、結果のバイト列は
    タスクを手放した時点で参照されなくなる。成功したタスクは書き出しが
    終わってreleaseされるまで共有し、その後はファイルから読み直す。
    """

    def __init__(self):
        self._pending: dict[str, asyncio.Task] = {}
        self._written: dict[str, Path] = {}

    def pending(self, url: str) -> asyncio.Task | None:
        return self._pending.get(url)

    def track(self, url: str, task: asyncio.Task) -> None:
        """releaseされるまでタスクを共有する（失敗したタスクはすぐ外す）"""
        self._pending[url] = task

        def drop_failed(_: asyncio.Task) -> None:
            if task.cancelled() or task.exception() is not None or task.result() is None:
                self.release(url, task)

        task.add_done_callback(drop_failed)

    def release(self, url: str, task: asyncio.Task | None = None) -> None:
        if task is None or self._pending.get(url) is task:
            self._pending.pop(url, None)

    def written_path(self, url: str) -> Path | None:
        return self._written.get(url)

    def remember(self, url: str, path: Path) -> None:
        """URLの内容を最初に書き出したファイルを記録"""
        self._written.setdefault(url, path)
        self._pending.pop(url, None)

    def forget(self, url: str) -> None:
        self._written.pop(url, None)

    def __contains__(self, url: str) -> bool:
        return url in self._written

    def __len__(self) -> int:
        return len(self._written)


def deduplicate_plans(plans: list[AssetPlan]) -> list[AssetPlan]:
    """local_pathが同じ計画は最初の1件だけ残す"""
    seen: dict[str, AssetPlan] = {}
    for plan in plans:
        seen.setdefault(plan.local_path, plan)
    return list(seen.values())


class AssetDownloader:
    """アセットを並列度を制限してダウンロードする"""

    def __init__(
        self,
        concurrency: int = 4,
        cache: DownloadCache | None = None,
        http_client: httpx.AsyncClient | None = None,
        proxy: str | None = None,
        timeout: float = DOWNLOAD_TIMEOUT,
    ):
        self.semaphore = asyncio.Semaphore(max(1, concurrency))
        self.cache = cache if cache is not None else DownloadCache()
        if http_client is None:
            http_client = httpx.AsyncClient(timeout=timeout, follow_redirects=True, proxy=proxy)
        self.client = http_client

    async def close(self) -> None:
        await self.client.aclose()

    def release(self, plans: list[AssetPlan]) -> None:
        """書き出しが終わったページの取得タスクを手放す"""
        for plan in plans:
            self.cache.release(plan.original_url)

    async def collect_assets(self, page: PageNode, plans: list[AssetPlan]) -> list[AssetDescriptor]:
        """ページのアセットを取得し、成功したものだけ返す"""
        if not plans:
            logger.debug("ダウンロード対象なし: page=%s", page.id)
            return []

        unique_plans = deduplicate_plans(plans)
        logger.info("アセットのダウンロード開始: page=%s assets=%d", page.id, len(unique_plans))

        results = await asyncio.gather(*(self._download(page, plan) for plan in unique_plans))
        successful = [descriptor for descriptor in results if descriptor is not None]

        logger.info(
            "アセットのダウンロード完了: page=%s success=%d attempted=%d",
            page.id,
            len(successful),
            len(unique_plans),
        )
        return successful

    async def _download(self, page: PageNode, plan: AssetPlan) -> AssetDescriptor | None:
        data = await self._fetch(page, plan)
        if data is None:
            return None
        return AssetDescriptor(plan=plan, data=data)

    async def _fetch(self, page: PageNode, plan: AssetPlan) -> bytes | None:
        """書き出し済みならファイルから読み、取得中なら同じタスクを待つ"""
        url = plan.original_url
        written = self.cache.written_path(url)
        if written is not None:
            try:
                return await asyncio.to_thread(written.read_bytes)
            except OSError as e:
                logger.debug("書き出し済みアセットを読めないため再取得: path=%s reason=%s", written, e)
                self.cache.forget(url)

        task = self.cache.pending(url)
        if task is None:
            task = asyncio.create_task(self._get(page, plan))
            self.cache.track(url, task)
        return await asyncio.shield(task)

    async def _get(self, page: PageNode, plan: AssetPlan) -> bytes | None:
        async with self.semaphore:
            try:
                response = await self.client.get(plan.original_url)
                response.raise_for_status()
            except (httpx.HTTPError, httpx.InvalidURL) as e:
                logger.warning(
                    "アセットのダウンロードに失敗: page=%s asset=%s url=%s reason=%s",
                    page.id,
                    plan.local_path,
                    plan.original_url,
                    e,
                )
                return None
        return response.content
