"""Notion→Markdownエクスポートのパイプライン"""

import logging
from dataclasses import asdict, dataclass, field
from pathlib import Path

import httpx

from notion_pull.assets.downloader import AssetDownloader, DownloadCache
from notion_pull.config.settings import ExportSettings, get_settings
from notion_pull.markdown.renderer import MarkdownRenderer
from notion_pull.notion.client import NotionApiClient
from notion_pull.notion.models import AssetDescriptor, PageNode
from notion_pull.notion.traversal import TraversalEngine
from notion_pull.output.path_planner import PagePathPlanner, PathRegistry, owns_directory
from notion_pull.output.writer import OutputWriter, WriteStatus

logger = logging.getLogger(__name__)


@dataclass
class ExportStats:
    """実行結果の統計"""

    pages_discovered: int = 0
    pages_written: int = 0
    pages_skipped: int = 0
    pages_planned: int = 0  # dry run
    pages_failed: int = 0
    assets_planned: int = 0
    assets_downloaded: int = 0
    assets_failed: int = 0
    failures: list[tuple[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict:
        return asdict(self)


class NotionExporter:
    """探索→変換→ダウンロード→書き出しをまとめて実行する"""

    def __init__(
        self,
        settings: ExportSettings | None = None,
        notion_http_client: httpx.AsyncClient | None = None,
        download_http_client: httpx.AsyncClient | None = None,
    ):
        self.settings = settings or get_settings()
        self._notion_http_client = notion_http_client
        self._download_http_client = download_http_client
        self.renderer = MarkdownRenderer()
        self.writer = OutputWriter(
            self.settings.output_dir,
            dry_run=self.settings.dry_run,
            force=self.settings.force,
        )
        self.reset()

    def reset(self) -> None:
        """実行ごとの出力先とアセット名の予約を初期化"""
        self.paths = PathRegistry(PagePathPlanner(self.settings.output_dir))
        # 出力ディレクトリごとのimg/内で使用済みのアセット名
        self.asset_names: dict[Path, set[str]] = {}

    async def run(self) -> ExportStats:
        """エクスポートを実行して統計を返す"""
        settings = self.settings
        stats = ExportStats()
        self.reset()

        logger.info(
            "エクスポート開始: root=%s out=%s dry_run=%s force=%s",
            settings.notion_root_page_id or "workspace",
            settings.output_dir,
            settings.dry_run,
            settings.force,
        )

        client = NotionApiClient(
            settings.notion_token,
            proxy=settings.proxy,
            timeout=settings.request_timeout,
            http_client=self._notion_http_client,
        )
        # ダウンロードキャッシュは実行ごとに作り直す
        downloader = AssetDownloader(
            concurrency=settings.download_concurrency,
            cache=DownloadCache(),
            http_client=self._download_http_client,
            proxy=settings.proxy,
            timeout=settings.request_timeout,
        )
        traversal = TraversalEngine(
            client,
            concurrency=settings.concurrency,
            max_depth=settings.max_depth,
        )

        async def handle_page(page: PageNode) -> None:
            await self.export_page(page, downloader, stats)

        try:
            result = await traversal.traverse(
                settings.notion_root_page_id,
                handle_page,
                on_discovered=self.paths.reserve,
            )
        finally:
            await client.close()
            await downloader.close()

        stats.pages_discovered = result.visited
        failures = result.load_failures + result.handler_failures
        stats.pages_failed = len(failures)
        stats.failures = failures

        logger.info(
            "エクスポート完了: pages=%d written=%d skipped=%d failed=%d assets=%d/%d",
            stats.pages_discovered,
            stats.pages_written,
            stats.pages_skipped,
            stats.pages_failed,
            stats.assets_downloaded,
            stats.assets_planned,
        )
        return stats

    async def export_page(self, page: PageNode, downloader: AssetDownloader, stats: ExportStats) -> WriteStatus:
        """1ページ分の変換・ダウンロード・書き出し"""
        location = self.paths.reserve(page)
        # 子ページのないページは親のimg/を共有するため、アセット名にページ名を付ける
        prefix = "" if owns_directory(page) else location.file_base_name
        rendered = self.renderer.render_page(
            page,
            asset_prefix=prefix,
            used_names=self.asset_names.setdefault(location.directory, set()),
        )
        assets = await downloader.collect_assets(page, rendered.assets)

        attempted = len({plan.local_path for plan in rendered.assets})
        stats.assets_planned += attempted
        stats.assets_downloaded += len(assets)
        stats.assets_failed += attempted - len(assets)

        def remember(asset: AssetDescriptor, path: Path) -> None:
            downloader.cache.remember(asset.original_url, path)

        try:
            status = await self.writer.write_page(page, rendered, assets, location, on_asset_written=remember)
        finally:
            downloader.release(rendered.assets)
        if status == WriteStatus.WRITTEN:
            stats.pages_written += 1
        elif status == WriteStatus.SKIPPED:
            stats.pages_skipped += 1
        else:
            stats.pages_planned += 1
        return status
