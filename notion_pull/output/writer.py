"""Markdownとアセットの書き出し"""

import asyncio
import logging
from collections.abc import Callable
from enum import Enum
from pathlib import Path

from notion_pull.notion.models import AssetDescriptor, PageLocation, PageNode, RenderedPage
from notion_pull.output.path_planner import PagePathPlanner

logger = logging.getLogger(__name__)

AssetCallback = Callable[[AssetDescriptor, Path], None]


class WriteStatus(Enum):
    """書き出し結果"""

    WRITTEN = "written"
    SKIPPED = "skipped"
    DRY_RUN = "dry_run"


def write_new_text(path: Path, content: str) -> None:
    """ファイルが無いときだけ作成する（あればFileExistsError）"""
    with path.open("x", encoding="utf-8") as f:
        f.write(content)


def write_new_bytes(path: Path, data: bytes) -> None:
    with path.open("xb") as f:
        f.write(data)


class OutputWriter:
    """ページをディスクに書き出す

    forceでないときは排他的作成モードで開くため、並行して同じパスに
    書こうとしたページのうち1つだけが書き込み、残りはスキップになる。
    """

    def __init__(self, base_dir: Path | str, dry_run: bool = False, force: bool = False):
        self.planner = PagePathPlanner(base_dir)
        self.dry_run = dry_run
        self.force = force

    async def write_page(
        self,
        page: PageNode,
        rendered: RenderedPage,
        assets: list[AssetDescriptor],
        location: PageLocation | None = None,
        on_asset_written: AssetCallback | None = None,
    ) -> WriteStatus:
        """Markdownを書き、続けてダウンロード済みアセットを書く

        on_asset_writtenは実際に書き込んだアセットごとに呼ばれる。
        """
        location = location or self.planner.resolve(page)
        file_path = location.file_path

        if self.dry_run:
            logger.info("Dry run: 書き込みをスキップ %s", file_path)
            return WriteStatus.DRY_RUN

        await asyncio.to_thread(location.directory.mkdir, parents=True, exist_ok=True)
        if self.force:
            await asyncio.to_thread(file_path.write_text, rendered.content, encoding="utf-8")
        else:
            try:
                await asyncio.to_thread(write_new_text, file_path, rendered.content)
            except FileExistsError:
                logger.info("ファイルが既に存在するためスキップ (--forceで上書き): %s", file_path)
                return WriteStatus.SKIPPED

        if assets:
            await self._write_assets(file_path.parent, assets, on_asset_written)

        logger.info("ページを書き出しました: %s", file_path)
        return WriteStatus.WRITTEN

    async def _write_assets(
        self,
        page_dir: Path,
        assets: list[AssetDescriptor],
        on_asset_written: AssetCallback | None = None,
    ) -> int:
        """アセットを1件ずつ書く（失敗しても他は続ける）"""
        written = 0
        for asset in assets:
            destination = page_dir / asset.local_path
            try:
                await asyncio.to_thread(destination.parent.mkdir, parents=True, exist_ok=True)
                if self.force:
                    await asyncio.to_thread(destination.write_bytes, asset.data)
                else:
                    await asyncio.to_thread(write_new_bytes, destination, asset.data)
            except FileExistsError:
                logger.debug("アセットが既に存在するためスキップ: %s", destination)
                continue
            except OSError as e:
                logger.warning(
                    "アセットの書き込みに失敗: path=%s url=%s reason=%s",
                    destination,
                    asset.original_url,
                    e,
                )
                continue
            written += 1
            if on_asset_written is not None:
                on_asset_written(asset, destination)
            logger.debug("アセットを書き出しました: %s <- %s", destination, asset.original_url)
        return written
