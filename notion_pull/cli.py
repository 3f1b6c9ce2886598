"""コマンドラインエントリポイント"""

import argparse
import asyncio
import json
import logging
import sys
from collections.abc import Sequence
from pathlib import Path

from pydantic import ValidationError

from notion_pull.config.log import setup_logging
from notion_pull.config.settings import ExportSettings
from notion_pull.exporter import ExportStats, NotionExporter
from notion_pull.notion.traversal import RootPageError

logger = logging.getLogger(__name__)

# 設定ファイルで使える別名
CONFIG_FILE_ALIASES = {
    "token": "notion_token",
    "root": "notion_root_page_id",
    "root_page_id": "notion_root_page_id",
    "out_dir": "output_dir",
}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="notion-pull",
        description="Export a Notion page tree to Markdown files",
    )
    parser.add_argument("root", nargs="?", help="Root page id or URL (searches the workspace if omitted)")
    parser.add_argument("--token", help="Notion integration token (default: NOTION_TOKEN)")
    parser.add_argument("-o", "--out-dir", type=Path, help="Output directory")
    parser.add_argument("--concurrency", type=int, help="Pages handled in parallel")
    parser.add_argument("--download-concurrency", type=int, help="Assets downloaded in parallel")
    parser.add_argument("--max-depth", type=int, help="Stop descending below this many levels")
    parser.add_argument("--force", action="store_true", default=None, help="Overwrite existing files")
    parser.add_argument("--dry-run", action="store_true", default=None, help="Plan only, write nothing")
    parser.add_argument("--proxy", help="HTTP(S) proxy URL")
    parser.add_argument("--config", type=Path, help="JSON config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")
    return parser


def load_config_file(path: Path) -> dict:
    """JSON設定ファイルを読み込み、設定項目名に揃える"""
    data = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(data, dict):
        raise ValueError(f"Config file must contain a JSON object: {path}")
    return {CONFIG_FILE_ALIASES.get(key, key): value for key, value in data.items()}


def build_settings(args: argparse.Namespace) -> ExportSettings:
    """コマンドライン > 設定ファイル > 環境変数 > 既定値 の順で設定を作る"""
    values = load_config_file(args.config) if args.config else {}
    cli_values = {
        "notion_token": args.token,
        "notion_root_page_id": args.root,
        "output_dir": args.out_dir,
        "concurrency": args.concurrency,
        "download_concurrency": args.download_concurrency,
        "max_depth": args.max_depth,
        "force": args.force,
        "dry_run": args.dry_run,
        "proxy": args.proxy,
    }
    values.update({key: value for key, value in cli_values.items() if value is not None})
    if args.verbose:
        values["log_level"] = "DEBUG"
    return ExportSettings(**values)


def print_summary(stats: ExportStats, dry_run: bool) -> None:
    print("\n=== エクスポート完了 ===")
    print(f"処理ページ数: {stats.pages_discovered}")
    if dry_run:
        print(f"書き込み予定: {stats.pages_planned}")
    else:
        print(f"書き込み: {stats.pages_written}")
        print(f"スキップ: {stats.pages_skipped}")
    print(f"失敗: {stats.pages_failed}")
    print(f"アセット: {stats.assets_downloaded}/{stats.assets_planned}")
    for page_id, reason in stats.failures:
        print(f"  - {page_id}: {reason}")


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    try:
        settings = build_settings(args)
        setup_logging(settings.log_level)
    except (ValidationError, ValueError, OSError) as e:
        print(f"設定エラー: {e}", file=sys.stderr)
        return 2

    try:
        stats = asyncio.run(NotionExporter(settings).run())
    except RootPageError as e:
        logger.error("ルートページを読み込めないため中断します: %s", e)
        return 1

    print_summary(stats, settings.dry_run)
    return 1 if stats.pages_failed else 0


if __name__ == "__main__":
    sys.exit(main())
