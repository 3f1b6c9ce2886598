"""ページの出力先パス計算"""

import logging
import re
from pathlib import Path

from notion_pull.notion.models import PageLocation, PageNode

logger = logging.getLogger(__name__)

MARKDOWN_EXTENSION = ".md"
UNTITLED_SEGMENT = "Untitled"
UNTITLED_PAGE = "Untitled Page"

ILLEGAL_PATH_CHARS = re.compile(r'[\\/:"*?<>|]+')
WHITESPACE = re.compile(r"\s+")


def sanitize_segment(segment: str, fallback: str = UNTITLED_SEGMENT) -> str:
    """ファイルシステムで使えない文字を除いた1階層分の名前"""
    sanitized = ILLEGAL_PATH_CHARS.sub("-", segment.strip())
    sanitized = WHITESPACE.sub(" ", sanitized)
    # 先頭の区切り、末尾のドットと区切りを落とす
    sanitized = sanitized.lstrip(" -").rstrip(" .-")
    return sanitized or fallback


def sanitize_segments(segments: list[str]) -> list[str]:
    """最後の要素（ページ自身）だけ既定値を"Untitled Page"にする"""
    last = len(segments) - 1
    return [
        sanitize_segment(segment, UNTITLED_PAGE if index == last else UNTITLED_SEGMENT)
        for index, segment in enumerate(segments)
    ]


class PagePathPlanner:
    """PageNodeから出力先ディレクトリとファイルを決める

    ルートページと子ページを持つページは自分の名前のディレクトリを持ち、
    子ページのないページは親ディレクトリに直接書き出す。
    """

    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(base_dir)

    def resolve(self, page: PageNode) -> PageLocation:
        segments = sanitize_segments([*page.path, page.title])
        return self.locate(tuple(segments[:-1]), segments[-1], owns_directory(page))

    def locate(self, ancestors: tuple[str, ...], name: str, owns_dir: bool) -> PageLocation:
        """親ディレクトリの要素とファイル名から出力先を組み立てる"""
        directory_segments = (*ancestors, name) if owns_dir else ancestors
        directory = self.base_dir.joinpath(*directory_segments)
        file_name = f"{name}{MARKDOWN_EXTENSION}"

        return PageLocation(
            directory=directory,
            file_name=file_name,
            file_path=directory / file_name,
            directory_segments=directory_segments,
            file_base_name=name,
        )


def owns_directory(page: PageNode) -> bool:
    return page.has_child_pages or page.is_root


def short_page_id(page_id: str) -> str:
    return page_id.replace("-", "")[-8:]


class PathRegistry:
    """1回の実行で割り当てた出力先を記録し、重複を避ける

    同じ親の下に同名のページがあると、後から予約したページの名前に
    ページIDの末尾8桁を付ける。子ページは親が予約したディレクトリの
    下に置く。大文字小文字だけが違うパスも衝突とみなす。
    """

    def __init__(self, planner: PagePathPlanner):
        self.planner = planner
        self._claimed: set[str] = set()
        self._locations: dict[str, PageLocation] = {}

    def get(self, page_id: str) -> PageLocation | None:
        return self._locations.get(page_id)

    def reserve(self, page: PageNode) -> PageLocation:
        """ページの出力先を予約して返す（同じページなら同じ結果）"""
        reserved = self._locations.get(page.id)
        if reserved is not None:
            return reserved

        resolved = self.planner.resolve(page)
        owns_dir = owns_directory(page)
        parent = self._locations.get(page.parent_id) if page.parent_id else None
        if parent is not None:
            ancestors = parent.directory_segments
        elif owns_dir:
            ancestors = resolved.directory_segments[:-1]
        else:
            ancestors = resolved.directory_segments

        name = resolved.file_base_name
        location = self.planner.locate(ancestors, name, owns_dir)
        for candidate in (f"{name} ({short_page_id(page.id)})", f"{name} ({page.id})"):
            if self._key(location) not in self._claimed:
                break
            location = self.planner.locate(ancestors, candidate, owns_dir)

        if location.file_base_name != name:
            logger.warning("出力先が他のページと重複するため名前を変更: page=%s file=%s", page.id, location.file_path)

        self._claimed.add(self._key(location))
        self._locations[page.id] = location
        return location

    def _key(self, location: PageLocation) -> str:
        return str(location.file_path).casefold()
