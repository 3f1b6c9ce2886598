"""Notionデータモデル"""

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class BlockType(Enum):
    """Notionブロックタイプ"""

    PARAGRAPH = "paragraph"
    HEADING_1 = "heading_1"
    HEADING_2 = "heading_2"
    HEADING_3 = "heading_3"
    BULLETED_LIST_ITEM = "bulleted_list_item"
    NUMBERED_LIST_ITEM = "numbered_list_item"
    TO_DO = "to_do"
    TOGGLE = "toggle"
    CODE = "code"
    QUOTE = "quote"
    CALLOUT = "callout"
    EQUATION = "equation"
    DIVIDER = "divider"
    TABLE = "table"
    TABLE_ROW = "table_row"
    COLUMN_LIST = "column_list"
    COLUMN = "column"
    SYNCED_BLOCK = "synced_block"
    IMAGE = "image"
    FILE = "file"
    PDF = "pdf"
    AUDIO = "audio"
    VIDEO = "video"
    BOOKMARK = "bookmark"
    EMBED = "embed"
    LINK_PREVIEW = "link_preview"
    LINK_TO_PAGE = "link_to_page"
    CHILD_PAGE = "child_page"
    CHILD_DATABASE = "child_database"
    TABLE_OF_CONTENTS = "table_of_contents"
    BREADCRUMB = "breadcrumb"
    UNSUPPORTED = "unsupported"
    UNKNOWN = "unknown"


MEDIA_BLOCK_TYPES = {
    BlockType.IMAGE,
    BlockType.FILE,
    BlockType.PDF,
    BlockType.AUDIO,
    BlockType.VIDEO,
}


@dataclass
class Annotations:
    """リッチテキストの装飾"""

    bold: bool = False
    italic: bool = False
    strikethrough: bool = False
    underline: bool = False
    code: bool = False


@dataclass
class RichTextSegment:
    """リッチテキストの1要素"""

    plain_text: str
    annotations: Annotations = field(default_factory=Annotations)
    href: str | None = None
    type: str = "text"
    expression: str | None = None

    @classmethod
    def from_api(cls, item: dict) -> "RichTextSegment":
        """APIのrich_text要素から生成"""
        text = item.get("text") or {}
        plain_text = item.get("plain_text")
        if plain_text is None:
            plain_text = text.get("content", "")

        href = item.get("href")
        if not href:
            href = (text.get("link") or {}).get("url")

        raw_annotations = item.get("annotations") or {}
        annotations = Annotations(
            bold=bool(raw_annotations.get("bold")),
            italic=bool(raw_annotations.get("italic")),
            strikethrough=bool(raw_annotations.get("strikethrough")),
            underline=bool(raw_annotations.get("underline")),
            code=bool(raw_annotations.get("code")),
        )

        return cls(
            plain_text=plain_text,
            annotations=annotations,
            href=href or None,
            type=item.get("type", "text"),
            expression=(item.get("equation") or {}).get("expression"),
        )


@dataclass
class Block:
    """Notionブロック（子ブロックを含むツリー）"""

    id: str
    type: BlockType
    raw_type: str
    payload: dict = field(default_factory=dict)
    has_children: bool = False
    children: list["Block"] = field(default_factory=list)

    @classmethod
    def from_api(cls, raw: dict) -> "Block":
        """APIのblockオブジェクトから生成（childrenは別途取得）"""
        raw_type = raw.get("type", "unknown")
        try:
            block_type = BlockType(raw_type)
        except ValueError:
            block_type = BlockType.UNKNOWN

        return cls(
            id=raw.get("id", ""),
            type=block_type,
            raw_type=raw_type,
            payload=raw.get(raw_type) or {},
            has_children=bool(raw.get("has_children")),
        )

    def rich_text(self, key: str = "rich_text") -> list[RichTextSegment]:
        """payload内のリッチテキストを取得"""
        return [RichTextSegment.from_api(item) for item in self.payload.get(key) or []]

    def table_cells(self) -> list[list[RichTextSegment]]:
        """table_rowのセルを取得"""
        return [
            [RichTextSegment.from_api(item) for item in cell]
            for cell in self.payload.get("cells") or []
        ]


@dataclass(frozen=True)
class PageNode:
    """ハイドレート済みのページ"""

    id: str
    title: str
    path: tuple[str, ...] = ()
    has_child_pages: bool = False
    blocks: list[Block] = field(default_factory=list)
    url: str = ""
    properties: dict = field(default_factory=dict)
    parent_id: str | None = None

    @property
    def is_root(self) -> bool:
        return len(self.path) == 0


class AssetType(Enum):
    """アセットの種別"""

    IMAGE = "image"
    FILE = "file"
    AUDIO = "audio"
    VIDEO = "video"
    PDF = "pdf"
    EXTERNAL = "external"


@dataclass(frozen=True)
class AssetPlan:
    """ダウンロード前のアセット配置計画"""

    id: str
    original_url: str
    local_path: str
    type: AssetType
    caption: str | None = None


@dataclass(frozen=True)
class AssetDescriptor:
    """ダウンロード済みアセット"""

    plan: AssetPlan
    data: bytes

    @property
    def local_path(self) -> str:
        return self.plan.local_path

    @property
    def original_url(self) -> str:
        return self.plan.original_url


@dataclass
class RenderedPage:
    """Markdown変換結果"""

    content: str
    assets: list[AssetPlan] = field(default_factory=list)


@dataclass(frozen=True)
class PageLocation:
    """ページの出力先"""

    directory: Path
    file_name: str
    file_path: Path
    directory_segments: tuple[str, ...]
    file_base_name: str
