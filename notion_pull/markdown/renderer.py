"""ブロックツリーのMarkdownレンダリング"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import PurePosixPath
from urllib.parse import unquote, urlparse

from notion_pull.markdown.rich_text import rich_text_to_markdown, rich_text_to_plain
from notion_pull.notion.models import (
    AssetPlan,
    AssetType,
    Block,
    BlockType,
    PageNode,
    RenderedPage,
)

logger = logging.getLogger(__name__)

MEDIA_DIR = "img"
MAX_ASSET_NAME_LENGTH = 64
DEFAULT_ASSET_NAME = "asset"

DEFAULT_EXTENSIONS = {
    AssetType.IMAGE: ".png",
    AssetType.AUDIO: ".mp3",
    AssetType.VIDEO: ".mp4",
    AssetType.PDF: ".pdf",
}
GENERIC_EXTENSION = ".bin"

MEDIA_ASSET_TYPES = {
    BlockType.IMAGE: AssetType.IMAGE,
    BlockType.FILE: AssetType.FILE,
    BlockType.PDF: AssetType.PDF,
    BlockType.AUDIO: AssetType.AUDIO,
    BlockType.VIDEO: AssetType.VIDEO,
}

LIST_TYPES = {BlockType.BULLETED_LIST_ITEM, BlockType.NUMBERED_LIST_ITEM, BlockType.TO_DO}

INDENT = "    "

ILLEGAL_NAME_CHARS = re.compile(r'[\\/:"*?<>|\s]+')
EXTENSION_PATTERN = re.compile(r"^\.[A-Za-z0-9]{1,8}$")


def sanitize_asset_name(value: str) -> str:
    """アセットのファイル名（拡張子なし）を正規化"""
    name = ILLEGAL_NAME_CHARS.sub("-", value.strip())
    name = re.sub(r"-+", "-", name).strip("-").lower()
    return name[:MAX_ASSET_NAME_LENGTH].rstrip("-") or DEFAULT_ASSET_NAME


def extension_from_url(url: str) -> str | None:
    """URLのパスから拡張子を取り出す"""
    try:
        path = unquote(urlparse(url).path)
    except ValueError:
        return None
    suffix = PurePosixPath(path).suffix
    if suffix and EXTENSION_PATTERN.match(suffix):
        return suffix.lower()
    return None


def guess_extension(url: str, asset_type: AssetType) -> str:
    return extension_from_url(url) or DEFAULT_EXTENSIONS.get(asset_type, GENERIC_EXTENSION)


def unique_file_name(candidate: str, used: set[str]) -> str:
    """衝突時は拡張子の前に -2, -3 ... を付ける"""
    if candidate not in used:
        used.add(candidate)
        return candidate

    stem, dot, ext = candidate.rpartition(".")
    if not dot or not stem:
        stem, ext = candidate, ""
    else:
        ext = f".{ext}"

    index = 2
    while f"{stem}-{index}{ext}" in used:
        index += 1
    name = f"{stem}-{index}{ext}"
    used.add(name)
    return name


def format_asset_path(local_path: str) -> str:
    return local_path if local_path.startswith("./") else f"./{local_path}"


def indent(text: str) -> str:
    return "\n".join(INDENT + line if line else line for line in text.split("\n"))


def quote_lines(text: str) -> str:
    return "\n".join(f"> {line}" if line else ">" for line in text.split("\n"))


@dataclass
class RenderContext:
    """1ページ分のレンダリング状態"""

    page: PageNode
    assets: list[AssetPlan] = field(default_factory=list)
    used_names: set[str] = field(default_factory=set)
    asset_prefix: str = ""
    list_number: int = 0

    def add_asset(self, block: Block, url: str, asset_type: AssetType, caption: str | None) -> AssetPlan:
        """命名規則に従ってアセット計画を作る"""
        base_name = caption or block.id
        if self.asset_prefix:
            base_name = f"{self.asset_prefix}-{base_name}"
        base_name = sanitize_asset_name(base_name)
        file_name = unique_file_name(f"{base_name}{guess_extension(url, asset_type)}", self.used_names)
        plan = AssetPlan(
            id=block.id,
            original_url=url,
            local_path=f"{MEDIA_DIR}/{file_name}",
            type=asset_type,
            caption=caption,
        )
        self.assets.append(plan)
        return plan


BlockRenderer = Callable[[Block, RenderContext], str]


class MarkdownRenderer:
    """PageNodeをMarkdownに変換する"""

    def __init__(self):
        self.handlers: dict[BlockType, BlockRenderer] = {
            BlockType.PARAGRAPH: self._render_paragraph,
            BlockType.HEADING_1: self._render_heading,
            BlockType.HEADING_2: self._render_heading,
            BlockType.HEADING_3: self._render_heading,
            BlockType.BULLETED_LIST_ITEM: self._render_bulleted,
            BlockType.NUMBERED_LIST_ITEM: self._render_numbered,
            BlockType.TO_DO: self._render_to_do,
            BlockType.TOGGLE: self._render_toggle,
            BlockType.QUOTE: self._render_quote,
            BlockType.CALLOUT: self._render_callout,
            BlockType.CODE: self._render_code,
            BlockType.EQUATION: self._render_equation,
            BlockType.DIVIDER: lambda block, context: "---",
            BlockType.TABLE: self._render_table,
            BlockType.COLUMN_LIST: self._render_container,
            BlockType.COLUMN: self._render_container,
            BlockType.SYNCED_BLOCK: self._render_container,
            BlockType.IMAGE: self._render_media,
            BlockType.FILE: self._render_media,
            BlockType.PDF: self._render_media,
            BlockType.AUDIO: self._render_media,
            BlockType.VIDEO: self._render_media,
            BlockType.BOOKMARK: self._render_bookmark,
            BlockType.EMBED: self._render_embed,
            BlockType.LINK_PREVIEW: self._render_embed,
            BlockType.LINK_TO_PAGE: self._render_embed,
            BlockType.CHILD_PAGE: self._render_child_page,
            BlockType.CHILD_DATABASE: self._render_child_database,
            BlockType.TABLE_OF_CONTENTS: self._render_nothing,
            BlockType.BREADCRUMB: self._render_nothing,
            BlockType.TABLE_ROW: self._render_nothing,
            BlockType.UNSUPPORTED: self._render_nothing,
            BlockType.UNKNOWN: self._render_unknown,
        }

    def render_page(
        self,
        page: PageNode,
        asset_prefix: str = "",
        used_names: set[str] | None = None,
    ) -> RenderedPage:
        """ページをMarkdownとアセット計画に変換

        used_namesを渡すと、同じimg/を共有するページ間でファイル名が
        重複しないように予約済みの名前として扱い、新しい名前を追加する。
        asset_prefixはアセット名の先頭に付ける。
        """
        context = RenderContext(
            page=page,
            used_names=used_names if used_names is not None else set(),
            asset_prefix=asset_prefix,
        )
        logger.info("Markdownに変換中: page=%s title=%s", page.id, page.title)

        sections = [f"# {page.title}"]
        body = self.render_blocks(page.blocks, context).strip()
        if body:
            sections.append(body)

        logger.debug("変換完了: page=%s assets=%d", page.id, len(context.assets))
        return RenderedPage(
            content="\n\n".join(sections).rstrip() + "\n",
            assets=context.assets,
        )

    def render_blocks(self, blocks: list[Block], context: RenderContext) -> str:
        """兄弟ブロックを順に変換して連結"""
        output = ""
        previous: BlockType | None = None
        number = 0

        for block in blocks:
            number = number + 1 if block.type == BlockType.NUMBERED_LIST_ITEM else 0
            context.list_number = number

            rendered = self.render_block(block, context)
            if not rendered:
                continue

            if output:
                tight = previous in LIST_TYPES and block.type in LIST_TYPES
                output += "\n" if tight else "\n\n"
            output += rendered
            previous = block.type

        return output

    def render_block(self, block: Block, context: RenderContext) -> str:
        handler = self.handlers.get(block.type, self._render_unknown)
        return handler(block, context)

    def _children(self, block: Block, context: RenderContext) -> str:
        if not block.children:
            return ""
        return self.render_blocks(block.children, context)

    def _with_nested(self, head: str, block: Block, context: RenderContext) -> str:
        nested = self._children(block, context)
        if not nested:
            return head
        return f"{head}\n\n{indent(nested)}" if head else indent(nested)

    def _render_paragraph(self, block: Block, context: RenderContext) -> str:
        return self._with_nested(rich_text_to_markdown(block.rich_text()), block, context)

    def _render_heading(self, block: Block, context: RenderContext) -> str:
        level = int(block.raw_type[-1])
        text = rich_text_to_markdown(block.rich_text())
        heading = f"{'#' * level} {text}"
        nested = self._children(block, context)
        return f"{heading}\n\n{nested}" if nested else heading

    def _render_list_item(self, marker: str, block: Block, context: RenderContext) -> str:
        item = f"{marker} {rich_text_to_markdown(block.rich_text())}"
        nested = self._children(block, context)
        return f"{item}\n{indent(nested)}" if nested else item

    def _render_bulleted(self, block: Block, context: RenderContext) -> str:
        return self._render_list_item("-", block, context)

    def _render_numbered(self, block: Block, context: RenderContext) -> str:
        return self._render_list_item(f"{max(context.list_number, 1)}.", block, context)

    def _render_to_do(self, block: Block, context: RenderContext) -> str:
        checked = "x" if block.payload.get("checked") else " "
        return self._render_list_item(f"- [{checked}]", block, context)

    def _render_toggle(self, block: Block, context: RenderContext) -> str:
        summary = rich_text_to_markdown(block.rich_text())
        nested = self._children(block, context)
        if not nested:
            return f"<details>\n<summary>{summary}</summary>\n</details>"
        return f"<details>\n<summary>{summary}</summary>\n\n{nested}\n\n</details>"

    def _render_quote(self, block: Block, context: RenderContext) -> str:
        text = rich_text_to_markdown(block.rich_text())
        nested = self._children(block, context)
        if nested:
            text = f"{text}\n\n{nested}"
        return quote_lines(text)

    def _render_callout(self, block: Block, context: RenderContext) -> str:
        icon = block.payload.get("icon") or {}
        emoji = icon.get("emoji", "") if icon.get("type") == "emoji" else ""
        text = rich_text_to_markdown(block.rich_text())
        if emoji:
            text = f"{emoji} {text}"
        nested = self._children(block, context)
        if nested:
            text = f"{text}\n\n{nested}"
        return quote_lines(text)

    def _render_code(self, block: Block, context: RenderContext) -> str:
        language = block.payload.get("language") or ""
        if language == "plain text":
            language = ""
        code = rich_text_to_plain(block.rich_text())
        return f"```{language}\n{code}\n```"

    def _render_equation(self, block: Block, context: RenderContext) -> str:
        expression = block.payload.get("expression") or ""
        return f"$$\n{expression}\n$$" if expression else ""

    def _render_table(self, block: Block, context: RenderContext) -> str:
        rows = []
        for child in block.children:
            if child.type != BlockType.TABLE_ROW:
                continue
            rows.append([rich_text_to_markdown(cell).replace("|", "\\|") for cell in child.table_cells()])

        if not rows:
            return ""

        width = max(len(row) for row in rows)
        lines = []
        for index, row in enumerate(rows):
            padded = row + [""] * (width - len(row))
            lines.append("| " + " | ".join(padded) + " |")
            if index == 0:
                lines.append("| " + " | ".join(["---"] * width) + " |")
        return "\n".join(lines)

    def _render_container(self, block: Block, context: RenderContext) -> str:
        return self._children(block, context)

    def _render_media(self, block: Block, context: RenderContext) -> str:
        url = media_source(block.payload)
        if not url:
            logger.debug("URLのないメディアブロックをスキップ: block=%s", block.id)
            return ""

        caption_segments = block.rich_text("caption")
        caption = rich_text_to_markdown(caption_segments)
        plan = context.add_asset(
            block,
            url,
            MEDIA_ASSET_TYPES.get(block.type, AssetType.EXTERNAL),
            rich_text_to_plain(caption_segments) or None,
        )
        path = format_asset_path(plan.local_path)

        if block.type == BlockType.IMAGE:
            return f"![{caption}]({path})"
        return f"[{caption or plan.local_path}]({path})"

    def _render_bookmark(self, block: Block, context: RenderContext) -> str:
        url = block.payload.get("url") or ""
        if not url:
            return ""
        label = rich_text_to_plain(block.rich_text("caption")) or url
        return f"[{label}]({url})"

    def _render_embed(self, block: Block, context: RenderContext) -> str:
        payload = block.payload
        target = payload.get("url") or payload.get("page_id") or payload.get("database_id")
        return f"[External Content]({target})" if target else ""

    def _render_child_page(self, block: Block, context: RenderContext) -> str:
        title = block.payload.get("title") or "Untitled page"
        return f"> 子ページ: {title}"

    def _render_child_database(self, block: Block, context: RenderContext) -> str:
        title = block.payload.get("title") or "Untitled Database"
        logger.info("データベースのエクスポートは未対応のためスキップ: block=%s title=%s", block.id, title)
        return f'> Database "{title}" はエクスポート未対応です'

    def _render_nothing(self, block: Block, context: RenderContext) -> str:
        return ""

    def _render_unknown(self, block: Block, context: RenderContext) -> str:
        logger.debug("未対応のブロックタイプ: block=%s type=%s", block.id, block.raw_type)
        return self._children(block, context)


def media_source(payload: dict) -> str | None:
    """Notionホストのfile.urlを優先し、なければexternal.url"""
    file_url = (payload.get("file") or {}).get("url")
    if file_url:
        return file_url
    return (payload.get("external") or {}).get("url") or None
