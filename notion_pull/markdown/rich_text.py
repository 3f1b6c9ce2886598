"""リッチテキストのMarkdown変換"""

from notion_pull.notion.models import RichTextSegment


def segment_to_markdown(segment: RichTextSegment) -> str:
    """1要素をMarkdownに変換

    code装飾がある場合はバッククォートのみを適用し、他の装飾は無視する。
    リンクは最後に外側から包む。
    """
    text = segment.plain_text
    if segment.type == "equation" and segment.expression:
        text = f"${segment.expression}$"

    annotations = segment.annotations
    if annotations.code:
        text = f"`{text}`"
    else:
        if annotations.bold:
            text = f"**{text}**"
        if annotations.italic:
            text = f"*{text}*"
        if annotations.strikethrough:
            text = f"~~{text}~~"
        if annotations.underline:
            text = f"<u>{text}</u>"

    # [~~**x**~~](url) の順。リンクが常に一番外側
    if segment.href:
        text = f"[{text}]({segment.href})"

    return text


def rich_text_to_markdown(segments: list[RichTextSegment]) -> str:
    """リッチテキスト配列をMarkdownに変換"""
    return "".join(segment_to_markdown(segment) for segment in segments)


def rich_text_to_plain(segments: list[RichTextSegment]) -> str:
    """装飾を除いたプレーンテキストを返す"""
    return "".join(segment.plain_text for segment in segments)
