"""ページツリーの幅優先探索"""

import asyncio
import logging
from collections import deque
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from notion_pull.notion.client import NotionApiClient, normalize_id
from notion_pull.notion.models import Block, BlockType, PageNode

logger = logging.getLogger(__name__)

UNTITLED = "Untitled"

PageHandler = Callable[[PageNode], Awaitable[None]]
DiscoveryHook = Callable[[PageNode], None]


class RootPageError(Exception):
    """明示指定したルートページを読み込めなかった"""

    def __init__(self, page_id: str, reason: BaseException):
        super().__init__(f"Failed to load root page {page_id}: {reason}")
        self.page_id = page_id
        self.reason = reason


@dataclass
class QueueItem:
    """BFSキューの要素"""

    id: str
    path: tuple[str, ...] = ()
    parent_id: str | None = None


@dataclass
class TraversalResult:
    """探索結果の集計"""

    visited: int = 0
    handled: int = 0
    load_failures: list[tuple[str, str]] = field(default_factory=list)
    handler_failures: list[tuple[str, str]] = field(default_factory=list)


def extract_title(page: dict) -> str:
    """title型プロパティのplain_textを連結してタイトルとする"""
    properties = page.get("properties") or {}
    for prop in properties.values():
        if isinstance(prop, dict) and prop.get("type") == "title":
            title = "".join(item.get("plain_text", "") for item in prop.get("title") or [])
            if title:
                return title
            break
    return UNTITLED


def is_full_page(page: dict) -> bool:
    return page.get("object") == "page" and "properties" in page


def find_child_pages(blocks: list[Block]) -> list[Block]:
    """ブロックツリーからchild_pageブロックを文書順に探す"""
    found = []
    stack = list(reversed(blocks))
    while stack:
        block = stack.pop()
        if block.type == BlockType.CHILD_PAGE:
            found.append(block)
        stack.extend(reversed(block.children))
    return found


class TraversalEngine:
    """ルートから幅優先でページを辿り、ページごとにハンドラを呼ぶ"""

    def __init__(self, client: NotionApiClient, concurrency: int = 4, max_depth: int | None = None):
        self.client = client
        self.concurrency = max(1, concurrency)
        self.max_depth = max_depth

    async def traverse(
        self,
        root_id: str | None,
        handler: PageHandler,
        on_discovered: DiscoveryHook | None = None,
    ) -> TraversalResult:
        """ページツリーを探索する

        キューと訪問済み集合はこのループだけが更新する。ハンドラは
        セマフォで並列度を制限したタスクとして投入し、子ページの投入は
        ハンドラの完了を待たない。on_discoveredはハンドラ投入前に
        発見順（幅優先順）で同期的に呼ばれる。
        """
        result = TraversalResult()
        semaphore = asyncio.Semaphore(self.concurrency)
        queue: deque[QueueItem] = deque()
        visited: set[str] = set()
        pending: list[asyncio.Task] = []

        logger.info("探索開始: root=%s", root_id or "workspace")

        if root_id:
            root_id = normalize_id(root_id)
            queue.append(QueueItem(id=root_id))
        else:
            roots = await self._discover_roots()
            queue.extend(roots)
            logger.info("ルートページを%d件検出", len(roots))

        while queue:
            current = queue.popleft()
            if current.id in visited:
                continue
            visited.add(current.id)

            try:
                node, child_ids = await self.load_page(current.id, current.path, current.parent_id)
            except Exception as e:
                if root_id and current.id == root_id:
                    raise RootPageError(current.id, e) from e
                logger.error("ページの読み込みに失敗: page=%s reason=%s", current.id, e)
                result.load_failures.append((current.id, str(e)))
                continue

            depth = len(node.path)
            if self.max_depth is None or depth < self.max_depth:
                child_path = node.path + (node.title,)
                for child_id in child_ids:
                    queue.append(QueueItem(id=child_id, path=child_path, parent_id=node.id))
                    logger.debug("子ページをキューに追加: parent=%s child=%s", node.id, child_id)
            elif child_ids:
                logger.info("max_depthに達したため子ページを辿りません: page=%s", node.id)

            if on_discovered is not None:
                on_discovered(node)
            pending.append(asyncio.create_task(self._run_handler(semaphore, handler, node, result)))

        await asyncio.gather(*pending)
        result.visited = len(visited)
        logger.info(
            "探索完了: visited=%d handled=%d failed=%d",
            result.visited,
            result.handled,
            len(result.load_failures) + len(result.handler_failures),
        )
        return result

    async def load_page(
        self,
        page_id: str,
        path: tuple[str, ...],
        parent_id: str | None = None,
    ) -> tuple[PageNode, list[str]]:
        """ページとブロックツリーを取得してPageNodeを構築"""
        page = await self.client.retrieve_page(page_id)
        if not is_full_page(page):
            raise ValueError(f"Unable to retrieve properties for page {page_id}")

        title = extract_title(page)
        logger.debug("ページを構築中: page=%s title=%s", page_id, title)

        blocks = await self.fetch_block_tree(page_id)
        child_ids = [normalize_id(block.id) for block in find_child_pages(blocks)]

        node = PageNode(
            id=normalize_id(page.get("id", page_id)),
            title=title,
            path=path,
            has_child_pages=bool(child_ids),
            blocks=blocks,
            url=page.get("url", ""),
            properties=page.get("properties") or {},
            parent_id=parent_id,
        )
        return node, child_ids

    async def fetch_block_tree(self, root_block_id: str) -> list[Block]:
        """ブロックツリーを幅優先で取得（再帰呼び出しなし）"""
        top_level: list[Block] = []
        work: deque[tuple[str, list[Block]]] = deque([(root_block_id, top_level)])

        while work:
            block_id, container = work.popleft()
            for raw in await self.client.get_all_block_children(block_id):
                block = Block.from_api(raw)
                container.append(block)
                # 子ページの中身は別のページとして辿る
                if block.has_children and block.type != BlockType.CHILD_PAGE:
                    work.append((block.id, block.children))

        return top_level

    async def _discover_roots(self) -> list[QueueItem]:
        """searchで見えるページをルート候補としてキューに入れる"""
        roots = []
        for page in await self.client.search_all_pages():
            if not is_full_page(page):
                continue
            roots.append(QueueItem(id=normalize_id(page.get("id", ""))))
            logger.debug("ルートページを追加: page=%s title=%s", page.get("id"), extract_title(page))
        return roots

    async def _run_handler(
        self,
        semaphore: asyncio.Semaphore,
        handler: PageHandler,
        node: PageNode,
        result: TraversalResult,
    ) -> None:
        async with semaphore:
            try:
                await handler(node)
                result.handled += 1
            except Exception as e:
                logger.exception("ページ処理に失敗: page=%s title=%s reason=%s", node.id, node.title, e)
                result.handler_failures.append((node.id, str(e)))
