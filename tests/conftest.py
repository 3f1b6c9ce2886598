"""テスト用の共通フィクスチャ"""

import json
import uuid

import httpx
import pytest

from notion_pull.config.settings import ExportSettings


def uid(number: int) -> str:
    """テスト用の正規化済みID"""
    return str(uuid.UUID(int=number))


def rich_text(text: str, **annotations) -> list[dict]:
    return [
        {
            "type": "text",
            "plain_text": text,
            "text": {"content": text, "link": None},
            "annotations": annotations,
            "href": None,
        }
    ]


def page_object(page_id: str, title: str) -> dict:
    return {
        "object": "page",
        "id": page_id,
        "url": f"https://www.notion.so/{page_id.replace('-', '')}",
        "properties": {
            "Name": {"id": "title", "type": "title", "title": rich_text(title) if title else []},
        },
    }


def block(block_id: str, block_type: str, payload: dict | None = None, has_children: bool = False) -> dict:
    return {
        "object": "block",
        "id": block_id,
        "type": block_type,
        block_type: payload or {},
        "has_children": has_children,
    }


def paragraph(block_id: str, text: str, has_children: bool = False) -> dict:
    return block(block_id, "paragraph", {"rich_text": rich_text(text)}, has_children)


def child_page(block_id: str, title: str) -> dict:
    return block(block_id, "child_page", {"title": title}, has_children=True)


def image(block_id: str, url: str, caption: str = "", hosted: bool = True) -> dict:
    source = {"type": "file", "file": {"url": url}} if hosted else {"type": "external", "external": {"url": url}}
    return block(block_id, "image", {**source, "caption": rich_text(caption) if caption else []})


ERROR_CODES = {
    400: "validation_error",
    401: "unauthorized",
    404: "object_not_found",
    429: "rate_limited",
    500: "internal_server_error",
    503: "service_unavailable",
}


class FakeNotion:
    """httpx.MockTransportで動くNotion APIの偽物"""

    def __init__(self, chunk_size: int = 2):
        self.chunk_size = chunk_size
        self.pages: dict[str, dict] = {}
        self.children: dict[str, list[dict]] = {}
        self.failures: dict[str, list[int]] = {}
        self.requests: list[tuple[str, str]] = []

    def add_page(self, page_id: str, title: str, blocks: list[dict] | None = None) -> None:
        self.pages[page_id] = page_object(page_id, title)
        self.children[page_id] = list(blocks or [])

    def fail(self, path: str, *statuses: int) -> None:
        """pathへのリクエストに対して指定ステータスを順に返す"""
        self.failures.setdefault(path, []).extend(statuses)

    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=self.transport())

    def retrieved_pages(self) -> list[str]:
        return [path.split("/")[-1] for method, path in self.requests if path.startswith("pages/")]

    def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.removeprefix("/v1/")
        self.requests.append((request.method, path))

        pending = self.failures.get(path)
        if pending:
            return self._error(pending.pop(0))

        parts = path.split("/")
        if parts[0] == "pages" and len(parts) == 2:
            page = self.pages.get(parts[1])
            return httpx.Response(200, json=page) if page else self._error(404)

        if parts[0] == "blocks" and len(parts) == 3 and parts[2] == "children":
            if parts[1] not in self.children:
                return self._error(404)
            return self._paginate(self.children[parts[1]], request.url.params.get("start_cursor"))

        if path == "search":
            body = json.loads(request.content or b"{}")
            results = [page for page in self.pages.values()]
            return self._paginate(results, body.get("start_cursor"))

        return self._error(400)

    def _paginate(self, items: list[dict], cursor: str | None) -> httpx.Response:
        start = int(cursor or 0)
        end = start + self.chunk_size
        has_more = end < len(items)
        return httpx.Response(
            200,
            json={
                "object": "list",
                "results": items[start:end],
                "has_more": has_more,
                "next_cursor": str(end) if has_more else None,
            },
        )

    def _error(self, status: int) -> httpx.Response:
        code = ERROR_CODES.get(status, "internal_server_error")
        return httpx.Response(
            status,
            json={"object": "error", "status": status, "code": code, "message": f"fake {code}"},
        )


@pytest.fixture
def fake_notion() -> FakeNotion:
    return FakeNotion()


@pytest.fixture
def no_sleep(monkeypatch) -> list[float]:
    """リトライ待ちを記録して即座に返す"""
    delays: list[float] = []

    async def fake_sleep(delay, result=None):
        delays.append(delay)
        return result

    monkeypatch.setattr("notion_pull.notion.client.asyncio.sleep", fake_sleep)
    return delays


@pytest.fixture
def make_settings(tmp_path, monkeypatch):
    """環境変数や.envに左右されない設定を作る"""
    monkeypatch.delenv("NOTION_TOKEN", raising=False)
    monkeypatch.delenv("NOTION_ROOT_PAGE_ID", raising=False)

    def factory(**overrides) -> ExportSettings:
        values = {"notion_token": "secret_test", "output_dir": tmp_path / "export"}
        values.update(overrides)
        return ExportSettings(_env_file=None, **values)

    return factory
