"""アセットダウンローダーのテスト"""

import asyncio
import logging

import httpx

from conftest import uid
from notion_pull.assets.downloader import AssetDownloader, DownloadCache, deduplicate_plans
from notion_pull.notion.models import AssetPlan, AssetType, PageNode

PAGE = PageNode(id=uid(1), title="Page")


def plan(name: str, url: str | None = None) -> AssetPlan:
    return AssetPlan(
        id=name,
        original_url=url or f"https://files.example.com/{name}",
        local_path=f"img/{name}",
        type=AssetType.IMAGE,
    )


class FakeFileServer:
    """URLのパスをそのまま本文として返す。missingに含まれるパスは404"""

    def __init__(self, missing: set[str] | None = None, delay: float = 0.0):
        self.missing = missing or set()
        self.delay = delay
        self.requests: list[str] = []
        self.in_flight = 0
        self.peak = 0

    async def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(str(request.url))
        self.in_flight += 1
        self.peak = max(self.peak, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if request.url.path in self.missing:
                return httpx.Response(404)
            return httpx.Response(200, content=request.url.path.encode())
        finally:
            self.in_flight -= 1

    def http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self.handle))


def collect(server: FakeFileServer, plans: list[AssetPlan], concurrency: int = 4, cache=None):
    async def runner():
        downloader = AssetDownloader(concurrency=concurrency, cache=cache, http_client=server.http_client())
        try:
            return await downloader.collect_assets(PAGE, plans)
        finally:
            await downloader.close()

    return asyncio.run(runner())


def test_downloads_all_assets():
    server = FakeFileServer()

    assets = collect(server, [plan("a.png"), plan("b.png")])

    assert {asset.local_path: asset.data for asset in assets} == {
        "img/a.png": b"/a.png",
        "img/b.png": b"/b.png",
    }


def test_failed_download_is_isolated(caplog):
    server = FakeFileServer(missing={"/broken.png"})

    with caplog.at_level(logging.WARNING, logger="notion_pull.assets.downloader"):
        assets = collect(server, [plan("ok.png"), plan("broken.png")])

    assert [asset.local_path for asset in assets] == ["img/ok.png"]
    assert len(server.requests) == 2
    assert "https://files.example.com/broken.png" in caplog.text


def test_unreachable_host_is_isolated():
    async def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    async def runner():
        downloader = AssetDownloader(http_client=httpx.AsyncClient(transport=httpx.MockTransport(refuse)))
        try:
            return await downloader.collect_assets(PAGE, [plan("a.png")])
        finally:
            await downloader.close()

    assert asyncio.run(runner()) == []


def test_duplicate_local_paths_are_downloaded_once():
    server = FakeFileServer()
    first = plan("a.png", "https://files.example.com/first")
    second = plan("a.png", "https://files.example.com/second")

    assets = collect(server, [first, second])

    assert len(assets) == 1
    assert assets[0].original_url == "https://files.example.com/first"
    assert server.requests == ["https://files.example.com/first"]


def test_concurrency_is_bounded():
    server = FakeFileServer(delay=0.01)

    assets = collect(server, [plan(f"{n}.png") for n in range(8)], concurrency=2)

    assert len(assets) == 8
    assert server.peak <= 2


def test_no_plans_makes_no_requests():
    server = FakeFileServer()
    assert collect(server, []) == []
    assert server.requests == []


def test_deduplicate_keeps_first():
    first, second, other = plan("a.png", "u1"), plan("a.png", "u2"), plan("b.png")
    assert deduplicate_plans([first, second, other]) == [first, other]


class TestDownloadCache:
    """ページをまたいだ同一URLの扱い"""

    URL = "https://files.example.com/shared.png"

    def test_concurrent_pages_share_one_request(self):
        server = FakeFileServer(delay=0.01)
        other = PageNode(id=uid(2), title="Other")

        async def runner():
            downloader = AssetDownloader(http_client=server.http_client())
            try:
                return await asyncio.gather(
                    downloader.collect_assets(PAGE, [plan("one.png", self.URL)]),
                    downloader.collect_assets(other, [plan("two.png", self.URL)]),
                )
            finally:
                await downloader.close()

        first, second = asyncio.run(runner())

        assert server.requests == [self.URL]
        assert first[0].data == second[0].data == b"/shared.png"
        assert second[0].local_path == "img/two.png"

    def test_task_is_shared_until_released(self):
        server = FakeFileServer()
        other = PageNode(id=uid(2), title="Other")

        async def runner():
            downloader = AssetDownloader(http_client=server.http_client())
            try:
                await downloader.collect_assets(PAGE, [plan("one.png", self.URL)])
                held = downloader.cache.pending(self.URL) is not None
                await downloader.collect_assets(other, [plan("two.png", self.URL)])
                downloader.cache.release(self.URL)
                return held, downloader.cache.pending(self.URL)
            finally:
                await downloader.close()

        held, after_release = asyncio.run(runner())

        assert held
        assert after_release is None
        assert server.requests == [self.URL]

    def test_written_file_is_read_instead_of_fetching(self, tmp_path):
        server = FakeFileServer()
        cache = DownloadCache()
        stored = tmp_path / "shared.png"
        stored.write_bytes(b"from disk")
        cache.remember(self.URL, stored)

        assets = collect(server, [plan("two.png", self.URL)], cache=cache)

        assert server.requests == []
        assert assets[0].data == b"from disk"
        assert self.URL in cache
        assert len(cache) == 1

    def test_missing_written_file_is_fetched_again(self, tmp_path):
        server = FakeFileServer()
        cache = DownloadCache()
        cache.remember(self.URL, tmp_path / "deleted.png")

        assets = collect(server, [plan("two.png", self.URL)], cache=cache)

        assert server.requests == [self.URL]
        assert assets[0].data == b"/shared.png"
        assert self.URL not in cache

    def test_remember_keeps_first_path_and_drops_task(self, tmp_path):
        server = FakeFileServer()
        cache = DownloadCache()
        collect(server, [plan("one.png", self.URL)], cache=cache)

        cache.remember(self.URL, tmp_path / "first.png")
        cache.remember(self.URL, tmp_path / "second.png")

        assert cache.written_path(self.URL) == tmp_path / "first.png"
        assert cache.pending(self.URL) is None

    def test_failures_are_not_cached(self):
        server = FakeFileServer(missing={"/flaky.png"})
        cache = DownloadCache()
        url = "https://files.example.com/flaky.png"

        collect(server, [plan("flaky.png")], cache=cache)

        assert cache.pending(url) is None
        assert cache.written_path(url) is None
        assert len(cache) == 0

    def test_release_by_plans(self):
        server = FakeFileServer()
        downloader = AssetDownloader(http_client=server.http_client())
        plans = [plan("a.png"), plan("b.png")]

        async def runner():
            try:
                await downloader.collect_assets(PAGE, plans)
                downloader.release(plans)
            finally:
                await downloader.close()

        asyncio.run(runner())

        assert all(downloader.cache.pending(item.original_url) is None for item in plans)
