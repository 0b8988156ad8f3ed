import pytest
from aiohttp.test_utils import TestClient, TestServer

from api import NO_KEY_REPLY, create_app
from cache import SnapshotCache
from errors import RefreshError
from fakes import FakeAPIError, FakeClient
from models import EnrichedItem, Track, item_id_for_url
from scheduler import RefreshScheduler
from summarizer import DEFAULT_PROMPTS

ITEM = EnrichedItem(
    id=item_id_for_url("https://example.com/evals"),
    title="Why evals matter",
    track=Track.EVALS,
    summary="- Evals catch regressions",
    content="Example Blog • 2025-01-01T00:00:00+00:00",
    url="https://example.com/evals",
)


class StubAggregator:
    def __init__(self, fail_refresh=False):
        self.cache = SnapshotCache()
        self.cache.publish([ITEM])
        self.fail_refresh = fail_refresh
        self.refreshes = 0
        self.refreshing = False
        self.last_run = None

    async def refresh(self):
        self.refreshes += 1
        if self.fail_refresh:
            raise RefreshError("Could not start refresh cycle: no more tasks")
        return self.cache.publish([ITEM])


def make_app(aggregator, **kwargs):
    kwargs.setdefault("chat_enabled", False)
    return create_app(aggregator, prompts=dict(DEFAULT_PROMPTS), **kwargs)


@pytest.mark.asyncio
async def test_resources_returns_current_snapshot():
    aggregator = StubAggregator()
    async with TestClient(TestServer(make_app(aggregator))) as client:
        resp = await client.get("/api/resources")
        assert resp.status == 200
        data = await resp.json()

    assert aggregator.refreshes == 0
    assert data["generation"] == 1
    assert data["updatedAt"] > 0
    assert data["resources"][0]["title"] == "Why evals matter"
    assert data["resources"][0]["track"] == "Evals"
    assert resp.headers["Access-Control-Allow-Origin"] == "*"


@pytest.mark.asyncio
async def test_resources_refresh_flag_runs_cycle_first():
    aggregator = StubAggregator()
    async with TestClient(TestServer(make_app(aggregator))) as client:
        resp = await client.get("/api/resources", params={"refresh": "1"})
        data = await resp.json()

    assert aggregator.refreshes == 1
    assert data["generation"] == 2


@pytest.mark.asyncio
async def test_refresh_that_cannot_start_is_reported():
    aggregator = StubAggregator(fail_refresh=True)
    async with TestClient(TestServer(make_app(aggregator))) as client:
        resp = await client.get("/api/resources?refresh=1")
        assert resp.status == 500
        data = await resp.json()

    assert data["error"] == "Refresh failed"
    assert "no more tasks" in data["details"]
    assert aggregator.cache.current().generation == 1


@pytest.mark.asyncio
async def test_chat_requires_message():
    async with TestClient(TestServer(make_app(StubAggregator()))) as client:
        resp = await client.post("/api/chat", json={"resourceId": ITEM.id})
        assert resp.status == 400
        assert (await resp.json()) == {"error": "message required"}


@pytest.mark.asyncio
async def test_chat_without_credentials_replies_with_hint():
    async with TestClient(TestServer(make_app(StubAggregator()))) as client:
        resp = await client.post("/api/chat", json={"message": "hello"})
        data = await resp.json()

    assert resp.status == 200
    assert data == {"reply": {"role": "assistant", "content": NO_KEY_REPLY}}


@pytest.mark.asyncio
async def test_chat_includes_resource_context():
    fake = FakeClient("Start with a small regression suite.")
    app = make_app(StubAggregator(), chat_enabled=True, chat_client=fake)
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/api/chat", json={"resourceId": ITEM.id, "message": "Where do I start?"})
        data = await resp.json()

    assert resp.status == 200
    assert data["reply"] == {"role": "assistant", "content": "Start with a small regression suite."}
    messages = fake.calls[0]["messages"]
    assert messages[0]["content"] == DEFAULT_PROMPTS["chat"]
    assert "TITLE: Why evals matter" in messages[1]["content"]
    assert "TRACK: Evals" in messages[1]["content"]
    assert messages[-1] == {"role": "user", "content": "Where do I start?"}
    assert fake.calls[0]["max_tokens"] == 800


@pytest.mark.asyncio
async def test_chat_unknown_resource_has_no_context():
    fake = FakeClient("General advice.")
    app = make_app(StubAggregator(), chat_enabled=True, chat_client=fake)
    async with TestClient(TestServer(app)) as client:
        await client.post("/api/chat", json={"resourceId": "nope", "message": "Hi"})

    assert len(fake.calls[0]["messages"]) == 2


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "outcome",
    [RuntimeError("upstream 502"), FakeAPIError("insufficient_quota", "You exceeded your current quota")],
    ids=["upstream-error", "quota"],
)
async def test_chat_upstream_failure_is_500(outcome):
    app = make_app(StubAggregator(), chat_enabled=True, chat_client=FakeClient(outcome))
    async with TestClient(TestServer(app)) as client:
        resp = await client.post("/api/chat", json={"message": "Hi"})
        data = await resp.json()

    assert resp.status == 500
    assert set(data) == {"error", "details"}


@pytest.mark.asyncio
async def test_healthz_reports_schedule():
    aggregator = StubAggregator()
    scheduler = RefreshScheduler(aggregator, interval_minutes=1)
    async with TestClient(TestServer(make_app(aggregator, scheduler=scheduler))) as client:
        resp = await client.get("/healthz")
        data = await resp.json()

    assert resp.status == 200
    assert data["status"] == "ok"
    assert data["interval_minutes"] == 5
    assert data["generation"] == 1
