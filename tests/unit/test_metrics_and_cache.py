import asyncio

from redis.exceptions import ConnectionError as RedisConnectionError
from starlette.requests import Request

from groundwork.middleware import rate_limit
from groundwork.services import cache
from groundwork.utils import metrics


class FakePipeline:
    def __init__(self, counts):
        self.counts = counts
        self.ops = []

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return False

    def incr(self, key):
        self.ops.append(("incr", key))
        return self

    def expire(self, key, seconds):
        self.ops.append(("expire", key))
        return self

    async def execute(self):
        results = []
        for op, key in self.ops:
            if op == "incr":
                self.counts[key] = self.counts.get(key, 0) + 1
                results.append(self.counts[key])
            else:
                results.append(True)
        return results


class FakeRedis:
    def __init__(self, fail=False):
        self.values = {}
        self.counts = {}
        self.fail = fail

    async def get(self, key):
        if self.fail:
            raise RedisConnectionError("redis down")
        return self.values.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise RedisConnectionError("redis down")
        self.values[key] = value

    def pipeline(self, transaction=True):
        return FakePipeline(self.counts)


def make_request(headers=None) -> Request:
    return Request({
        "type": "http",
        "method": "GET",
        "path": "/api/context/entries",
        "headers": [(k.lower().encode(), v.encode()) for k, v in (headers or {}).items()],
        "client": ("10.0.0.7", 5123),
    })


def test_histogram_summary_uses_nearest_rank() -> None:
    for value in range(1, 101):
        metrics.observe("generation.duration_ms", value)
    metrics.inc("render.claimed")
    metrics.inc("render.claimed", 2)

    snapshot = metrics.get_snapshot()

    assert snapshot["counters"] == {"render.claimed": 3}
    summary = snapshot["histograms"]["generation.duration_ms"]
    assert summary["count"] == 100
    assert summary["p50"] == 50
    assert summary["p95"] == 95
    assert summary["min"] == 1 and summary["max"] == 100


def test_histogram_keeps_a_rolling_window() -> None:
    for value in range(metrics.WINDOW + 50):
        metrics.observe("grounding.score", value)

    summary = metrics.get_snapshot()["histograms"]["grounding.score"]

    assert summary["count"] == metrics.WINDOW
    assert summary["min"] == 50


def test_snapshot_text_cache_round_trips_through_redis(monkeypatch) -> None:
    fake = FakeRedis()
    monkeypatch.setattr(cache, "get_redis", lambda: fake)

    async def scenario():
        miss = await cache.get_snapshot_text("abc123")
        await cache.put_snapshot_text("abc123", "## Acme")
        return miss, await cache.get_snapshot_text("abc123")

    miss, hit = asyncio.run(scenario())
    assert miss is None
    assert hit == "## Acme"
    assert cache.snapshot_text_key("abc123") in fake.values


def test_snapshot_text_cache_misses_when_redis_fails(monkeypatch) -> None:
    monkeypatch.setattr(cache, "get_redis", lambda: FakeRedis(fail=True))

    async def scenario():
        await cache.put_snapshot_text("abc123", "## Acme")
        return await cache.get_snapshot_text("abc123")

    assert asyncio.run(scenario()) is None


def test_rate_limit_subject_prefers_user_header() -> None:
    assert rate_limit.user_or_ip(make_request({"X-User-ID": "alice"})) == "user:alice"
    assert rate_limit.user_or_ip(make_request()) == "ip:10.0.0.7"
    assert rate_limit.quota_for("user:alice") == rate_limit.USER_QUOTA
    assert rate_limit.quota_for("ip:10.0.0.7") == rate_limit.ADDRESS_QUOTA


def test_rate_limit_counts_per_subject_and_window() -> None:
    fake = FakeRedis()

    async def scenario():
        first = await rate_limit.count_request(fake, "user:alice", 100)
        second = await rate_limit.count_request(fake, "user:alice", 100)
        other = await rate_limit.count_request(fake, "user:bob", 100)
        next_window = await rate_limit.count_request(fake, "user:alice", 101)
        return first, second, other, next_window

    assert asyncio.run(scenario()) == (1, 2, 1, 1)
