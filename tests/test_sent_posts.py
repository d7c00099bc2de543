from __future__ import annotations

import hashlib
import json
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from martscout.errors import StorageError
from martscout.storage.sent_posts import SentPostStore


class FakeClock:
    def __init__(self, start: float = 1_700_000_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs).total_seconds()


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def store(tmp_path, clock):
    sent_posts = SentPostStore(tmp_path / "db.json", clock=clock)
    sent_posts.initialize()
    try:
        yield sent_posts
    finally:
        sent_posts.close()


def test_initialize_creates_empty_document(tmp_path) -> None:
    path = tmp_path / "nested" / "db.json"
    store = SentPostStore(path)
    store.initialize()
    store.initialize()
    assert json.loads(path.read_text(encoding="utf-8")) == {"sentPosts": []}


def test_identity_is_deterministic(tmp_path) -> None:
    key = "screenshots/pune_fresh_apples_15off.png"
    first = SentPostStore(tmp_path / "a.json").identity_of(key)
    second = SentPostStore(tmp_path / "b.json").identity_of(key)
    assert first == second == hashlib.sha256(key.encode("utf-8")).hexdigest()
    assert SentPostStore.identity_of("other") != first


def test_reported_recently_expires_after_window(store, clock) -> None:
    store.record_reported("abc", "Pune", "Fruits", "Apples")
    assert store.was_reported_recently("abc") is True

    clock.advance(hours=4)
    assert store.was_reported_recently("abc") is False


def test_window_boundary(store, clock) -> None:
    store.record_reported("abc", "Pune", "Fruits", "Apples")
    clock.advance(hours=2, minutes=59)
    assert store.was_reported_recently("abc") is True
    clock.advance(minutes=1)
    assert store.was_reported_recently("abc") is False


def test_unknown_identity_not_reported(store) -> None:
    assert store.was_reported_recently("missing") is False


def test_record_reported_upserts_and_moves_to_end(store, clock) -> None:
    store.record_reported("a", "Pune", "Fruits", "Apples")
    clock.advance(minutes=5)
    store.record_reported("b", "Pune", "Fruits", "Bananas")
    clock.advance(hours=1)
    store.record_reported("a", "Surat", "Dairy", "Ignored")

    posts = store.posts
    assert [post.id for post in posts] == ["b", "a"]
    refreshed = posts[-1]
    assert refreshed.timestamp == int(clock.now * 1000)
    assert refreshed.location_name == "Pune"
    assert refreshed.product_name == "Apples"


def test_refresh_restarts_window(store, clock) -> None:
    store.record_reported("a", "Pune", "Fruits", "Apples")
    clock.advance(hours=4)
    assert store.was_reported_recently("a") is False
    store.record_reported("a", "Pune", "Fruits", "Apples")
    assert store.was_reported_recently("a") is True


def test_state_survives_reopen(tmp_path, clock) -> None:
    path = tmp_path / "db.json"
    with SentPostStore(path, clock=clock) as first:
        first.record_reported("abc", "Pune", "Fruits", "Apples")

    with SentPostStore(path, clock=clock) as second:
        assert second.was_reported_recently("abc") is True
        assert len(second.posts) == 1


def test_document_layout_and_no_temp_files(store, tmp_path) -> None:
    store.record_reported("abc", "Pune", "Fruits", "Apples")
    store.record_reported("def", "Surat", "Dairy", "Butter")

    assert sorted(p.name for p in tmp_path.iterdir()) == ["db.json"]
    data = json.loads((tmp_path / "db.json").read_text(encoding="utf-8"))
    assert data["sentPosts"][0] == {
        "id": "abc",
        "timestamp": 1_700_000_000_000,
        "locationName": "Pune",
        "categoryName": "Fruits",
        "productName": "Apples",
    }


def test_corrupt_document_raises(tmp_path) -> None:
    path = tmp_path / "db.json"
    path.write_text("{not json", encoding="utf-8")
    with pytest.raises(StorageError):
        SentPostStore(path).initialize()


def test_use_before_initialize_raises(tmp_path) -> None:
    with pytest.raises(StorageError):
        SentPostStore(tmp_path / "db.json").was_reported_recently("abc")


def test_closed_store_rejects_calls(store) -> None:
    store.close()
    with pytest.raises(StorageError):
        store.record_reported("abc", "Pune", "Fruits", "Apples")


def test_prune_drops_old_entries(store, clock) -> None:
    store.record_reported("old", "Pune", "Fruits", "Apples")
    clock.advance(hours=10)
    store.record_reported("new", "Pune", "Fruits", "Bananas")

    assert store.prune(timedelta(hours=5)) == 1
    assert [post.id for post in store.posts] == ["new"]
    assert store.prune(timedelta(hours=5)) == 0


def test_concurrent_records_keep_one_entry(store) -> None:
    with ThreadPoolExecutor(max_workers=8) as pool:
        for _ in range(40):
            pool.submit(store.record_reported, "same", "Pune", "Fruits", "Apples")

    assert [post.id for post in store.posts] == ["same"]
