from __future__ import annotations

import asyncio
import threading

import pytest

from martscout.config import Location
from martscout.errors import DeliveryError
from martscout.parser import ProductRecord
from martscout.reporter import DealReporter
from martscout.storage.sent_posts import SentPostStore

PUNE = Location(name="Pune", latitude=18.52, longitude=73.85)
APPLES = ProductRecord(
    name="Fresh Apples",
    description="Crisp and juicy",
    discount_percentage=15,
    mrp=140,
    discounted_price=120,
    unit="1 kg pack",
    origin="Nashik",
)


class FakeNotifier:
    def __init__(self, *, fail: bool = False) -> None:
        self.photos: list[tuple[str, str]] = []
        self.messages: list[str] = []
        self.fail = fail

    def send_photo(self, path, caption: str) -> None:
        if self.fail:
            raise DeliveryError("HTTP 500")
        self.photos.append((str(path), caption))

    def send_message(self, text: str) -> None:
        if self.fail:
            raise DeliveryError("HTTP 500")
        self.messages.append(text)


@pytest.fixture()
def store(tmp_path):
    sent_posts = SentPostStore(tmp_path / "db.json")
    sent_posts.initialize()
    try:
        yield sent_posts
    finally:
        sent_posts.close()


def _screenshot(tmp_path):
    shot = tmp_path / "shots" / "pune_fresh_apples_15off.png"
    shot.parent.mkdir(parents=True, exist_ok=True)
    shot.write_bytes(b"png")
    return shot


def test_first_report_sends_photo_and_records(store, tmp_path) -> None:
    notifier = FakeNotifier()
    reporter = DealReporter(store, notifier)
    shot = _screenshot(tmp_path)

    assert asyncio.run(reporter.report(PUNE, "Fruits", APPLES, shot)) is True

    assert len(notifier.photos) == 1
    assert "Fresh Apples" in notifier.photos[0][1]
    assert not shot.exists()
    post_id = store.identity_of(str(shot))
    assert store.was_reported_recently(post_id) is True
    assert store.posts[0].category_name == "Fruits"


def test_repeat_report_is_suppressed_and_screenshot_removed(store, tmp_path) -> None:
    notifier = FakeNotifier()
    reporter = DealReporter(store, notifier)
    asyncio.run(reporter.report(PUNE, "Fruits", APPLES, _screenshot(tmp_path)))

    shot = _screenshot(tmp_path)
    assert asyncio.run(reporter.report(PUNE, "Fruits", APPLES, shot)) is False
    assert len(notifier.photos) == 1
    assert not shot.exists()


def test_missing_screenshot_falls_back_to_text(store, tmp_path) -> None:
    notifier = FakeNotifier()
    reporter = DealReporter(store, notifier)
    missing = tmp_path / "never_written.png"

    assert asyncio.run(reporter.report(PUNE, "Fruits", APPLES, missing)) is True
    assert notifier.photos == []
    assert len(notifier.messages) == 1
    assert store.was_reported_recently(store.identity_of(str(missing))) is True


def test_delivery_failure_is_not_recorded(store, tmp_path) -> None:
    reporter = DealReporter(store, FakeNotifier(fail=True))
    shot = _screenshot(tmp_path)

    with pytest.raises(DeliveryError):
        asyncio.run(reporter.report(PUNE, "Fruits", APPLES, shot))
    assert store.posts == []


def test_dry_run_touches_nothing(store, tmp_path) -> None:
    reporter = DealReporter(store, None, dry_run=True)
    shot = _screenshot(tmp_path)

    assert asyncio.run(reporter.report(PUNE, "Fruits", APPLES, shot)) is True
    assert store.posts == []
    assert shot.exists()


def test_concurrent_reports_send_once(store, tmp_path) -> None:
    notifier = FakeNotifier()
    reporter = DealReporter(store, notifier)
    shot = _screenshot(tmp_path)

    async def race() -> list[bool]:
        return await asyncio.gather(
            *(reporter.report(PUNE, "Fruits", APPLES, shot) for _ in range(5))
        )

    outcomes = asyncio.run(race())
    assert sorted(outcomes) == [False, False, False, False, True]
    assert len(notifier.photos) == 1


def test_notifier_required_outside_dry_run(store) -> None:
    with pytest.raises(ValueError):
        DealReporter(store, None)


def test_suppressed_attempt_refreshes_timestamp(tmp_path) -> None:
    now = [1_700_000_000.0]
    notifier = FakeNotifier()
    with SentPostStore(tmp_path / "db.json", clock=lambda: now[0]) as store:
        reporter = DealReporter(store, notifier)
        assert asyncio.run(reporter.report(PUNE, "Fruits", APPLES, _screenshot(tmp_path))) is True

        now[0] += 3600
        assert asyncio.run(reporter.report(PUNE, "Fruits", APPLES, _screenshot(tmp_path))) is False
        assert store.posts[0].timestamp == 1_700_003_600_000

        # three hours after the first post, but only two after the refresh
        now[0] += 2 * 3600 + 60
        assert asyncio.run(reporter.report(PUNE, "Fruits", APPLES, _screenshot(tmp_path))) is False

    assert len(notifier.photos) == 1


def test_dry_run_suppression_does_not_write(store, tmp_path) -> None:
    asyncio.run(DealReporter(store, FakeNotifier()).report(PUNE, "Fruits", APPLES, _screenshot(tmp_path)))
    before = store.posts[0].timestamp

    dry = DealReporter(store, None, dry_run=True)
    assert asyncio.run(dry.report(PUNE, "Fruits", APPLES, _screenshot(tmp_path))) is False
    assert store.posts[0].timestamp == before


def test_identity_locks_are_released(store, tmp_path) -> None:
    reporter = DealReporter(store, FakeNotifier())
    shot = _screenshot(tmp_path)

    async def race() -> list[bool]:
        return await asyncio.gather(
            *(reporter.report(PUNE, "Fruits", APPLES, shot) for _ in range(3))
        )

    asyncio.run(race())
    assert reporter._identity_locks == {}
    assert reporter._lock_users == {}

    failing = DealReporter(store, FakeNotifier(fail=True))
    with pytest.raises(DeliveryError):
        asyncio.run(failing.report(PUNE, "Fruits", APPLES, tmp_path / "other.png"))
    assert failing._identity_locks == {}


def test_store_calls_run_off_the_event_loop_thread(tmp_path) -> None:
    threads: list[int] = []

    class RecordingStore(SentPostStore):
        def was_reported_recently(self, post_id: str) -> bool:
            threads.append(threading.get_ident())
            return super().was_reported_recently(post_id)

        def record_reported(self, *args) -> None:
            threads.append(threading.get_ident())
            super().record_reported(*args)

    with RecordingStore(tmp_path / "db.json") as store:
        asyncio.run(DealReporter(store, FakeNotifier()).report(PUNE, "Fruits", APPLES, _screenshot(tmp_path)))

    assert len(threads) == 2
    assert threading.get_ident() not in threads
