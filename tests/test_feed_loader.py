"""Test feed loading and group collection."""

import asyncio

import httpx
import pytest

from cohort_digest.models.schemas import Group
from cohort_digest.services.feed_collector import FeedCollector
from cohort_digest.services.feed_loader import FeedLoader, FeedUnavailableError

EVENT_ICS = "BEGIN:VEVENT\nUID:{uid}\nDTSTART:20251001T180000\nSUMMARY:{title}\nEND:VEVENT\n"


def _write(path, name, uid, title="Session"):
    (path / name).write_text(EVENT_ICS.format(uid=uid, title=title), encoding="utf-8")


def test_load_prefers_override_url(tmp_path):
    _write(tmp_path, "calendar.ics", "local")
    requested = []

    def handler(request: httpx.Request) -> httpx.Response:
        requested.append(str(request.url))
        return httpx.Response(200, text=EVENT_ICS.format(uid="remote", title="Remote"))

    loader = FeedLoader(
        feeds_dir=tmp_path,
        reference_feed="calendar.ics",
        reference_feed_url="https://example.test/calendar.ics",
        transport=httpx.MockTransport(handler),
    )
    text = asyncio.run(loader.load("calendar.ics"))
    assert "UID:remote" in text
    assert requested == ["https://example.test/calendar.ics"]


def test_load_falls_back_to_local_file_when_remote_fails(tmp_path):
    _write(tmp_path, "calendar.ics", "local")
    loader = FeedLoader(
        feeds_dir=tmp_path,
        reference_feed="calendar.ics",
        reference_feed_url="https://example.test/calendar.ics",
        transport=httpx.MockTransport(lambda request: httpx.Response(503)),
    )
    assert "UID:local" in asyncio.run(loader.load("calendar.ics"))


def test_load_raises_when_nothing_resolves(tmp_path):
    (tmp_path / "empty.ics").write_text("   \n", encoding="utf-8")
    loader = FeedLoader(feeds_dir=tmp_path)

    with pytest.raises(FeedUnavailableError):
        asyncio.run(loader.load("missing.ics"))
    with pytest.raises(FeedUnavailableError):
        asyncio.run(loader.load("empty.ics"))


def test_collect_group_preserves_source_order_and_skips_failures(tmp_path, catalog, tz):
    _write(tmp_path, "ewmba201a_micro_blue_fall2025.ics", "micro")
    _write(tmp_path, "teams@Haas.ics", "teams", "Teams@Haas Mixer")
    collector = FeedCollector(loader=FeedLoader(feeds_dir=tmp_path), catalog=catalog, tz=tz)

    source_lists = asyncio.run(collector.collect_group(Group.BLUE))

    # micro, leading people (missing), teams
    assert [[e.uid for e in events] for events in source_lists] == [["micro"], [], ["teams"]]
    assert all(e.group == Group.BLUE for events in source_lists for e in events)


def test_legacy_feed_used_when_current_name_is_missing(tmp_path, catalog, tz):
    _write(tmp_path, "ewmba205_blue_fallA2025_v2.ics", "legacy", "Leading People")
    collector = FeedCollector(loader=FeedLoader(feeds_dir=tmp_path), catalog=catalog, tz=tz)

    events = asyncio.run(collector.collect_source("ewmba_leadingpeople_blue_fall2025.ics", Group.BLUE))
    assert [e.uid for e in events] == ["legacy"]
    assert events[0].source == "ewmba205_blue_fallA2025_v2.ics"


def test_legacy_feed_used_when_current_feed_is_empty(tmp_path, catalog, tz):
    (tmp_path / "ewmba_leadingpeople_blue_fall2025.ics").write_text(
        "BEGIN:VCALENDAR\nEND:VCALENDAR\n", encoding="utf-8",
    )
    _write(tmp_path, "ewmba205_blue_fallA2025_v2.ics", "legacy", "Leading People")
    collector = FeedCollector(loader=FeedLoader(feeds_dir=tmp_path), catalog=catalog, tz=tz)

    events = asyncio.run(collector.collect_source("ewmba_leadingpeople_blue_fall2025.ics", Group.BLUE))
    assert [e.uid for e in events] == ["legacy"]


def test_collect_reference_propagates_unavailable(tmp_path, catalog, tz):
    collector = FeedCollector(loader=FeedLoader(feeds_dir=tmp_path), catalog=catalog, tz=tz)
    with pytest.raises(FeedUnavailableError):
        asyncio.run(collector.collect_reference())


def test_collect_supplementary_is_non_fatal(tmp_path, catalog, tz):
    _write(tmp_path, "uc_launch_events_fall2025.ics", "launch", "Demo Day")
    loader = FeedLoader(
        feeds_dir=tmp_path,
        feed_urls=catalog.feed_urls,
        transport=httpx.MockTransport(lambda request: httpx.Response(404)),
    )
    collector = FeedCollector(loader=loader, catalog=catalog, tz=tz)

    supplementary = asyncio.run(collector.collect_supplementary())
    assert [e.uid for e in supplementary["launch"]] == ["launch"]
    assert supplementary["campus_groups"] == []
