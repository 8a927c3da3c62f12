"""Test ICS normalization."""

from datetime import date, datetime, timezone

from cohort_digest.models.schemas import EventStatus, Group
from cohort_digest.tools.ics_parser import (
    PropertyValue,
    coerce_text,
    parse_components,
    parse_feed,
    parse_ics_datetime,
    unfold_lines,
)


def test_unfold_lines_joins_continuations_and_drops_blanks():
    text = "SUMMARY:Long\r\n title\r\n\r\nLOCATION:Room 1\rURL:x\n"
    assert unfold_lines(text) == ["SUMMARY:Longtitle", "LOCATION:Room 1", "URL:x"]


def test_parse_components_skips_nested_and_unterminated(sample_ics):
    components = parse_components(sample_ics + "BEGIN:VEVENT\nUID:dangling\n")
    uids = [c.first("UID").value for c in components]
    assert uids == ["micro-1@test", "allday-1@test", "utc-1@test", "broken-1@test"]
    # The VALARM description must not leak into the event
    assert len(components[0].all("DESCRIPTION")) == 1


def test_coerce_text_handles_every_value_shape():
    assert coerce_text("  plain ") == "plain"
    assert coerce_text(PropertyValue("Room\\, 2", {"LANGUAGE": "en"})) == "Room, 2"
    assert coerce_text([PropertyValue(""), "second"]) == "second"
    assert coerce_text(None) is None
    assert coerce_text("   ") is None
    assert coerce_text(42) == "42"


def test_parse_ics_datetime_variants(tz):
    value, is_date = parse_ics_datetime(PropertyValue("20250920", {"VALUE": "DATE"}), tz)
    assert is_date
    assert value.date() == date(2025, 9, 20)
    assert value.tzinfo == tz

    value, is_date = parse_ics_datetime(PropertyValue("20250918T020000Z"), tz)
    assert not is_date
    assert value == datetime(2025, 9, 18, 2, 0, tzinfo=timezone.utc)

    value, _ = parse_ics_datetime(PropertyValue("20250917T1830", {"TZID": "America/New_York"}), tz)
    assert value.utcoffset().total_seconds() == -4 * 3600

    value, _ = parse_ics_datetime(PropertyValue("20250917T183000"), tz)
    assert value.tzinfo == tz

    assert parse_ics_datetime(PropertyValue("garbage"), tz) is None
    assert parse_ics_datetime(PropertyValue("20251340"), tz) is None


def test_parse_feed_builds_events(sample_ics, catalog, tz):
    events = parse_feed(sample_ics, Group.BLUE, "ewmba201a_micro_blue_fall2025.ics", catalog.sanitize, tz)

    assert [e.uid for e in events] == ["micro-1@test", "allday-1@test", "utc-1@test"]
    micro, all_day, office = events

    assert micro.title == "Microeconomics Class, Session 8"
    assert micro.description == "Bring the case\nand your notes"
    assert micro.location == "Chou Hall N270"
    assert micro.status == EventStatus.CONFIRMED
    assert micro.categories == ["Class", "Core"]
    assert micro.group == Group.BLUE
    assert micro.source == "ewmba201a_micro_blue_fall2025.ics"
    assert not micro.all_day

    assert all_day.all_day
    assert all_day.day(tz) == date(2025, 9, 20)

    assert office.title == "Office Hours with a very long title that continues on the next line"
    assert office.url == "https://example.test/office-hours"
    assert office.day(tz) == date(2025, 9, 17)


def test_midnight_start_without_end_is_all_day(tz):
    text = "BEGIN:VEVENT\nDTSTART:20251001T000000\nSUMMARY:Holiday\nEND:VEVENT\n"
    (event,) = parse_feed(text, None, "cal.ics", tz=tz)
    assert event.all_day
    # Missing UID falls back to a stable hash
    (again,) = parse_feed(text, None, "cal.ics", tz=tz)
    assert event.uid == again.uid


def test_midnight_start_with_daytime_end_is_not_all_day(tz):
    text = (
        "BEGIN:VEVENT\nDTSTART:20251001T000000\nDTEND:20251001T020000\n"
        "SUMMARY:Late study\nEND:VEVENT\n"
    )
    (event,) = parse_feed(text, None, "cal.ics", tz=tz)
    assert not event.all_day


def test_reference_feed_drops_authoritative_series(catalog, tz):
    text = (
        "BEGIN:VEVENT\nUID:a\nDTSTART:20251001T180000\nSUMMARY:Teams@Haas Mixer\nEND:VEVENT\n"
        "BEGIN:VEVENT\nUID:b\nDTSTART:20251001T180000\nSUMMARY:Accounting\nEND:VEVENT\n"
    )
    events = parse_feed(text, None, "calendar.ics", catalog.sanitize, tz)
    assert [e.uid for e in events] == ["b"]

    # The authoritative feed itself keeps them
    events = parse_feed(text, Group.BLUE, "teams@Haas.ics", catalog.sanitize, tz)
    assert [e.uid for e in events] == ["a", "b"]


def test_scrub_rules_clean_description_and_organizer(catalog, tz):
    text = (
        "BEGIN:VEVENT\nUID:lp\nDTSTART:20251001T180000\nSUMMARY:Leading People\n"
        "DESCRIPTION:Questions? team@haas\n"
        "ORGANIZER;CN=team@haas:mailto:team@haas.example\nEND:VEVENT\n"
    )
    (event,) = parse_feed(text, Group.BLUE, "ewmba_leadingpeople_blue_fall2025.ics", catalog.sanitize, tz)
    assert event.description == "Questions?"
    assert event.organizer is None
