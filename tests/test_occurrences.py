"""
Tests for merging rule expansion, overrides and base events into
occurrence views, including the end-to-end series scenarios.
"""

from datetime import date, timedelta

import pytest
from sqlalchemy import select

from conftest import WEEKLY_MONDAYS, StaticAccessGate, utc
from services.events.core.access import Role
from services.events.core.errors import (
    CalendarNotFoundError,
    EventNotFoundError,
    InstanceNotFoundError,
    InvalidFieldError,
    NotRecurringError,
    PermissionDeniedError,
    RecurrenceParseError,
)
from services.events.database import (
    Event,
    EventOperations,
    EventSchema,
    OccurrenceView,
    RecurrenceRule,
)

WINDOW = ("2024-06-01T00:00:00Z", "2024-06-21T23:59:59Z")


def starts(views):
    return [view.start_time for view in views]


class TestSeriesScenarios:
    def test_weekly_expansion(self, ops, weekly_event):
        views = ops.list_occurrences("alice", *WINDOW)

        assert starts(views) == [
            utc(2024, 6, 3, 10, 0),
            utc(2024, 6, 10, 10, 0),
            utc(2024, 6, 17, 10, 0),
        ]
        for view in views:
            assert view.end_time - view.start_time == timedelta(hours=1)
            assert view.is_exception is False
            assert view.is_recurring_instance is True
            assert view.original_event_id == weekly_event.id
        assert [view.id for view in views] == [
            f"{weekly_event.id}_2024-06-03",
            f"{weekly_event.id}_2024-06-10",
            f"{weekly_event.id}_2024-06-17",
        ]

    def test_moved_occurrence_is_merged(self, ops, weekly_event):
        ops.update_instance(
            "alice", weekly_event.id, "2024-06-10", {"start_time": "2024-06-10T14:00:00Z"}
        )

        views = ops.list_occurrences("alice", *WINDOW)

        assert starts(views) == [
            utc(2024, 6, 3, 10, 0),
            utc(2024, 6, 10, 14, 0),
            utc(2024, 6, 17, 10, 0),
        ]
        assert [view.is_exception for view in views] == [False, True, False]
        assert views[1].end_time == utc(2024, 6, 10, 15, 0)
        assert views[1].id == f"{weekly_event.id}_2024-06-10"

    def test_cancelled_occurrence_disappears(self, ops, weekly_event):
        ops.update_instance(
            "alice", weekly_event.id, "2024-06-10", {"start_time": "2024-06-10T14:00:00Z"}
        )
        ops.delete_occurrence("alice", f"{weekly_event.id}_2024-06-17", "this")

        views = ops.list_occurrences("alice", *WINDOW)

        assert starts(views) == [utc(2024, 6, 3, 10, 0), utc(2024, 6, 10, 14, 0)]
        event = ops.get_event("alice", weekly_event.id)
        assert date(2024, 6, 17) in event.exception_dates

    def test_future_delete_truncates_series(self, ops, clock, weekly_event):
        ops.update_instance(
            "alice", weekly_event.id, "2024-06-10", {"start_time": "2024-06-10T14:00:00Z"}
        )
        clock.set(utc(2024, 6, 11, 8, 30))

        ops.delete_occurrence("alice", weekly_event.id, "future")

        views = ops.list_occurrences("alice", *WINDOW)
        assert starts(views) == [utc(2024, 6, 3, 10, 0), utc(2024, 6, 10, 14, 0)]
        assert views[1].is_exception is True

        event = ops.get_event("alice", weekly_event.id)
        assert event.recurrence_rule.until.date() == date(2024, 6, 10)
        assert event.recurrence_rule.count is None

        later = ops.list_occurrences("alice", "2024-06-11T00:00:00Z", "2024-12-31T00:00:00Z")
        assert later == []


class TestMergeRules:
    def test_single_event_inside_window(self, ops):
        event = ops.create_series(
            "alice",
            calendar_id="cal-work",
            title="Offsite",
            start_time="2024-06-05T09:00:00Z",
            end_time="2024-06-05T17:00:00Z",
        )

        views = ops.list_occurrences("alice", *WINDOW)

        assert len(views) == 1
        assert views[0].id == event.id
        assert views[0].is_recurring_instance is False
        assert views[0].instance_date is None
        assert views[0].recurrence_rule is None

    def test_single_event_overlapping_window_edge(self, ops):
        ops.create_series(
            "alice",
            calendar_id="cal-work",
            title="Overnight",
            start_time="2024-05-31T22:00:00Z",
            end_time="2024-06-01T02:00:00Z",
        )

        assert len(ops.list_occurrences("alice", *WINDOW)) == 1

    def test_single_event_outside_window(self, ops):
        ops.create_series(
            "alice",
            calendar_id="cal-work",
            title="Later",
            start_time="2024-07-05T09:00:00Z",
            end_time="2024-07-05T10:00:00Z",
        )

        assert ops.list_occurrences("alice", *WINDOW) == []

    def test_override_fields_fall_back_to_series(self, ops, weekly_event):
        ops.update_instance(
            "alice",
            weekly_event.id,
            "2024-06-10",
            {"title": "Planning", "location": "Room 4"},
        )

        view = ops.get_event("alice", f"{weekly_event.id}_2024-06-10")

        assert isinstance(view, OccurrenceView)
        assert view.title == "Planning"
        assert view.location == "Room 4"
        assert view.description is None
        assert view.status == weekly_event.status
        assert view.start_time == utc(2024, 6, 10, 10, 0)

    def test_override_is_listed_even_though_its_date_is_excluded(self, ops, weekly_event):
        ops.update_instance("alice", weekly_event.id, "2024-06-17", {"title": "Retro"})

        views = ops.list_occurrences("alice", *WINDOW)

        assert [view.title for view in views] == ["Weekly sync", "Weekly sync", "Retro"]
        assert len({view.id for view in views}) == 3

    def test_occurrences_from_several_events_are_sorted(self, ops, weekly_event):
        ops.create_series(
            "alice",
            calendar_id="cal-work",
            title="Daily standup",
            start_time="2024-06-10T09:00:00Z",
            end_time="2024-06-10T09:15:00Z",
            rule="FREQ=DAILY;COUNT=2",
        )

        views = ops.list_occurrences("alice", *WINDOW)

        assert [view.title for view in views] == [
            "Weekly sync",
            "Daily standup",
            "Weekly sync",
            "Daily standup",
            "Weekly sync",
        ]
        assert starts(views) == sorted(starts(views))

    def test_corrupt_series_is_skipped_in_window_queries(self, ops, session, weekly_event):
        broken = ops.create_series(
            "alice",
            calendar_id="cal-work",
            title="Broken",
            start_time="2024-06-04T08:00:00Z",
            end_time="2024-06-04T09:00:00Z",
            rule="FREQ=DAILY",
        )
        rule = session.execute(
            select(RecurrenceRule).where(RecurrenceRule.event_id == broken.id)
        ).scalar_one()
        rule.frequency = "BOGUS"
        session.commit()

        views = ops.list_occurrences("alice", *WINDOW)

        assert {view.original_event_id for view in views} == {weekly_event.id}
        with pytest.raises(RecurrenceParseError):
            ops.get_event("alice", f"{broken.id}_2024-06-05")
        with pytest.raises(RecurrenceParseError):
            ops.get_event("alice", broken.id)

    def test_calendar_name_and_color_on_every_view(self, ops, weekly_event):
        ops.update_instance("alice", weekly_event.id, "2024-06-10", {"color": "#000000"})

        views = ops.list_occurrences("alice", *WINDOW)

        assert {(view.calendar_name, view.calendar_color) for view in views} == {
            ("Work", "#4285f4")
        }
        assert views[1].color == "#000000"

    def test_expansion_cap_applies_per_series(self, session, clock, weekly_event):
        capped = EventOperations(session, clock=clock, max_instances=2)

        views = capped.list_occurrences("alice", *WINDOW)

        assert len(views) == 2


class TestListAccess:
    def test_default_calendars_are_the_accessible_ones(self, ops, weekly_event):
        ops.create_series(
            "bob",
            calendar_id="cal-home",
            title="Gym",
            start_time="2024-06-04T18:00:00Z",
            end_time="2024-06-04T19:00:00Z",
        )

        assert {v.title for v in ops.list_occurrences("alice", *WINDOW)} == {"Weekly sync"}
        assert {v.title for v in ops.list_occurrences("bob", *WINDOW)} == {"Gym"}

    def test_viewer_can_list(self, ops, weekly_event):
        views = ops.list_occurrences("dave", *WINDOW, calendar_ids=["cal-work"])

        assert len(views) == 3

    def test_no_role_is_denied(self, ops, weekly_event):
        with pytest.raises(PermissionDeniedError):
            ops.list_occurrences("zed", *WINDOW, calendar_ids=["cal-work"])

    def test_pending_share_is_denied(self, ops, weekly_event):
        with pytest.raises(PermissionDeniedError):
            ops.list_occurrences("erin", *WINDOW, calendar_ids=["cal-work"])

    def test_missing_calendar(self, ops):
        with pytest.raises(CalendarNotFoundError):
            ops.list_occurrences("alice", *WINDOW, calendar_ids=["cal-missing"])

    def test_inverted_window(self, ops):
        with pytest.raises(InvalidFieldError):
            ops.list_occurrences("alice", WINDOW[1], WINDOW[0])

    def test_malformed_window(self, ops):
        with pytest.raises(InvalidFieldError) as exc_info:
            ops.list_occurrences("alice", "last tuesday", WINDOW[1])

        assert exc_info.value.location == "start"

    def test_custom_gate(self, session, clock, weekly_event):
        gate = StaticAccessGate({("auditor", "cal-work"): Role.view})
        gated = EventOperations(session, gate=gate, clock=clock)

        assert len(gated.list_occurrences("auditor", *WINDOW)) == 3
        assert gated.list_occurrences("nobody", *WINDOW) == []


class TestGetOccurrence:
    def test_plain_id_returns_event(self, ops, weekly_event):
        event = ops.get_event("dave", weekly_event.id)

        assert isinstance(event, EventSchema)
        assert event.recurrence_rule.rule_text == WEEKLY_MONDAYS
        assert event.version == 1
        assert event.calendar_name == "Work"

    def test_default_occurrence(self, ops, weekly_event):
        view = ops.get_occurrence("alice", weekly_event.id, "2024-06-17")

        assert view.start_time == utc(2024, 6, 17, 10, 0)
        assert view.instance_date == date(2024, 6, 17)
        assert view.is_exception is False

    def test_date_not_in_rule(self, ops, weekly_event):
        with pytest.raises(InstanceNotFoundError):
            ops.get_event("alice", f"{weekly_event.id}_2024-06-18")

    def test_cancelled_date(self, ops, weekly_event):
        ops.delete_occurrence("alice", f"{weekly_event.id}_2024-06-10")

        with pytest.raises(InstanceNotFoundError):
            ops.get_event("alice", f"{weekly_event.id}_2024-06-10")

    def test_edited_occurrence_of_corrupt_series(self, ops, session, weekly_event):
        ops.update_instance("alice", weekly_event.id, "2024-06-10", {"title": "Planning"})
        rule = session.execute(
            select(RecurrenceRule).where(RecurrenceRule.event_id == weekly_event.id)
        ).scalar_one()
        rule.interval = 0
        session.commit()

        with pytest.raises(RecurrenceParseError):
            ops.get_event("alice", f"{weekly_event.id}_2024-06-10")

    def test_non_recurring_event(self, ops):
        event = ops.create_series(
            "alice",
            calendar_id="cal-work",
            title="Once",
            start_time="2024-06-05T09:00:00Z",
            end_time="2024-06-05T10:00:00Z",
        )

        with pytest.raises(NotRecurringError):
            ops.get_event("alice", f"{event.id}_2024-06-05")

    def test_unknown_event(self, ops):
        with pytest.raises(EventNotFoundError):
            ops.get_event("alice", "missing-event")

    def test_no_role_cannot_read(self, ops, weekly_event):
        with pytest.raises(PermissionDeniedError):
            ops.get_event("zed", weekly_event.id)

    def test_stored_event_id_wins_over_occurrence_form(self, ops, session):
        session.add(
            Event(
                id="legacy_2024-06-05",
                calendar_id="cal-work",
                title="Imported",
                start_time=utc(2024, 6, 5, 9).replace(tzinfo=None),
                end_time=utc(2024, 6, 5, 10).replace(tzinfo=None),
                created_by="alice",
            )
        )
        session.commit()

        event = ops.get_event("alice", "legacy_2024-06-05")

        assert isinstance(event, EventSchema)
        assert event.title == "Imported"
