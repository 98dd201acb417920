from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from eventboard import database, services
from eventboard.errors import Forbidden, InvalidParameter, NotFound, ValidationError
from eventboard.models import Event

from conftest import BASE_START, as_actor


def _fields(**overrides):
    values = {
        "title": "Picnic",
        "description": "Bring snacks",
        "location": "Park",
        "start_date": BASE_START,
        "end_date": BASE_START + timedelta(hours=3),
        "visibility": "public",
    }
    values.update(overrides)
    return values


# -------- create --------


def test_create_event_sets_creator_and_empty_attendees(session, alice):
    view = services.create_event(session, as_actor(alice), _fields())
    session.commit()
    assert view.event.created_by_id == alice.id
    assert view.event.attendee_ids == []
    assert view.created_by.display_name == "Alice"
    assert view.attendees == []


def test_create_event_defaults_to_public(session, alice):
    fields = _fields()
    del fields["visibility"]
    view = services.create_event(session, as_actor(alice), fields)
    assert view.event.visibility == "public"


@pytest.mark.parametrize("offset", [timedelta(0), timedelta(minutes=-1), timedelta(days=-3)])
def test_create_event_rejects_end_not_after_start(session, alice, offset):
    with pytest.raises(ValidationError) as excinfo:
        services.create_event(
            session, as_actor(alice), _fields(end_date=BASE_START + offset)
        )
    assert excinfo.value.fields == ["end_date"]
    assert excinfo.value.errors[0].rule == "after_start"


def test_create_event_with_iso_strings_cites_end_date(session, alice):
    with pytest.raises(ValidationError) as excinfo:
        services.create_event(
            session,
            as_actor(alice),
            _fields(
                start_date="2024-01-01T10:00:00Z", end_date="2024-01-01T09:00:00Z"
            ),
        )
    assert "end_date" in excinfo.value.fields


def test_create_event_normalizes_aware_datetimes_to_utc(session, alice):
    plus_two = timezone(timedelta(hours=2))
    view = services.create_event(
        session,
        as_actor(alice),
        _fields(
            start_date=datetime(2030, 5, 1, 12, 0, tzinfo=plus_two),
            end_date=datetime(2030, 5, 1, 14, 0, tzinfo=plus_two),
        ),
    )
    assert view.event.start_date == datetime(2030, 5, 1, 10, 0)
    assert view.event.end_date == datetime(2030, 5, 1, 12, 0)


def test_create_event_reports_every_field_problem(session, alice):
    with pytest.raises(ValidationError) as excinfo:
        services.create_event(
            session,
            as_actor(alice),
            {
                "title": "x" * 101,
                "description": "   ",
                "start_date": "not a date",
                "visibility": "hidden",
            },
        )
    rules = {(e.field, e.rule) for e in excinfo.value.errors}
    assert ("title", "max_length") in rules
    assert ("description", "required") in rules
    assert ("location", "required") in rules
    assert ("start_date", "format") in rules
    assert ("end_date", "required") in rules
    assert ("visibility", "choice") in rules


# -------- get / list --------


def test_private_event_of_admin_is_forbidden_for_other_users(session, admin, bob):
    view = services.create_event(
        session, as_actor(admin), _fields(visibility="private")
    )
    session.commit()
    with pytest.raises(Forbidden):
        services.get_event(session, as_actor(bob), view.event.id)
    assert services.get_event(session, as_actor(admin), view.event.id).event.id == view.event.id


def test_get_event_missing_is_not_found(session, alice):
    with pytest.raises(NotFound):
        services.get_event(session, as_actor(alice), "missing")


def test_list_never_returns_other_users_private_events(session, alice, bob, make_event):
    hidden = make_event(alice, visibility="private")
    own = make_event(bob, visibility="private")
    public = make_event(alice)
    page = services.list_events(session, as_actor(bob), limit=50, visibility="private")
    ids = {view.event.id for view in page.events}
    assert hidden.id not in ids
    assert ids == {own.id, public.id}
    assert page.pagination["total"] == 2


def test_list_second_page_of_twelve(session, alice, make_event):
    events = [make_event(alice) for _ in range(12)]
    page = services.list_events(session, as_actor(alice), page=2, limit=5)
    assert page.pagination == {"page": 2, "limit": 5, "total": 12, "pages": 3}
    assert [view.event.id for view in page.events] == [e.id for e in events[5:10]]


def test_list_page_past_the_end_is_empty(session, alice, make_event):
    make_event(alice)
    page = services.list_events(session, as_actor(alice), page=4, limit=5)
    assert page.events == []
    assert page.pagination == {"page": 4, "limit": 5, "total": 1, "pages": 1}


def test_list_rejects_zero_limit(session, alice):
    with pytest.raises(InvalidParameter):
        services.list_events(session, as_actor(alice), limit=0)


def test_list_resolves_creator_and_attendees(session, alice, bob, make_event):
    make_event(alice, attendee_ids=[bob.id, "deleted-user"])
    page = services.list_events(session, as_actor(bob))
    view = page.events[0]
    assert view.created_by.email == "alice@example.com"
    assert [s.id for s in view.attendees] == [bob.id]


def test_admin_visibility_filter(session, admin, alice, make_event):
    make_event(alice, visibility="private")
    make_event(alice, visibility="public")
    page = services.list_events(session, as_actor(admin), visibility="private")
    assert [v.event.visibility for v in page.events] == ["private"]
    everything = services.list_events(session, as_actor(admin))
    assert everything.pagination["total"] == 2


# -------- update --------


def test_update_by_creator_changes_only_given_fields(session, alice, make_event):
    event = make_event(alice, title="Old")
    view = services.update_event(
        session, as_actor(alice), event.id, {"title": "New", "visibility": "private"}
    )
    assert view.event.title == "New"
    assert view.event.visibility == "private"
    assert view.event.location == "Town Hall"


def test_update_by_admin_is_allowed(session, admin, alice, make_event):
    event = make_event(alice, visibility="private")
    view = services.update_event(session, as_actor(admin), event.id, {"location": "Moon"})
    assert view.event.location == "Moon"


def test_update_by_stranger_is_forbidden(session, alice, bob, make_event):
    event = make_event(alice)
    with pytest.raises(Forbidden):
        services.update_event(session, as_actor(bob), event.id, {"title": "Mine"})


def test_update_missing_event_is_not_found(session, alice):
    with pytest.raises(NotFound):
        services.update_event(session, as_actor(alice), "missing", {"title": "x"})


def test_update_single_date_is_checked_against_stored_counterpart(
    session, alice, make_event
):
    event = make_event(alice)
    with pytest.raises(ValidationError) as excinfo:
        services.update_event(
            session, as_actor(alice), event.id, {"start_date": event.end_date}
        )
    assert excinfo.value.fields == ["end_date"]
    with pytest.raises(ValidationError):
        services.update_event(
            session,
            as_actor(alice),
            event.id,
            {"end_date": event.start_date - timedelta(minutes=5)},
        )


def test_update_both_dates_checked_against_new_values(session, alice, make_event):
    event = make_event(alice)
    later = event.end_date + timedelta(days=10)
    view = services.update_event(
        session,
        as_actor(alice),
        event.id,
        {"start_date": later, "end_date": later + timedelta(hours=1)},
    )
    assert view.event.start_date == later


@pytest.mark.parametrize(
    ("field", "rule"),
    [("created_by_id", "immutable"), ("attendee_ids", "immutable"), ("colour", "unknown")],
)
def test_update_rejects_protected_and_unknown_fields(session, alice, bob, make_event, field, rule):
    event = make_event(alice)
    with pytest.raises(ValidationError) as excinfo:
        services.update_event(session, as_actor(alice), event.id, {field: bob.id})
    assert (excinfo.value.errors[0].field, excinfo.value.errors[0].rule) == (field, rule)
    session.refresh(event)
    assert event.created_by_id == alice.id
    assert event.attendee_ids == []


def test_update_rejects_null_for_required_field(session, alice, make_event):
    event = make_event(alice)
    with pytest.raises(ValidationError) as excinfo:
        services.update_event(session, as_actor(alice), event.id, {"title": None})
    assert excinfo.value.errors[0].rule == "required"


# -------- delete --------


def test_creator_cannot_delete_own_event(session, alice, make_event):
    event = make_event(alice)
    with pytest.raises(Forbidden):
        services.delete_event(session, as_actor(alice), event.id)
    assert session.get(Event, event.id) is not None


def test_admin_deletes_any_event(session, admin, alice, make_event):
    event = make_event(alice, visibility="private")
    assert services.delete_event(session, as_actor(admin), event.id) == event.id
    session.commit()
    with pytest.raises(NotFound):
        services.get_event(session, as_actor(admin), event.id)


def test_delete_missing_event_is_not_found(session, admin):
    with pytest.raises(NotFound):
        services.delete_event(session, as_actor(admin), "missing")


# -------- attendance --------


def test_toggle_twice_restores_membership(session, alice, bob, make_event):
    event = make_event(alice)
    joined = services.toggle_attendance(session, as_actor(bob), event.id)
    assert [s.id for s in joined.attendees] == [bob.id]
    left = services.toggle_attendance(session, as_actor(bob), event.id)
    assert left.attendees == []
    assert left.event.attendee_ids == []


def test_toggle_keeps_other_attendees(session, admin, alice, bob, make_event):
    event = make_event(alice, attendee_ids=[admin.id])
    view = services.toggle_attendance(session, as_actor(bob), event.id)
    assert view.event.attendee_ids == [admin.id, bob.id]


def test_toggle_on_hidden_event_is_forbidden(session, alice, bob, make_event):
    event = make_event(alice, visibility="private")
    with pytest.raises(Forbidden):
        services.toggle_attendance(session, as_actor(bob), event.id)


def test_toggle_missing_event_is_not_found(session, bob):
    with pytest.raises(NotFound):
        services.toggle_attendance(session, as_actor(bob), "missing")


def test_creator_may_attend_own_event(session, alice, make_event):
    event = make_event(alice, visibility="private")
    view = services.toggle_attendance(session, as_actor(alice), event.id)
    assert view.event.attendee_ids == [alice.id]


def test_concurrent_toggles_lose_an_update(alice, bob, admin, make_event):
    """Two stale read-modify-write toggles: the last commit wins."""
    event = make_event(alice)
    first = database.SessionLocal.session_factory()
    second = database.SessionLocal.session_factory()
    try:
        # Hold both loaded rows so each session keeps its stale attendee list.
        stale_first = first.get(Event, event.id)
        stale_second = second.get(Event, event.id)
        assert stale_first.attendee_ids == stale_second.attendee_ids == []

        services.toggle_attendance(first, as_actor(bob), event.id)
        first.commit()
        services.toggle_attendance(second, as_actor(admin), event.id)
        second.commit()
    finally:
        first.close()
        second.close()

    check = database.SessionLocal.session_factory()
    try:
        stored = check.get(Event, event.id)
        assert stored.attendee_ids == [admin.id]
    finally:
        check.close()
