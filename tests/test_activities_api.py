from datetime import date, timedelta

from civicportal.models.models import Activity
from civicportal.services.calendar_dates import today_local, week_bounds

from conftest import auth_headers, virtual_id


def _payload(establishment, **overrides):
    body = {
        "establishment_id": str(establishment.id),
        "title": "Atelier peinture",
        "activity_type": "culture",
        "date": "2024-01-01",
        "start_time": "9",
        "end_time": "11:00",
    }
    body.update(overrides)
    return body


def _occurrences(client, headers=None, **params):
    params.setdefault("start", "2024-01-01")
    params.setdefault("end", "2024-01-07")
    resp = client.get("/activities/occurrences", params=params, headers=headers or {})
    assert resp.status_code == 200, resp.text
    return resp.json()["items"]


def test_coordinator_creates_a_draft(client, coordinator, establishment):
    resp = client.post("/activities", json=_payload(establishment), headers=auth_headers(coordinator))
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["status"] == "DRAFT"
    assert body["start_time"] == "09:00:00"
    assert body["created_by_id"] == str(coordinator.id)
    assert resp.headers["X-Request-ID"]


def test_create_requires_authentication(client, establishment):
    resp = client.post("/activities", json=_payload(establishment))
    assert resp.status_code == 401


def test_coordinator_cannot_create_elsewhere(client, coordinator, other_establishment):
    resp = client.post("/activities", json=_payload(other_establishment), headers=auth_headers(coordinator))
    assert resp.status_code == 403
    assert resp.json()["error"] == "authorization_error"


def test_only_admin_creates_planned(client, coordinator, admin, establishment):
    resp = client.post("/activities", json=_payload(establishment, status="PLANNED"), headers=auth_headers(coordinator))
    assert resp.status_code == 403
    resp = client.post("/activities", json=_payload(establishment, status="PLANNED"), headers=auth_headers(admin))
    assert resp.status_code == 200
    assert resp.json()["is_validated"] is True


def test_validation_error_payload(client, admin, establishment):
    resp = client.post(
        "/activities",
        json=_payload(establishment, start_time="12", end_time="10"),
        headers=auth_headers(admin),
    )
    assert resp.status_code == 400
    body = resp.json()
    assert body["error"] == "validation_error"
    assert set(body) == {"error", "message", "details"}


def test_list_defaults_to_current_week(client, admin, make_activity):
    monday, sunday = week_bounds(today_local())
    make_activity(date=monday)
    resp = client.get("/activities/occurrences", headers=auth_headers(admin))
    assert resp.status_code == 200
    body = resp.json()
    assert body["start"] == monday.isoformat()
    assert body["end"] == sunday.isoformat()
    assert len(body["items"]) == 1


def test_list_includes_virtual_ids_and_establishment(client, admin, make_activity, establishment):
    parent = make_activity(is_recurrent=True, recurrence_pattern="DAILY_NO_WEEKEND")
    items = _occurrences(client, auth_headers(admin))
    assert [item["date"] for item in items] == [f"2024-01-0{d}" for d in range(1, 6)]
    assert items[0]["id"] == virtual_id(parent, date(2024, 1, 1))
    assert items[0]["is_virtual"] is False
    assert items[0]["source_activity_id"] == str(parent.id)
    assert items[1]["id"] == virtual_id(parent, date(2024, 1, 2))
    assert items[1]["is_virtual"] is True
    assert items[1]["establishment"] == {"id": str(establishment.id), "name": "Maison des Jeunes", "sector": "youth"}


def test_citizens_only_see_public_validated(client, citizen, make_activity):
    make_activity(title="Atelier brouillon")
    make_activity(title="Atelier public", status="PLANNED")
    make_activity(title="Reunion interne", status="PLANNED", is_public=False)
    anonymous = _occurrences(client)
    as_citizen = _occurrences(client, auth_headers(citizen))
    assert [i["title"] for i in anonymous] == [i["title"] for i in as_citizen] == ["Atelier public"]


def test_coordinator_sees_only_managed_establishments(client, coordinator, make_activity, other_establishment):
    make_activity(title="Atelier maison")
    make_activity(establishment_id=other_establishment.id, title="Tournoi de football", status="PLANNED")
    items = _occurrences(client, auth_headers(coordinator))
    assert [i["title"] for i in items] == ["Atelier maison"]
    items = _occurrences(client, auth_headers(coordinator), establishment_id=str(other_establishment.id))
    assert items == []


def test_list_rejects_oversized_window(client, admin):
    resp = client.get(
        "/activities/occurrences",
        params={"start": "2024-01-01", "end": "2026-01-01"},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 400


def test_get_virtual_occurrence(client, admin, citizen, make_activity):
    parent = make_activity(is_recurrent=True, recurrence_pattern="DAILY")
    occurrence_id = virtual_id(parent, date(2024, 1, 3))
    resp = client.get(f"/activities/{occurrence_id}", headers=auth_headers(admin))
    assert resp.status_code == 200
    assert resp.json()["id"] == occurrence_id
    assert resp.json()["date"] == "2024-01-03"
    # Draft series are hidden from citizens
    assert client.get(f"/activities/{occurrence_id}", headers=auth_headers(citizen)).status_code == 404
    assert client.get(f"/activities/{parent.id}@2023-12-01", headers=auth_headers(admin)).status_code == 404


def test_patch_occurrence_then_series(client, admin, db, make_activity):
    parent = make_activity(is_recurrent=True, recurrence_pattern="DAILY")
    parent_id = parent.id
    occurrence_id = virtual_id(parent, date(2024, 1, 3))
    headers = auth_headers(admin)

    first = client.patch(f"/activities/{occurrence_id}?scope=occurrence", json={"title": "Atelier special"}, headers=headers)
    assert first.status_code == 200, first.text
    second = client.patch(f"/activities/{occurrence_id}?scope=occurrence", json={"start_time": "10"}, headers=headers)
    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]
    assert second.json()["recurrence_parent_id"] == str(parent_id)
    assert db.query(Activity).filter(Activity.recurrence_parent_id == parent_id).count() == 1

    series = client.patch(f"/activities/{parent_id}?scope=series", json={"location": "Salle A"}, headers=headers)
    assert series.status_code == 200
    items = _occurrences(client, headers)
    assert len(items) == 7
    by_date = {i["date"]: i for i in items}
    assert by_date["2024-01-03"]["title"] == "Atelier special"
    assert by_date["2024-01-03"]["start_time"] == "10:00:00"
    assert by_date["2024-01-04"]["location"] == "Salle A"


def test_patch_occurrence_scope_on_series_id_is_rejected(client, admin, make_activity):
    parent = make_activity(is_recurrent=True, recurrence_pattern="DAILY")
    resp = client.patch(f"/activities/{parent.id}?scope=occurrence", json={"title": "Atelier special"}, headers=auth_headers(admin))
    assert resp.status_code == 400


def test_delete_occurrence_and_series(client, admin, db, make_activity):
    parent = make_activity(is_recurrent=True, recurrence_pattern="DAILY")
    parent_id = parent.id
    headers = auth_headers(admin)

    resp = client.delete(f"/activities/{virtual_id(parent, date(2024, 1, 2))}?scope=occurrence", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["cancelled"] == 1
    statuses = {i["date"]: i["status"] for i in _occurrences(client, headers)}
    assert statuses["2024-01-02"] == "CANCELLED"
    assert statuses["2024-01-03"] == "DRAFT"

    resp = client.delete(f"/activities/{parent_id}?scope=series", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["deleted"] == 2
    assert _occurrences(client, headers) == []


def test_lifecycle_endpoints(client, admin, coordinator, make_activity):
    activity = make_activity(expected_participants=10)
    activity_id = str(activity.id)
    coord = auth_headers(coordinator)

    assert client.post(f"/activities/{activity_id}/submit", headers=coord).json()["status"] == "PENDING_VALIDATION"
    assert client.post(f"/activities/{activity_id}/validate", headers=coord).status_code == 403
    assert client.post(f"/activities/{activity_id}/validate", headers=auth_headers(admin)).json()["status"] == "PLANNED"
    assert client.post(f"/activities/{activity_id}/start", headers=coord).json()["status"] == "IN_PROGRESS"

    skipped = client.post(f"/activities/{activity_id}/report", json={"attendance_count": 8, "summary": "Bonne seance"}, headers=coord)
    assert skipped.status_code == 409
    assert skipped.json()["details"] == {"current": "IN_PROGRESS", "requested": "REPORT_COMPLETE"}

    assert client.post(f"/activities/{activity_id}/complete", headers=coord).json()["status"] == "COMPLETED"
    report = client.post(
        f"/activities/{activity_id}/report",
        json={"attendance_count": 8, "quality_rating": 5, "summary": "Bonne seance"},
        headers=coord,
    )
    assert report.status_code == 200
    assert report.json()["status"] == "REPORT_COMPLETE"
    assert report.json()["attendance_rate"] == 80
    assert client.post(f"/activities/{activity_id}/cancel", headers=coord).status_code == 409


def test_action_on_virtual_occurrence(client, admin, make_activity):
    parent = make_activity(is_recurrent=True, recurrence_pattern="DAILY")
    resp = client.post(f"/activities/{virtual_id(parent, date(2024, 1, 5))}/cancel", headers=auth_headers(admin))
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "CANCELLED"
    assert body["date"] == "2024-01-05"
    assert body["recurrence_parent_id"] == str(parent.id)


def test_submit_all(client, coordinator, citizen, make_activity, other_establishment):
    make_activity(title="Atelier numero un")
    make_activity(title="Atelier numero deux")
    make_activity(establishment_id=other_establishment.id, title="Tournoi de football")

    assert client.post("/activities/submit-all", headers=auth_headers(citizen)).status_code == 403
    forbidden = client.post(
        "/activities/submit-all",
        json={"establishment_id": str(other_establishment.id)},
        headers=auth_headers(coordinator),
    )
    assert forbidden.status_code == 403

    resp = client.post("/activities/submit-all", headers=auth_headers(coordinator))
    assert resp.status_code == 200
    body = resp.json()
    assert (body["submitted"], body["already_submitted"], body["failed"], body["committed"]) == (2, 0, 0, True)
    assert len(body["items"]) == 2

    again = client.post("/activities/submit-all", headers=auth_headers(coordinator)).json()
    assert (again["submitted"], again["already_submitted"]) == (0, 2)


def test_unknown_activity(client, admin):
    resp = client.get("/activities/00000000-0000-0000-0000-000000000000", headers=auth_headers(admin))
    assert resp.status_code == 404
    assert resp.json()["error"] == "not_found"


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_first_session_is_reported_through_its_dated_id(client, admin, coordinator, make_activity):
    parent = make_activity(
        status="PLANNED",
        expected_participants=12,
        is_recurrent=True,
        recurrence_pattern="WEEKLY",
        recurrence_days=[1],
    )
    coord = auth_headers(coordinator)
    first = virtual_id(parent, date(2024, 1, 1))
    next_week = virtual_id(parent, date(2024, 1, 8))

    # The plain series id is not a session
    assert client.post(f"/activities/{parent.id}/start", headers=coord).status_code == 400

    assert client.post(f"/activities/{first}/start", headers=coord).json()["status"] == "IN_PROGRESS"
    assert client.post(f"/activities/{first}/complete", headers=coord).json()["status"] == "COMPLETED"
    report = client.post(
        f"/activities/{first}/report",
        json={"attendance_count": 9, "summary": "Premiere seance reussie"},
        headers=coord,
    )
    assert report.status_code == 200
    assert report.json()["recurrence_parent_id"] == str(parent.id)
    assert report.json()["attendance_rate"] == 75

    upcoming = client.get(f"/activities/{next_week}", headers=coord).json()
    assert (upcoming["status"], upcoming["report_complete"], upcoming["is_virtual"]) == ("PLANNED", False, True)
    started = client.post(f"/activities/{next_week}/start", headers=coord)
    assert started.status_code == 200
    assert started.json()["status"] == "IN_PROGRESS"


def test_delete_first_session_only(client, admin, make_activity):
    parent = make_activity(is_recurrent=True, recurrence_pattern="DAILY")
    headers = auth_headers(admin)
    resp = client.delete(
        f"/activities/{virtual_id(parent, date(2024, 1, 1))}", params={"scope": "occurrence"}, headers=headers
    )
    assert resp.status_code == 200
    assert resp.json()["cancelled"] == 1

    items = _occurrences(client, headers, end="2024-01-03")
    assert [i["status"] for i in items] == ["CANCELLED", "DRAFT", "DRAFT"]
    assert items[0]["id"] == virtual_id(parent, date(2024, 1, 1))


def test_patch_first_session_only(client, admin, make_activity):
    parent = make_activity(is_recurrent=True, recurrence_pattern="DAILY")
    headers = auth_headers(admin)
    resp = client.patch(
        f"/activities/{virtual_id(parent, date(2024, 1, 1))}",
        params={"scope": "occurrence"},
        json={"location": "Salle des fetes"},
        headers=headers,
    )
    assert resp.status_code == 200
    assert resp.json()["recurrence_parent_id"] == str(parent.id)

    items = _occurrences(client, headers, end="2024-01-02")
    assert [i["location"] for i in items] == ["Salle des fetes", None]


def test_repeated_submit_on_virtual_occurrence_stores_nothing(client, admin, db, make_activity):
    parent = make_activity(is_recurrent=True, recurrence_pattern="DAILY")
    headers = auth_headers(admin)
    assert client.post(f"/activities/{parent.id}/submit", headers=headers).json()["status"] == "PENDING_VALIDATION"

    occurrence_id = virtual_id(parent, date(2024, 1, 3))
    resp = client.post(f"/activities/{occurrence_id}/submit", headers=headers)
    assert resp.status_code == 200
    assert resp.json()["id"] == occurrence_id
    assert resp.json()["is_virtual"] is True
    assert resp.json()["status"] == "PENDING_VALIDATION"
    assert db.query(Activity).filter(Activity.recurrence_parent_id == parent.id).count() == 0


def test_unpublished_activity_is_hidden_from_other_coordinators(client, admin, coordinator, make_activity, other_establishment):
    elsewhere = make_activity(establishment_id=other_establishment.id, title="Tournoi de football")
    at_home = make_activity(title="Atelier maison")
    coord = auth_headers(coordinator)

    assert client.get(f"/activities/{elsewhere.id}", headers=coord).status_code == 404
    assert client.get(f"/activities/{at_home.id}", headers=coord).status_code == 200
    assert client.get(f"/activities/{elsewhere.id}", headers=auth_headers(admin)).status_code == 200


def test_audit_trail_endpoint(client, admin, coordinator, make_activity):
    activity = make_activity()
    headers = auth_headers(admin)
    client.post(f"/activities/{activity.id}/submit", headers=headers)

    resp = client.get(f"/activities/{activity.id}/audit", headers=headers)
    assert resp.status_code == 200
    body = resp.json()
    assert body["activity_id"] == str(activity.id)
    assert sorted(i["action"] for i in body["items"]) == ["CREATE", "SUBMIT"]
    assert all(len(i["integrity_hash"]) == 64 for i in body["items"])

    assert client.get(f"/activities/{activity.id}/audit", headers=auth_headers(coordinator)).status_code == 403


def _csv(*rows):
    header = "date;start_time;end_time;title;activity_type;establishment_id;expected_participants"
    return "\n".join((header,) + rows).encode("utf-8")


def _upload(client, content, headers):
    return client.post(
        "/activities/import",
        files={"file": ("programme.csv", content, "text/csv")},
        headers=headers,
    )


def test_import_reports_row_errors(client, coordinator, db, establishment, other_establishment):
    upcoming = (today_local() + timedelta(days=7)).isoformat()
    past = (today_local() - timedelta(days=7)).isoformat()
    content = _csv(
        f"{upcoming};9:00;11:00;Atelier de poterie;culture;{establishment.id};15",
        f"{past};9:00;11:00;Atelier trop tard;culture;{establishment.id};",
        f"{upcoming};14:00;10:00;Horaires inverses;culture;{establishment.id};",
        f"{upcoming};9:00;11:00;Tournoi de football;sport;{other_establishment.id};",
        f"{upcoming};9:00;11:00;Art;culture;{establishment.id};",
    )
    resp = _upload(client, content, auth_headers(coordinator))
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert (body["imported"], body["total"]) == (1, 5)
    assert [e["row"] for e in body["errors"]] == [3, 4, 5, 6]

    imported = db.query(Activity).filter(Activity.title == "Atelier de poterie").one()
    assert imported.status == "DRAFT"
    assert imported.is_public is False
    assert imported.expected_participants == 15


def test_import_rejects_missing_columns(client, admin):
    resp = _upload(client, b"date;title\n2030-01-01;Atelier", auth_headers(admin))
    assert resp.status_code == 400
    assert "start_time" in resp.json()["details"]["missing"]


def test_import_requires_a_manager(client, citizen, establishment):
    resp = _upload(client, _csv(), auth_headers(citizen))
    assert resp.status_code == 403


def test_programme_stats(client, admin, coordinator, make_activity, other_establishment):
    reported = make_activity(status="PLANNED", expected_participants=10)
    for action in ("start", "complete"):
        client.post(f"/activities/{reported.id}/{action}", headers=auth_headers(admin))
    client.post(
        f"/activities/{reported.id}/report",
        json={"attendance_count": 7, "summary": "Bonne participation"},
        headers=auth_headers(admin),
    )
    make_activity(title="Atelier en attente")
    make_activity(establishment_id=other_establishment.id, title="Tournoi de football", activity_type="sport")

    resp = client.get("/activities/stats", headers=auth_headers(admin))
    assert resp.status_code == 200
    stats = resp.json()
    assert stats["total"] == 3
    assert stats["by_status"] == {"REPORT_COMPLETE": 1, "DRAFT": 2}
    assert (stats["reported"], stats["total_participants"]) == (1, 7)
    assert stats["average_attendance_rate"] == 70.0
    assert stats["by_sector"] == {"youth": 1}
    assert stats["by_activity_type"] == {"culture": 1}

    # Coordinators only count their own establishments
    scoped = client.get("/activities/stats", headers=auth_headers(coordinator)).json()
    assert scoped["total"] == 2
