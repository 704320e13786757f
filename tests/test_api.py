def payload(day="2025-01-20", start="09:00", minutes=60, **kw):
  body = {"title": "Meeting", "date": day, "startTime": start, "durationMinutes": minutes}
  body.update(kw)
  return body


def create(client, **kw):
  return client.post("/api/appointments", json=payload(**kw))


def test_health(client):
  assert client.get("/api/health").json() == {"ok": True}


def test_policy(client):
  assert client.get("/api/policy").json() == {
    "blockWeekends": True,
    "lunchWindow": {"start": "12:00", "end": "13:00"},
    "scopeByUser": True,
  }


def test_create_appointment(client):
  r = create(client, start="9:30", minutes=45, assignedUserId=3)
  assert r.status_code == 201
  body = r.json()
  assert body["id"] > 0
  assert body["startTime"] == "09:30"
  assert body["endTime"] == "10:15"
  assert body["assignedUserId"] == 3
  assert body["isOvertime"] is False
  assert body["status"] == "scheduled"


def test_saturday_is_rejected_with_suggestion(client):
  r = create(client, day="2024-08-24", start="11:00", minutes=30)
  assert r.status_code == 422
  body = r.json()
  assert body["kind"] == "WeekendBlocked"
  assert "Saturday" in body["message"]
  assert body["suggestedDate"] == "2024-08-26"
  assert client.get("/api/appointments").json() == []


def test_saturday_override_is_overtime(client):
  r = create(client, day="2024-08-24", start="11:00", minutes=30, allowOverlap=True)
  assert r.status_code == 201
  body = r.json()
  assert body["isOvertime"] is True
  assert body["endTime"] == "11:30"
  assert body["workScheduleViolation"] == "weekend_saturday"


def test_overlap_is_a_conflict(client):
  first = create(client, start="09:00", minutes=60).json()
  r = create(client, start="09:30", minutes=60)
  assert r.status_code == 409
  assert r.json()["kind"] == "TimeConflict"
  assert r.json()["conflictId"] == first["id"]


def test_back_to_back_is_admitted(client):
  create(client, start="09:00", minutes=60)
  r = create(client, start="10:00", minutes=30)
  assert r.status_code == 201
  assert r.json()["endTime"] == "10:30"


def test_different_users_may_share_a_slot(client):
  assert create(client, assignedUserId=1).status_code == 201
  assert create(client, assignedUserId=2).status_code == 201
  assert create(client, assignedUserId=1).status_code == 409


def test_invalid_duration(client):
  r = create(client, minutes=0)
  assert r.status_code == 400
  assert r.json()["kind"] == "InvalidDuration"


def test_lunch_window(client):
  r = create(client, start="12:30", minutes=30)
  assert r.status_code == 422
  assert r.json()["kind"] == "LunchWindowConflict"


def test_malformed_start_time(client):
  assert create(client, start="25:99").status_code == 422
  assert create(client, start="noon").status_code == 422


def test_get_update_delete(client):
  appt = create(client).json()
  assert client.get(f"/api/appointments/{appt['id']}").json()["title"] == "Meeting"

  r = client.patch(f"/api/appointments/{appt['id']}", json={"startTime": "14:00", "notes": "moved"})
  assert r.status_code == 200
  assert r.json()["endTime"] == "15:00"
  assert r.json()["rescheduleCount"] == 1
  assert r.json()["notes"] == "moved"

  assert client.delete(f"/api/appointments/{appt['id']}").status_code == 204
  assert client.get(f"/api/appointments/{appt['id']}").status_code == 404
  assert client.delete(f"/api/appointments/{appt['id']}").status_code == 404


def test_update_into_conflict(client):
  create(client, start="09:00")
  other = create(client, start="14:00").json()
  r = client.patch(f"/api/appointments/{other['id']}", json={"startTime": "09:30"})
  assert r.status_code == 409
  assert client.get(f"/api/appointments/{other['id']}").json()["startTime"] == "14:00"


def test_update_missing(client):
  assert client.patch("/api/appointments/999", json={"title": "x"}).status_code == 404


def test_list_filters(client):
  create(client, day="2025-01-20", start="10:00", assignedUserId=1, projectId=4)
  create(client, day="2025-01-20", start="08:00", assignedUserId=2)
  create(client, day="2025-01-22", start="08:00", assignedUserId=1)

  by_day = client.get("/api/appointments", params={"date": "2025-01-20"}).json()
  assert [a["startTime"] for a in by_day] == ["08:00", "10:00"]
  assert len(client.get("/api/appointments", params={"userId": 1}).json()) == 2
  assert len(client.get("/api/appointments", params={"projectId": 4}).json()) == 1
  ranged = client.get("/api/appointments", params={"startDate": "2025-01-21", "endDate": "2025-01-31"})
  assert [a["date"] for a in ranged.json()] == ["2025-01-22"]


def test_list_range_needs_both_ends(client):
  r = client.get("/api/appointments", params={"startDate": "2025-01-20"})
  assert r.status_code == 400


def test_check_is_a_dry_run(client):
  create(client, start="09:00")
  r = client.post("/api/appointments/check", json=payload(start="09:30", minutes=30))
  assert r.status_code == 200
  body = r.json()
  assert body["admitted"] is False
  assert body["reason"] == "TimeConflict"
  assert body["endTime"] == "10:00"

  ok = client.post("/api/appointments/check", json=payload(start="10:00", minutes=30)).json()
  assert ok["admitted"] is True
  assert ok["reason"] is None
  assert len(client.get("/api/appointments").json()) == 1


def test_availability_grid(client):
  create(client, start="09:00", minutes=60)
  r = client.get("/api/availability", params={"date": "2025-01-20", "durationMinutes": 30})
  assert r.status_code == 200
  body = r.json()
  assert body["date"] == "2025-01-20"
  slots = {s["time"]: s for s in body["slots"]}
  assert len(body["slots"]) == 40
  assert slots["08:30"]["available"] is True
  assert slots["08:45"]["reason"] == "TimeConflict"
  assert slots["09:00"]["available"] is False
  assert slots["09:00"]["reason"] == "TimeConflict"
  assert slots["10:00"]["available"] is True
  assert slots["11:45"]["reason"] == "LunchWindowConflict"
  assert slots["13:00"]["available"] is True


def test_availability_on_weekend(client):
  body = client.get("/api/availability", params={"date": "2024-08-24"}).json()
  assert all(s["reason"] == "WeekendBlocked" for s in body["slots"])


# --- recurring series ------------------------------------------------------

def recurring_payload(**kw):
  body = payload(day="2025-01-17", start="09:00", minutes=30, title="Daily sync",
                 recurrencePattern="daily", recurrenceEndCount=3)
  body.update(kw)
  return body


def test_recurring_lifecycle(client):
  r = client.post("/api/appointments/recurring", json=recurring_payload())
  assert r.status_code == 201
  body = r.json()
  template = body["template"]
  assert template["isRecurringTemplate"] is True
  assert template["recurrencePattern"] == "daily"
  assert [a["date"] for a in body["instances"]] == ["2025-01-17", "2025-01-20", "2025-01-21"]
  assert body["skipped"] == []

  series = client.get(f"/api/appointments/recurring/{template['id']}").json()
  assert len(series) == 3
  assert all(a["recurringTaskId"] == template["id"] for a in series)

  assert client.delete(f"/api/appointments/recurring/{template['id']}").status_code == 204
  assert client.get("/api/appointments").json() == []
  assert client.delete(f"/api/appointments/recurring/{template['id']}").status_code == 404


def test_recurring_skips_conflicting_dates(client):
  blocker = create(client, day="2025-01-20", start="09:00", minutes=30).json()
  body = client.post("/api/appointments/recurring", json=recurring_payload()).json()
  assert [a["date"] for a in body["instances"]] == ["2025-01-17", "2025-01-21"]
  assert body["skipped"] == [{
    "date": "2025-01-20",
    "kind": "TimeConflict",
    "message": body["skipped"][0]["message"],
    "conflictId": blocker["id"],
  }]


def test_recurring_validation(client):
  r = client.post("/api/appointments/recurring", json=recurring_payload(recurrenceEndCount=None))
  assert r.status_code == 400
  body = r.json()
  assert body["message"].startswith("Validation failed")
  assert "Either end date or occurrence count must be specified for recurring tasks" in body["errors"]


def test_recurring_unknown_pattern(client):
  r = client.post("/api/appointments/recurring", json=recurring_payload(recurrencePattern="hourly"))
  assert r.status_code == 422


def test_update_series_reports_conflicts(client):
  rid = client.post(
    "/api/appointments/recurring",
    json=recurring_payload(date="2025-01-20"),
  ).json()["template"]["id"]
  blocker = create(client, day="2025-01-21", start="14:00", minutes=60).json()

  r = client.patch(f"/api/appointments/recurring/{rid}", json={"startTime": "14:00"})
  assert r.status_code == 200
  body = r.json()
  assert sorted(a["date"] for a in body["updated"]) == ["2025-01-20", "2025-01-22"]
  assert all(a["startTime"] == "14:00" for a in body["updated"])
  assert len(body["failed"]) == 1
  assert body["failed"][0]["kind"] == "TimeConflict"
  assert body["failed"][0]["conflictId"] == blocker["id"]


def test_delete_instance_or_whole_series(client):
  body = client.post("/api/appointments/recurring", json=recurring_payload()).json()
  first, second, _ = body["instances"]

  assert client.delete(f"/api/appointments/{first['id']}/recurring").status_code == 204
  assert len(client.get(f"/api/appointments/recurring/{body['template']['id']}").json()) == 2

  r = client.delete(f"/api/appointments/{second['id']}/recurring", params={"deleteAll": "true"})
  assert r.status_code == 204
  assert client.get("/api/appointments").json() == []
  assert client.delete(f"/api/appointments/{second['id']}/recurring").status_code == 404
