import logging
import threading
import zlib
from contextlib import contextmanager, ExitStack
from datetime import date
from typing import Optional

from sqlalchemy import event, inspect, text
from sqlalchemy.orm import Session

import config
from admission import AdmissionError, AdmissionPolicy, Slot, admit, evaluate
from models import Appointment
from recurring import RecurrenceError, occurrence_dates, validate_recurrence

logger = logging.getLogger(__name__)

# a change to any of these re-opens admission for a stored appointment
SCHEDULE_FIELDS = ("date", "start_time", "duration_minutes", "assigned_user_id", "allow_overlap")

_local_locks: dict = {}
_local_locks_guard = threading.Lock()


def _lock_key(day: date) -> int:
  return zlib.crc32(f"appointments:{day.isoformat()}".encode())


@contextmanager
def scope_lock(db: Session, *days: date):
  """Serialize admissions touching the given dates until the block exits.

  PostgreSQL gets a transaction-scoped advisory lock, released at commit or
  rollback. Other backends fall back to a process-local lock per date.
  Keys are taken in sorted order so two writers never wait on each other.
  """
  keys = sorted({_lock_key(d) for d in days if d is not None})
  if db.get_bind().dialect.name == "postgresql":
    for key in keys:
      db.execute(text("SELECT pg_advisory_xact_lock(:key)"), {"key": key})
    yield
    return
  with ExitStack() as stack:
    for key in keys:
      with _local_locks_guard:
        lock = _local_locks.setdefault(key, threading.Lock())
      stack.enter_context(lock)
    yield


def _competing(db: Session, day: date):
  return (
    db.query(Appointment)
    .filter(Appointment.date == day)
    .filter(Appointment.status != "cancelled")
    .filter(Appointment.is_recurring_template.isnot(True))
  )


def existing_for(db: Session, day: date, exclude_id: Optional[int] = None, lock: bool = True) -> list[Slot]:
  q = _competing(db, day)
  if exclude_id is not None:
    q = q.filter(Appointment.id != exclude_id)
  if lock:
    q = q.with_for_update()
  return [a.as_slot() for a in q.all()]


def _derive_end_time(appt: Appointment) -> None:
  # end_time tracks start_time + duration_minutes for every stored row,
  # admitted or not (cancelled rows, templates)
  if appt.start_time is None or appt.duration_minutes is None:
    return
  end_time = appt.as_slot().end_time
  if appt.end_time != end_time:
    appt.end_time = end_time


def _apply_result(appt: Appointment, result) -> None:
  appt.end_time = result.end_time
  appt.is_overtime = result.is_overtime
  appt.work_schedule_violation = result.violation_code


def _needs_admission(appt: Appointment) -> bool:
  if appt.is_recurring_template or appt.status == "cancelled":
    return False
  state = inspect(appt)
  if state.pending or state.transient:
    return True
  if any(state.attrs[name].history.has_changes() for name in SCHEDULE_FIELDS):
    return True
  status = state.attrs.status.history
  return status.has_changes() and "cancelled" in (status.deleted or ())


@contextmanager
def _policy_scope(db: Session, policy: Optional[AdmissionPolicy]):
  """Expose the policy of one write to the flush guard, then drop it."""
  policy = policy or config.admission_policy()
  previous = db.info.get("admission_policy")
  db.info["admission_policy"] = policy
  try:
    yield policy
  finally:
    if previous is None:
      db.info.pop("admission_policy", None)
    else:
      db.info["admission_policy"] = previous


# --- reads -----------------------------------------------------------------

def list_appointments(db: Session, day: Optional[date] = None, start: Optional[date] = None,
                      end: Optional[date] = None, user_id: Optional[int] = None,
                      project_id: Optional[int] = None) -> list[Appointment]:
  q = db.query(Appointment)
  if day is not None:
    q = q.filter(Appointment.date == day)
  if start is not None:
    q = q.filter(Appointment.date >= start)
  if end is not None:
    q = q.filter(Appointment.date <= end)
  if user_id is not None:
    q = q.filter(Appointment.assigned_user_id == user_id)
  if project_id is not None:
    q = q.filter(Appointment.project_id == project_id)
  return q.order_by(Appointment.date, Appointment.start_time).all()


def get_appointment(db: Session, appointment_id: int) -> Optional[Appointment]:
  return db.get(Appointment, appointment_id)


def series_instances(db: Session, recurring_task_id: int) -> list[Appointment]:
  return (
    db.query(Appointment)
    .filter(Appointment.recurring_task_id == recurring_task_id)
    .filter(Appointment.is_recurring_template.isnot(True))
    .order_by(Appointment.date, Appointment.start_time)
    .all()
  )


# --- writes ----------------------------------------------------------------

def create_appointment(db: Session, data: dict, policy: Optional[AdmissionPolicy] = None) -> Appointment:
  appt = Appointment(**data)
  try:
    with _policy_scope(db, policy) as policy, scope_lock(db, appt.date):
      result = admit(appt.as_slot(), existing_for(db, appt.date), policy)
      _apply_result(appt, result)
      db.add(appt)
      db.commit()
  except AdmissionError as e:
    db.rollback()
    logger.info("Rejected appointment on %s %s (user=%s): %s",
                appt.date, appt.start_time, appt.assigned_user_id, e.kind.value)
    raise
  except Exception:
    db.rollback()
    raise
  db.refresh(appt)
  logger.info("Admitted appointment %s on %s %s-%s (overtime=%s)",
              appt.id, appt.date, appt.start_time, appt.end_time, appt.is_overtime)
  return appt


def update_appointment(db: Session, appointment_id: int, changes: dict,
                       policy: Optional[AdmissionPolicy] = None) -> Optional[Appointment]:
  appt = db.get(Appointment, appointment_id)
  if appt is None:
    return None

  old_date = appt.date
  try:
    with _policy_scope(db, policy) as policy, scope_lock(db, old_date, changes.get("date")):
      rescheduled = any(
        name in changes and changes[name] != getattr(appt, name)
        for name in ("date", "start_time")
      )
      for name, value in changes.items():
        setattr(appt, name, value)
      if rescheduled and not appt.is_pomodoro:
        appt.reschedule_count = (appt.reschedule_count or 0) + 1

      _derive_end_time(appt)
      if _needs_admission(appt):
        result = admit(appt.as_slot(), existing_for(db, appt.date, exclude_id=appt.id), policy)
        _apply_result(appt, result)
      db.commit()
  except AdmissionError as e:
    db.rollback()
    logger.info("Rejected update of appointment %s: %s", appointment_id, e.kind.value)
    raise
  except Exception:
    db.rollback()
    raise
  db.refresh(appt)
  return appt


def delete_appointment(db: Session, appointment_id: int) -> bool:
  appt = db.get(Appointment, appointment_id)
  if appt is None:
    return False
  db.delete(appt)
  db.commit()
  logger.info("Deleted appointment %s", appointment_id)
  return True


def create_recurring(db: Session, data: dict, recurrence: dict,
                     policy: Optional[AdmissionPolicy] = None) -> dict:
  start = data["date"]
  pattern = recurrence.get("pattern")
  interval = recurrence.get("interval") or 1
  end_date = recurrence.get("end_date")
  end_count = recurrence.get("end_count")

  errors = validate_recurrence(start, pattern, recurrence.get("interval"), end_date, end_count)
  if errors:
    raise RecurrenceError(errors)

  # only the duration rule can fail here; the calendar rules apply per instance
  admit(Slot(day=start, start=data["start_time"], duration_minutes=data["duration_minutes"]), [],
        AdmissionPolicy(block_weekends=False, lunch_window=None))

  dates = occurrence_dates(start, pattern, interval, end_date, end_count)
  instances, skipped, accepted = [], [], []
  try:
    with _policy_scope(db, policy) as policy, scope_lock(db, *dates):
      template = Appointment(
        **data,
        is_recurring=True,
        is_recurring_template=True,
        recurrence_pattern=pattern,
        recurrence_interval=interval,
        recurrence_end_date=end_date,
        recurrence_end_count=end_count,
      )
      _derive_end_time(template)
      db.add(template)
      db.flush()
      template.recurring_task_id = template.id

      for day in dates:
        appt = Appointment(**{**data, "date": day},
                           recurring_task_id=template.id, parent_task_id=template.id)
        peers = [s for s in accepted if s.day == day]
        result = evaluate(appt.as_slot(), existing_for(db, day) + peers, policy)
        if not result.admitted:
          skipped.append({"date": day.isoformat(), **result.to_error().to_dict()})
          continue
        _apply_result(appt, result)
        db.add(appt)
        instances.append(appt)
        accepted.append(appt.as_slot())
      db.commit()
  except Exception:
    db.rollback()
    raise

  db.refresh(template)
  for appt in instances:
    db.refresh(appt)
  logger.info("Created recurring series %s: %d instances, %d skipped",
              template.id, len(instances), len(skipped))
  return {"template": template, "instances": instances, "skipped": skipped}


def update_series(db: Session, recurring_task_id: int, changes: dict,
                  policy: Optional[AdmissionPolicy] = None) -> dict:
  # moving every instance onto one date makes no sense for a series
  changes = {k: v for k, v in changes.items() if k != "date"}
  updated, failed = [], []
  for instance in series_instances(db, recurring_task_id):
    instance_id = instance.id
    try:
      appt = update_appointment(db, instance_id, changes, policy)
    except AdmissionError as e:
      failed.append({"id": instance_id, **e.to_dict()})
      continue
    if appt is not None:
      updated.append(appt)
  return {"updated": updated, "failed": failed}


def delete_series(db: Session, recurring_task_id: int) -> int:
  deleted = (
    db.query(Appointment)
    .filter(Appointment.recurring_task_id == recurring_task_id)
    .delete(synchronize_session=False)
  )
  db.commit()
  logger.info("Deleted %d appointments from recurring series %s", deleted, recurring_task_id)
  return deleted


def delete_instance(db: Session, appointment_id: int, delete_all: bool = False) -> bool:
  appt = db.get(Appointment, appointment_id)
  if appt is None:
    return False
  if delete_all and appt.recurring_task_id is not None:
    return delete_series(db, appt.recurring_task_id) > 0
  return delete_appointment(db, appointment_id)


# --- storage guard ---------------------------------------------------------

@event.listens_for(Session, "before_flush")
def guard_appointments(session, flush_context, instances):
  """Re-run admission for every appointment about to be written.

  end_time is re-derived first for every new or dirty row, admitted or not.
  Covers writes that never went through create_appointment/update_appointment.
  A rejection raises AdmissionError and the flush is aborted.
  """
  pending = [o for o in session.new if isinstance(o, Appointment)]
  touched = pending + [o for o in session.dirty if isinstance(o, Appointment)]
  for appt in touched:
    _derive_end_time(appt)
  candidates = [o for o in touched if _needs_admission(o)]
  if not candidates:
    return

  policy = session.info.get("admission_policy") or config.admission_policy()
  with session.no_autoflush:
    for appt in candidates:
      stored = [a.as_slot() for a in _competing(session, appt.date).all()]
      peers = [
        p.as_slot() for p in pending
        if p is not appt and p.date == appt.date
        and not p.is_recurring_template and p.status != "cancelled"
      ]
      result = evaluate(appt.as_slot(), stored + peers, policy)
      if not result.admitted:
        logger.warning("Storage guard rejected appointment %s on %s %s: %s",
                       appt.id, appt.date, appt.start_time, result.reason.value)
        raise result.to_error()
      _apply_result(appt, result)
