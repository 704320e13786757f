"""Appointment admission rules.

A candidate appointment is checked against the appointments already stored
for its date. Rules run in a fixed order (duration, override, weekend, lunch
window, overlap) and the first failing rule decides the rejection. An
override ("encaixe") candidate is never rejected by the weekend, lunch or
overlap rules; they only decide whether it is flagged as overtime.

Everything here is pure: no clock, no database. The same functions back the
HTTP dry-run check, the service layer and the flush guard in storage.py.
"""
from dataclasses import dataclass, field
from datetime import date, time, timedelta
from enum import Enum
from typing import Iterable, Optional


MINUTES_PER_DAY = 24 * 60
EPOCH = date(1970, 1, 1)  # a Thursday
DAY_NAMES = {
  1: "Monday", 2: "Tuesday", 3: "Wednesday", 4: "Thursday",
  5: "Friday", 6: "Saturday", 7: "Sunday",
}


class ErrorKind(str, Enum):
  INVALID_DURATION = "InvalidDuration"
  WEEKEND_BLOCKED = "WeekendBlocked"
  LUNCH_WINDOW_CONFLICT = "LunchWindowConflict"
  TIME_CONFLICT = "TimeConflict"


# stored in Appointment.work_schedule_violation when an override waives a rule
VIOLATION_CODES = {
  ErrorKind.LUNCH_WINDOW_CONFLICT: "lunch_break",
  ErrorKind.TIME_CONFLICT: "time_conflict",
}


class AdmissionError(Exception):
  def __init__(self, kind: ErrorKind, message: str, conflict_id: Optional[int] = None,
               suggested_date: Optional[date] = None):
    super().__init__(message)
    self.kind = kind
    self.message = message
    self.conflict_id = conflict_id
    self.suggested_date = suggested_date

  def to_dict(self) -> dict:
    body = {"kind": self.kind.value, "message": self.message}
    if self.conflict_id is not None:
      body["conflictId"] = self.conflict_id
    if self.suggested_date is not None:
      body["suggestedDate"] = self.suggested_date.isoformat()
    return body


def parse_hhmm(value) -> time:
  if isinstance(value, time):
    return value.replace(second=0, microsecond=0)
  try:
    hours, minutes = str(value).strip().split(":")[:2]
    return time(int(hours), int(minutes))
  except (TypeError, ValueError):
    raise ValueError(f"Invalid time {value!r}, expected HH:MM")


def to_minutes(value) -> int:
  t = parse_hhmm(value)
  return t.hour * 60 + t.minute


def format_hhmm(minutes: int) -> str:
  # end times past midnight wrap around, e.g. 23:30 + 60min -> 00:30
  minutes %= MINUTES_PER_DAY
  return f"{minutes // 60:02d}:{minutes % 60:02d}"


def iso_weekday(day: date) -> int:
  """1 = Monday ... 7 = Sunday, from the day count since 1970-01-01."""
  return ((day - EPOCH).days + 3) % 7 + 1


def is_weekend(day: date) -> bool:
  return iso_weekday(day) >= 6


def next_business_day(day: date) -> date:
  nxt = day + timedelta(days=1)
  while is_weekend(nxt):
    nxt += timedelta(days=1)
  return nxt


def intervals_overlap(a_start: int, a_end: int, b_start: int, b_end: int) -> bool:
  # half-open [start, end): touching intervals do not overlap
  return a_start < b_end and b_start < a_end


@dataclass(frozen=True)
class TimeWindow:
  start: time
  end: time

  @property
  def start_minutes(self) -> int:
    return to_minutes(self.start)

  @property
  def end_minutes(self) -> int:
    return to_minutes(self.end)

  def label(self) -> str:
    return f"{format_hhmm(self.start_minutes)}-{format_hhmm(self.end_minutes)}"


DEFAULT_LUNCH = TimeWindow(time(12, 0), time(13, 0))


@dataclass(frozen=True)
class AdmissionPolicy:
  block_weekends: bool = True
  lunch_window: Optional[TimeWindow] = DEFAULT_LUNCH
  scope_by_user: bool = True

  def to_dict(self) -> dict:
    lunch = None
    if self.lunch_window is not None:
      lunch = {
        "start": format_hhmm(self.lunch_window.start_minutes),
        "end": format_hhmm(self.lunch_window.end_minutes),
      }
    return {
      "blockWeekends": self.block_weekends,
      "lunchWindow": lunch,
      "scopeByUser": self.scope_by_user,
    }


@dataclass
class Slot:
  day: date
  start: time
  duration_minutes: int
  allow_overlap: bool = False
  assigned_user_id: Optional[int] = None
  is_pomodoro: bool = False
  id: Optional[int] = None
  title: str = ""

  def __post_init__(self):
    self.start = parse_hhmm(self.start)

  @property
  def start_minutes(self) -> int:
    return to_minutes(self.start)

  @property
  def end_minutes(self) -> int:
    return self.start_minutes + self.duration_minutes

  @property
  def end_time(self) -> str:
    return format_hhmm(self.end_minutes)

  def describe(self) -> str:
    name = f'"{self.title}"' if self.title else f"#{self.id}"
    return f"{name} ({format_hhmm(self.start_minutes)}-{self.end_time})"


@dataclass
class AdmissionResult:
  admitted: bool
  end_time: str
  is_overtime: bool = False
  reason: Optional[ErrorKind] = None
  message: Optional[str] = None
  violations: list = field(default_factory=list)
  conflict_id: Optional[int] = None
  suggested_date: Optional[date] = None

  @property
  def violation_code(self) -> Optional[str]:
    return self.violations[0] if self.violations else None

  def to_error(self) -> AdmissionError:
    return AdmissionError(self.reason, self.message, self.conflict_id, self.suggested_date)

  def to_dict(self) -> dict:
    return {
      "admitted": self.admitted,
      "reason": self.reason.value if self.reason else None,
      "message": self.message,
      "endTime": self.end_time,
      "isOvertime": self.is_overtime,
      "violations": list(self.violations),
      "conflictId": self.conflict_id,
      "suggestedDate": self.suggested_date.isoformat() if self.suggested_date else None,
    }


@dataclass
class RuleFailure:
  kind: ErrorKind
  message: str
  code: str
  conflict: Optional[Slot] = None
  suggested_date: Optional[date] = None


def in_scope(candidate: Slot, other: Slot, policy: AdmissionPolicy) -> bool:
  if other.day != candidate.day:
    return False
  if candidate.id is not None and other.id == candidate.id:
    return False
  if other.allow_overlap:
    return False
  if policy.scope_by_user and candidate.assigned_user_id is not None:
    return other.assigned_user_id == candidate.assigned_user_id
  return True


def check_rules(candidate: Slot, existing: Iterable[Slot], policy: AdmissionPolicy) -> list:
  """Return every failing rule among weekend, lunch window and overlap, in order."""
  failures = []

  if policy.block_weekends:
    weekday = iso_weekday(candidate.day)
    if weekday >= 6:
      day_name = DAY_NAMES[weekday]
      failures.append(RuleFailure(
        ErrorKind.WEEKEND_BLOCKED,
        f"Appointments are not allowed on {day_name} ({candidate.day.isoformat()}). "
        "Choose a date from Monday to Friday.",
        f"weekend_{day_name.lower()}",
        suggested_date=next_business_day(candidate.day),
      ))

  lunch = policy.lunch_window
  if lunch is not None and intervals_overlap(
      candidate.start_minutes, candidate.end_minutes, lunch.start_minutes, lunch.end_minutes):
    failures.append(RuleFailure(
      ErrorKind.LUNCH_WINDOW_CONFLICT,
      f"Appointments are not allowed during the lunch break ({lunch.label()}).",
      VIOLATION_CODES[ErrorKind.LUNCH_WINDOW_CONFLICT],
    ))

  for other in existing:
    if not in_scope(candidate, other, policy):
      continue
    if intervals_overlap(candidate.start_minutes, candidate.end_minutes,
                         other.start_minutes, other.end_minutes):
      failures.append(RuleFailure(
        ErrorKind.TIME_CONFLICT,
        f"Time conflict on {candidate.day.isoformat()}: "
        f"{format_hhmm(candidate.start_minutes)}-{candidate.end_time} overlaps {other.describe()}.",
        VIOLATION_CODES[ErrorKind.TIME_CONFLICT],
        conflict=other,
      ))
      break

  return failures


def evaluate(candidate: Slot, existing: Iterable[Slot], policy: Optional[AdmissionPolicy] = None) -> AdmissionResult:
  policy = policy or AdmissionPolicy()

  if candidate.duration_minutes is None or candidate.duration_minutes <= 0:
    return AdmissionResult(
      admitted=False,
      end_time=format_hhmm(candidate.start_minutes),
      reason=ErrorKind.INVALID_DURATION,
      message=f"Duration must be a positive number of minutes, got {candidate.duration_minutes}.",
    )

  failures = check_rules(candidate, existing, policy)
  codes = [f.code for f in failures]

  if candidate.allow_overlap:
    return AdmissionResult(
      admitted=True,
      end_time=candidate.end_time,
      is_overtime=bool(failures),
      violations=codes,
    )

  if failures:
    first = failures[0]
    return AdmissionResult(
      admitted=False,
      end_time=candidate.end_time,
      reason=first.kind,
      message=first.message,
      violations=codes,
      conflict_id=first.conflict.id if first.conflict is not None else None,
      suggested_date=first.suggested_date,
    )

  return AdmissionResult(admitted=True, end_time=candidate.end_time)


def admit(candidate: Slot, existing: Iterable[Slot], policy: Optional[AdmissionPolicy] = None) -> AdmissionResult:
  result = evaluate(candidate, existing, policy)
  if not result.admitted:
    raise result.to_error()
  return result
