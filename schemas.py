import datetime as dt
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from pydantic.alias_generators import to_camel

from admission import format_hhmm, to_minutes

Status = Literal["scheduled", "completed", "delayed", "rescheduled", "cancelled"]
Pattern = Literal["daily", "weekly", "monthly", "yearly"]


class CamelModel(BaseModel):
  model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


def _normalize_time(value):
  if value is None:
    return value
  return format_hhmm(to_minutes(value))


class AppointmentBase(CamelModel):
  title: str
  description: Optional[str] = None
  date: dt.date
  start_time: str
  # not range-checked here: the admission engine reports InvalidDuration
  duration_minutes: int
  allow_overlap: bool = False
  assigned_user_id: Optional[int] = None
  is_pomodoro: bool = False
  project_id: Optional[int] = None
  company_id: Optional[int] = None
  notes: Optional[str] = None
  location: Optional[str] = None

  @field_validator("start_time")
  @classmethod
  def check_start_time(cls, v):
    return _normalize_time(v)


class AppointmentCreate(AppointmentBase):
  pass


class AdmissionCheck(CamelModel):
  date: dt.date
  start_time: str
  duration_minutes: int
  allow_overlap: bool = False
  assigned_user_id: Optional[int] = None
  is_pomodoro: bool = False
  exclude_id: Optional[int] = None

  @field_validator("start_time")
  @classmethod
  def check_start_time(cls, v):
    return _normalize_time(v)


class AppointmentUpdate(CamelModel):
  title: Optional[str] = None
  description: Optional[str] = None
  date: Optional[dt.date] = None
  start_time: Optional[str] = None
  duration_minutes: Optional[int] = None
  allow_overlap: Optional[bool] = None
  assigned_user_id: Optional[int] = None
  is_pomodoro: Optional[bool] = None
  project_id: Optional[int] = None
  company_id: Optional[int] = None
  notes: Optional[str] = None
  location: Optional[str] = None
  status: Optional[Status] = None

  @field_validator("start_time")
  @classmethod
  def check_start_time(cls, v):
    return _normalize_time(v)

  def changes(self) -> dict:
    data = self.model_dump(exclude_unset=True)
    # explicit nulls only clear the nullable columns
    required = ("title", "date", "start_time", "duration_minutes", "allow_overlap", "is_pomodoro", "status")
    return {k: v for k, v in data.items() if not (v is None and k in required)}


class RecurringCreate(AppointmentBase):
  recurrence_pattern: Optional[Pattern] = None
  recurrence_interval: Optional[int] = None
  recurrence_end_date: Optional[dt.date] = None
  recurrence_end_count: Optional[int] = None

  def split(self) -> tuple[dict, dict]:
    data = self.model_dump(exclude={
      "recurrence_pattern", "recurrence_interval", "recurrence_end_date", "recurrence_end_count",
    })
    recurrence = {
      "pattern": self.recurrence_pattern,
      "interval": self.recurrence_interval,
      "end_date": self.recurrence_end_date,
      "end_count": self.recurrence_end_count,
    }
    return data, recurrence


class AppointmentOut(CamelModel):
  model_config = ConfigDict(from_attributes=True)

  id: int
  title: str
  description: Optional[str] = None
  date: dt.date
  start_time: str
  duration_minutes: int
  end_time: str
  assigned_user_id: Optional[int] = None
  project_id: Optional[int] = None
  company_id: Optional[int] = None
  status: str
  notes: Optional[str] = None
  location: Optional[str] = None
  is_pomodoro: bool = False
  allow_overlap: bool = False
  is_overtime: bool = False
  work_schedule_violation: Optional[str] = None
  reschedule_count: int = 0
  is_recurring: bool = False
  recurrence_pattern: Optional[str] = None
  recurrence_interval: Optional[int] = None
  recurrence_end_date: Optional[dt.date] = None
  recurrence_end_count: Optional[int] = None
  recurring_task_id: Optional[int] = None
  parent_task_id: Optional[int] = None
  is_recurring_template: bool = False
  created_at: Optional[dt.datetime] = None
  updated_at: Optional[dt.datetime] = None


class SlotOut(CamelModel):
  time: str
  available: bool
  reason: Optional[str] = None
  message: Optional[str] = None

