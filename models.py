import datetime as dt
from typing import Optional

from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy import String, Integer, Date, DateTime, Text, Boolean

from db import Base
from admission import Slot


class Appointment(Base):
  __tablename__ = "appointments"

  id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
  title: Mapped[str] = mapped_column(String(200))
  description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
  date: Mapped[dt.date] = mapped_column(Date, index=True)
  start_time: Mapped[str] = mapped_column(String(5))  # HH:MM
  duration_minutes: Mapped[int] = mapped_column(Integer)
  end_time: Mapped[str] = mapped_column(String(5))  # derived: start_time + duration_minutes
  assigned_user_id: Mapped[Optional[int]] = mapped_column(Integer, index=True, nullable=True)
  project_id: Mapped[Optional[int]] = mapped_column(Integer, index=True, nullable=True)
  company_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
  status: Mapped[str] = mapped_column(String(20), default="scheduled")
  notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
  location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

  is_pomodoro: Mapped[bool] = mapped_column(Boolean, default=False)
  allow_overlap: Mapped[bool] = mapped_column(Boolean, default=False)
  is_overtime: Mapped[bool] = mapped_column(Boolean, default=False)
  work_schedule_violation: Mapped[Optional[str]] = mapped_column(String(40), nullable=True)
  reschedule_count: Mapped[int] = mapped_column(Integer, default=0)

  is_recurring: Mapped[bool] = mapped_column(Boolean, default=False)
  recurrence_pattern: Mapped[Optional[str]] = mapped_column(String(10), nullable=True)
  recurrence_interval: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
  recurrence_end_date: Mapped[Optional[dt.date]] = mapped_column(Date, nullable=True)
  recurrence_end_count: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
  recurring_task_id: Mapped[Optional[int]] = mapped_column(Integer, index=True, nullable=True)
  parent_task_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
  is_recurring_template: Mapped[bool] = mapped_column(Boolean, default=False)

  created_at: Mapped[dt.datetime] = mapped_column(DateTime, default=dt.datetime.utcnow)
  updated_at: Mapped[Optional[dt.datetime]] = mapped_column(DateTime, nullable=True, onupdate=dt.datetime.utcnow)

  def as_slot(self) -> Slot:
    return Slot(
      day=self.date,
      start=self.start_time,
      duration_minutes=self.duration_minutes,
      allow_overlap=bool(self.allow_overlap),
      assigned_user_id=self.assigned_user_id,
      is_pomodoro=bool(self.is_pomodoro),
      id=self.id,
      title=self.title or "",
    )
