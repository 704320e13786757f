from datetime import date, timedelta
from typing import Optional

from dateutil.relativedelta import relativedelta

from admission import is_weekend

PATTERNS = ("daily", "weekly", "monthly", "yearly")
MAX_INSTANCES = 1000


class RecurrenceError(ValueError):
  def __init__(self, errors: list[str]):
    super().__init__("Validation failed: " + ", ".join(errors))
    self.errors = errors


def validate_recurrence(start: date, pattern: Optional[str], interval: Optional[int] = None,
                        end_date: Optional[date] = None, end_count: Optional[int] = None) -> list[str]:
  errors = []
  if not pattern:
    errors.append("Recurrence pattern is required for recurring tasks")
  elif pattern not in PATTERNS:
    errors.append(f"Unsupported recurrence pattern: {pattern}")

  if end_date is None and end_count is None:
    errors.append("Either end date or occurrence count must be specified for recurring tasks")
  if end_date is not None and end_count is not None:
    errors.append("Cannot specify both end date and occurrence count")

  if interval is not None and not (1 <= interval <= 365):
    errors.append("Recurrence interval must be between 1 and 365")
  if end_count is not None and not (1 <= end_count <= MAX_INSTANCES):
    errors.append(f"Occurrence count must be between 1 and {MAX_INSTANCES}")
  if end_date is not None and end_date <= start:
    errors.append("End date must be after the start date")
  return errors


def next_occurrence(day: date, pattern: str, interval: int = 1) -> date:
  if pattern == "daily":
    return day + timedelta(days=interval)
  if pattern == "weekly":
    return day + timedelta(weeks=interval)
  if pattern == "monthly":
    return day + relativedelta(months=interval)
  if pattern == "yearly":
    return day + relativedelta(years=interval)
  raise ValueError(f"Unsupported recurrence pattern: {pattern}")


def occurrence_dates(start: date, pattern: str, interval: int = 1,
                     end_date: Optional[date] = None, end_count: Optional[int] = None) -> list[date]:
  """Dates of a series, skipping Saturdays and Sundays.

  Weekend occurrences are dropped, not moved, and do not count towards
  end_count. Steps are taken from the start date (start + n * interval) so
  that monthly series anchored on the 31st come back to the 31st after a
  short month.
  """
  interval = interval or 1
  max_instances = end_count or MAX_INSTANCES
  max_iterations = max_instances * 3

  dates = []
  n = 0
  current = start
  while len(dates) < max_instances and n < max_iterations:
    if end_date is not None and current > end_date:
      break
    if not is_weekend(current):
      dates.append(current)
    n += 1
    current = next_occurrence(start, pattern, interval * n)
  return dates
