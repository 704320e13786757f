import os

from dotenv import load_dotenv

from admission import AdmissionPolicy, TimeWindow, parse_hhmm

load_dotenv()


def _flag(name: str, default: bool) -> bool:
  raw = os.getenv(name)
  if raw is None or raw.strip() == "":
    return default
  return raw.strip().lower() in ("1", "true", "yes", "on")


DATABASE_URL = (os.getenv("DATABASE_URL") or "").strip()
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ORIGINS = [
  o.strip()
  for o in os.getenv(
    "CORS_ORIGINS",
    "http://localhost:5173,http://127.0.0.1:5173,http://localhost:5174,http://127.0.0.1:5174",
  ).split(",")
  if o.strip()
]

# Availability grid shown to the booking form
WORKDAY_START = parse_hhmm(os.getenv("WORKDAY_START", "08:00"))
WORKDAY_END = parse_hhmm(os.getenv("WORKDAY_END", "18:00"))
SLOT_STEP_MINUTES = int(os.getenv("SLOT_STEP_MINUTES", "15"))

SSL_CA = os.getenv("MYSQL_SSL_CA") or os.getenv("DB_SSL_CA")


# Admission policy, parsed once so a malformed value fails at startup
BLOCK_WEEKENDS = _flag("BLOCK_WEEKENDS", True)
SCOPE_BY_USER = _flag("SCOPE_BY_USER", True)

_lunch_start = os.getenv("LUNCH_START", "12:00").strip()
_lunch_end = os.getenv("LUNCH_END", "13:00").strip()
LUNCH_WINDOW = None
if _lunch_start and _lunch_end:
  LUNCH_WINDOW = TimeWindow(parse_hhmm(_lunch_start), parse_hhmm(_lunch_end))


def admission_policy() -> AdmissionPolicy:
  return AdmissionPolicy(
    block_weekends=BLOCK_WEEKENDS,
    lunch_window=LUNCH_WINDOW,
    scope_by_user=SCOPE_BY_USER,
  )
