import logging
import datetime as dt
from typing import Optional

from fastapi import FastAPI, HTTPException, Depends, Query, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.orm import Session

import config
import storage
from admission import AdmissionError, ErrorKind, Slot, evaluate, format_hhmm, to_minutes
from db import SessionLocal, engine, Base
from recurring import RecurrenceError
from schemas import (
  AdmissionCheck,
  AppointmentCreate,
  AppointmentOut,
  AppointmentUpdate,
  RecurringCreate,
  SlotOut,
)

logging.basicConfig(
  level=config.LOG_LEVEL,
  format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="TimeFlow API")

# Allow local dev from Vite
app.add_middleware(
  CORSMiddleware,
  allow_origins=config.CORS_ORIGINS,
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)

Base.metadata.create_all(bind=engine)

def get_db():
  db = SessionLocal()
  try:
    yield db
  finally:
    db.close()

REJECTION_STATUS = {
  ErrorKind.INVALID_DURATION: 400,
  ErrorKind.WEEKEND_BLOCKED: 422,
  ErrorKind.LUNCH_WINDOW_CONFLICT: 422,
  ErrorKind.TIME_CONFLICT: 409,
}

@app.exception_handler(AdmissionError)
def admission_rejected(request: Request, exc: AdmissionError):
  return JSONResponse(status_code=REJECTION_STATUS.get(exc.kind, 400), content=exc.to_dict())

@app.exception_handler(RecurrenceError)
def recurrence_invalid(request: Request, exc: RecurrenceError):
  return JSONResponse(status_code=400, content={"message": str(exc), "errors": exc.errors})

def serialize(appt) -> dict:
  return AppointmentOut.model_validate(appt).model_dump(mode="json", by_alias=True)

def find_or_404(db: Session, appointment_id: int):
  appt = storage.get_appointment(db, appointment_id)
  if appt is None:
    raise HTTPException(status_code=404, detail="Appointment not found")
  return appt


@app.get("/api/health")
def health():
  return {"ok": True}

@app.get("/api/policy")
def get_policy():
  return config.admission_policy().to_dict()

def generate_slots(day: dt.date, duration: int, existing: list[Slot], user_id: Optional[int] = None,
                   exclude_id: Optional[int] = None) -> list[dict]:
  policy = config.admission_policy()
  slots = []
  cursor = to_minutes(config.WORKDAY_START)
  end = to_minutes(config.WORKDAY_END)
  while cursor < end:
    candidate = Slot(day=day, start=format_hhmm(cursor), duration_minutes=duration,
                     assigned_user_id=user_id, id=exclude_id)
    result = evaluate(candidate, existing, policy)
    slots.append({
      "time": format_hhmm(cursor),
      "available": result.admitted,
      "reason": result.reason.value if result.reason else None,
      "message": result.message,
    })
    cursor += config.SLOT_STEP_MINUTES
  return slots

@app.get("/api/availability")
def availability(
  date: dt.date = Query(...),
  duration_minutes: int = Query(30, alias="durationMinutes", ge=1),
  user_id: Optional[int] = Query(None, alias="userId"),
  exclude_id: Optional[int] = Query(None, alias="excludeId"),
  db: Session = Depends(get_db),
):
  existing = storage.existing_for(db, date, exclude_id=exclude_id, lock=False)
  slots = generate_slots(date, duration_minutes, existing, user_id=user_id, exclude_id=exclude_id)
  return {
    "date": date.isoformat(),
    "slots": [SlotOut(**s).model_dump(by_alias=True) for s in slots],
  }

@app.post("/api/appointments/check")
def check_appointment(payload: AdmissionCheck, db: Session = Depends(get_db)):
  candidate = Slot(
    day=payload.date,
    start=payload.start_time,
    duration_minutes=payload.duration_minutes,
    allow_overlap=payload.allow_overlap,
    assigned_user_id=payload.assigned_user_id,
    is_pomodoro=payload.is_pomodoro,
    id=payload.exclude_id,
  )
  existing = storage.existing_for(db, payload.date, exclude_id=payload.exclude_id, lock=False)
  return evaluate(candidate, existing, config.admission_policy()).to_dict()


@app.get("/api/appointments")
def list_appointments(
  date: Optional[dt.date] = Query(None),
  start_date: Optional[dt.date] = Query(None, alias="startDate"),
  end_date: Optional[dt.date] = Query(None, alias="endDate"),
  user_id: Optional[int] = Query(None, alias="userId"),
  project_id: Optional[int] = Query(None, alias="projectId"),
  db: Session = Depends(get_db),
):
  if (start_date is None) != (end_date is None):
    raise HTTPException(status_code=400, detail="startDate and endDate are required together")
  appts = storage.list_appointments(db, day=date, start=start_date, end=end_date,
                                    user_id=user_id, project_id=project_id)
  return [serialize(a) for a in appts]

@app.post("/api/appointments", status_code=201)
def create_appointment(payload: AppointmentCreate, db: Session = Depends(get_db)):
  appt = storage.create_appointment(db, payload.model_dump(), config.admission_policy())
  return serialize(appt)


@app.post("/api/appointments/recurring", status_code=201)
def create_recurring(payload: RecurringCreate, db: Session = Depends(get_db)):
  data, recurrence = payload.split()
  result = storage.create_recurring(db, data, recurrence, config.admission_policy())
  return {
    "template": serialize(result["template"]),
    "instances": [serialize(a) for a in result["instances"]],
    "skipped": result["skipped"],
  }

@app.get("/api/appointments/recurring/{recurring_task_id}")
def get_series(recurring_task_id: int, db: Session = Depends(get_db)):
  return [serialize(a) for a in storage.series_instances(db, recurring_task_id)]

@app.patch("/api/appointments/recurring/{recurring_task_id}")
def update_series(recurring_task_id: int, payload: AppointmentUpdate, db: Session = Depends(get_db)):
  result = storage.update_series(db, recurring_task_id, payload.changes(), config.admission_policy())
  return {
    "updated": [serialize(a) for a in result["updated"]],
    "failed": result["failed"],
  }

@app.delete("/api/appointments/recurring/{recurring_task_id}", status_code=204)
def delete_series(recurring_task_id: int, db: Session = Depends(get_db)):
  if storage.delete_series(db, recurring_task_id) == 0:
    raise HTTPException(status_code=404, detail="Recurring task series not found")
  return Response(status_code=204)


@app.get("/api/appointments/{appointment_id}")
def get_appointment(appointment_id: int, db: Session = Depends(get_db)):
  return serialize(find_or_404(db, appointment_id))

@app.patch("/api/appointments/{appointment_id}")
def update_appointment(appointment_id: int, payload: AppointmentUpdate, db: Session = Depends(get_db)):
  appt = storage.update_appointment(db, appointment_id, payload.changes(), config.admission_policy())
  if appt is None:
    raise HTTPException(status_code=404, detail="Appointment not found")
  return serialize(appt)

@app.delete("/api/appointments/{appointment_id}", status_code=204)
def delete_appointment(appointment_id: int, db: Session = Depends(get_db)):
  if not storage.delete_appointment(db, appointment_id):
    raise HTTPException(status_code=404, detail="Appointment not found")
  return Response(status_code=204)

@app.delete("/api/appointments/{appointment_id}/recurring", status_code=204)
def delete_recurring_instance(
  appointment_id: int,
  delete_all: bool = Query(False, alias="deleteAll"),
  db: Session = Depends(get_db),
):
  if not storage.delete_instance(db, appointment_id, delete_all):
    raise HTTPException(status_code=404, detail="Recurring task instance not found")
  return Response(status_code=204)
