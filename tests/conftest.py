import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BLOCK_WEEKENDS"] = "true"
os.environ["LUNCH_START"] = "12:00"
os.environ["LUNCH_END"] = "13:00"
os.environ["SCOPE_BY_USER"] = "true"
os.environ["WORKDAY_START"] = "08:00"
os.environ["WORKDAY_END"] = "18:00"
os.environ["SLOT_STEP_MINUTES"] = "15"

import pytest
from fastapi.testclient import TestClient

from db import Base, SessionLocal, engine
from main import app


@pytest.fixture(autouse=True)
def fresh_tables():
  Base.metadata.drop_all(bind=engine)
  Base.metadata.create_all(bind=engine)
  yield


@pytest.fixture
def client():
  with TestClient(app) as client:
    yield client


@pytest.fixture
def db():
  session = SessionLocal()
  try:
    yield session
  finally:
    session.close()
