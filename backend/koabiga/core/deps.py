from koabiga.core.clock import Clock, system_clock
from koabiga.core.database import SessionLocal


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def get_clock() -> Clock:
    return system_clock
