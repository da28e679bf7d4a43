import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from koabiga.core.clock import Clock
from koabiga.core.deps import get_clock, get_db
from koabiga.services.fee_scheduling import find_due_scheduled_rules

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
def health_check(db: Session = Depends(get_db), clock: Clock = Depends(get_clock)):
    """Health check; includes DB connectivity and how many scheduled rules are waiting for activation."""
    due = None
    try:
        db.execute(text("SELECT 1"))
        due = len(find_due_scheduled_rules(db, clock.today()))
        db_ok = True
    except SQLAlchemyError:
        logger.warning("Health check could not reach the database", exc_info=True)
        db_ok = False
    return {
        "status": "ok",
        "database": "connected" if db_ok else "disconnected",
        "scheduled_rules_due": due,
    }
