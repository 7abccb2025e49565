"""Admin endpoints guarded by the X-Admin-Token header."""

import hmac
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException
from sqlalchemy.orm import Session

from switchboard.config import settings
from switchboard.database import get_db
from switchboard.runtime import Runtime, get_runtime
from switchboard.services.alert_service import alert_heal_report
from switchboard.services.health_service import check_and_heal_conversations, get_system_health


def require_admin(x_admin_token: Optional[str] = Header(default=None, alias="X-Admin-Token")) -> None:
    expected = settings.admin_token
    if not expected:
        raise HTTPException(status_code=500, detail="ADMIN_TOKEN not configured")
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        raise HTTPException(status_code=401, detail="Invalid admin token")


router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(require_admin)])


@router.get("/health")
def system_health(db: Session = Depends(get_db)):
    return get_system_health(db)


@router.post("/heal")
async def heal_system(db: Session = Depends(get_db)):
    report = check_and_heal_conversations(db)
    await alert_heal_report(report, source="admin")
    return report


@router.post("/maintenance")
async def run_maintenance(runtime: Runtime = Depends(get_runtime)):
    """Run one maintenance pass now: purge expired dedup records, then heal."""
    report = runtime.run_maintenance()
    await alert_heal_report(report, source="admin")
    return report
