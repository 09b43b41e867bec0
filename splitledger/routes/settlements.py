from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from splitledger import operations
from splitledger.database import get_db
from splitledger.deps import get_current_user_id, get_member_project
from splitledger.ratelimit import WRITE_LIMIT, limiter
from splitledger.schemas import SettlementIn
from splitledger.serializers import serialize_settlement

router = APIRouter()


@router.get("/projects/{project_id}/settlements")
def list_settlements(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    get_member_project(project_id, user_id, db)
    return [serialize_settlement(s) for s in operations.get_settlements(db, project_id)]


@router.post("/projects/{project_id}/settlements", status_code=201)
@limiter.limit(WRITE_LIMIT)
def settle_up(
    request: Request,
    project_id: str,
    data: SettlementIn,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    get_member_project(project_id, user_id, db)
    settlement = operations.settle_up(db, project_id, data, created_by=user_id)
    return serialize_settlement(settlement)
