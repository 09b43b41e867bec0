from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from splitledger import operations
from splitledger.database import get_db
from splitledger.deps import get_current_user_id, get_member_project

router = APIRouter()


@router.get("/projects/{project_id}/balances")
def list_balances(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    get_member_project(project_id, user_id, db)
    return operations.get_balances(db, project_id)


@router.get("/projects/{project_id}/balances/me")
def my_balance(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    get_member_project(project_id, user_id, db)
    return operations.get_user_summary(db, project_id, user_id)
