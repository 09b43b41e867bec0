from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from splitledger import operations
from splitledger.database import get_db
from splitledger.deps import get_current_user_id, get_member_project
from splitledger.ratelimit import WRITE_LIMIT, limiter
from splitledger.schemas import ExpenseIn
from splitledger.serializers import serialize_expense

router = APIRouter()


@router.get("/projects/{project_id}/expenses")
def list_expenses(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    get_member_project(project_id, user_id, db)
    return [serialize_expense(e) for e in operations.get_expenses(db, project_id)]


@router.post("/projects/{project_id}/expenses", status_code=201)
@limiter.limit(WRITE_LIMIT)
def add_expense(
    request: Request,
    project_id: str,
    data: ExpenseIn,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    get_member_project(project_id, user_id, db)
    expense = operations.create_expense(db, project_id, data)
    return serialize_expense(expense)


@router.delete("/projects/{project_id}/expenses/{expense_id}", status_code=204)
def delete_expense(
    project_id: str,
    expense_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    get_member_project(project_id, user_id, db)
    operations.delete_expense(db, expense_id, user_id, project_id=project_id)
    return None
