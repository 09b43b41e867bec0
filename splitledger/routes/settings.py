from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from splitledger import operations
from splitledger.database import get_db
from splitledger.deps import get_current_user_id, get_member_project
from splitledger.schemas import InterestSettingsIn
from splitledger.serializers import serialize_settings

router = APIRouter()


@router.get("/projects/{project_id}/settings")
def get_settings(
    project_id: str,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    get_member_project(project_id, user_id, db)
    return serialize_settings(operations.get_interest_settings(db, project_id))


@router.put("/projects/{project_id}/settings")
def update_settings(
    project_id: str,
    data: InterestSettingsIn,
    user_id: str = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    get_member_project(project_id, user_id, db)
    settings = operations.update_interest_settings(db, project_id, data, actor_id=user_id)
    return serialize_settings(settings)
