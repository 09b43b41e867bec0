import logging

from fastapi import Header, HTTPException
from sqlalchemy.orm import Session

from splitledger.models import Project, ProjectMember

logger = logging.getLogger("splitledger")


def get_current_user_id(x_user_id: str | None = Header(None)) -> str:
    """The acting user, as asserted by the authenticating gateway."""
    if not x_user_id:
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    return x_user_id


def get_member_project(project_id: str, user_id: str, db: Session) -> Project:
    """Resolve a project the user owns or belongs to."""
    project = db.query(Project).filter(Project.id == project_id).first()
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")

    if project.owner_id == user_id:
        return project
    member = (
        db.query(ProjectMember)
        .filter(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
        .first()
    )
    if member:
        return project

    logger.warning("Project access denied", extra={"extra_data": {"project_id": project_id, "user_id": user_id}})
    raise HTTPException(status_code=403, detail="Access denied")
