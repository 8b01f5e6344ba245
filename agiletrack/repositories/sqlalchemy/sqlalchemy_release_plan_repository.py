from typing import List, Optional
from sqlalchemy import func
from sqlalchemy.orm import Session
from agiletrack.database import models
from agiletrack.repositories.interfaces import IReleasePlanRepository

class SqlalchemyReleasePlanRepository(IReleasePlanRepository):
    def __init__(self, db_session: Session):
        self.db = db_session

    def create(self, plan_model: models.ReleasePlan) -> models.ReleasePlan:
        self.db.add(plan_model)
        self.db.flush()
        return plan_model

    def save(self, plan_model: models.ReleasePlan) -> models.ReleasePlan:
        self.db.add(plan_model)
        self.db.flush()
        return plan_model

    def find_by_id(self, plan_id: int) -> Optional[models.ReleasePlan]:
        return self.db.query(models.ReleasePlan).filter(models.ReleasePlan.id == plan_id).first()

    def find_by_key(self, release_key: str) -> Optional[models.ReleasePlan]:
        return self.db.query(models.ReleasePlan).filter(models.ReleasePlan.release_key == release_key).first()

    def list_all(self) -> List[models.ReleasePlan]:
        return self.db.query(models.ReleasePlan).order_by(models.ReleasePlan.id.asc()).all()

    def list_by_project_id(self, project_id: int) -> List[models.ReleasePlan]:
        return self.db.query(models.ReleasePlan).filter(
            models.ReleasePlan.project_id == project_id
        ).order_by(models.ReleasePlan.start_date.asc(), models.ReleasePlan.id.asc()).all()

    def list_by_status(self, status: models.ReleaseStatus) -> List[models.ReleasePlan]:
        return self.db.query(models.ReleasePlan).filter(
            models.ReleasePlan.status == status
        ).order_by(models.ReleasePlan.id.asc()).all()

    def count_stories(self, plan_id: int) -> int:
        return self.db.query(func.count(models.UserStory.id)).filter(
            models.UserStory.release_plan_id == plan_id
        ).scalar()

    def delete(self, plan: models.ReleasePlan) -> bool:
        if plan:
            self.db.delete(plan)
            self.db.flush()
            return True
        return False

    def delete_by_project_id(self, project_id: int) -> int:
        return self.db.query(models.ReleasePlan).filter(
            models.ReleasePlan.project_id == project_id
        ).delete(synchronize_session="fetch")

    def clear_creator(self, user_id: int) -> int:
        return self.db.query(models.ReleasePlan).filter(
            models.ReleasePlan.created_by_user_id == user_id
        ).update({models.ReleasePlan.created_by_user_id: None}, synchronize_session="fetch")
