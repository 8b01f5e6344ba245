from typing import List, Optional
from sqlalchemy.orm import Session
from agiletrack.database import models
from agiletrack.repositories.interfaces import IProjectRepository

class SqlalchemyProjectRepository(IProjectRepository):
    def __init__(self, db_session: Session):
        self.db = db_session

    def create(self, project_model: models.Project) -> models.Project:
        self.db.add(project_model)
        self.db.flush()
        return project_model

    def save(self, project_model: models.Project) -> models.Project:
        self.db.add(project_model)
        self.db.flush()
        return project_model

    def find_by_id(self, project_id: int) -> Optional[models.Project]:
        return self.db.query(models.Project).filter(models.Project.id == project_id).first()

    def find_by_key(self, project_key: str) -> Optional[models.Project]:
        return self.db.query(models.Project).filter(models.Project.project_key == project_key).first()

    def find_by_code(self, project_code: str) -> Optional[models.Project]:
        return self.db.query(models.Project).filter(models.Project.project_code == project_code).first()

    def list_all(self) -> List[models.Project]:
        return self.db.query(models.Project).order_by(models.Project.id.asc()).all()

    def list_by_member(self, user_id: int) -> List[models.Project]:
        return (
            self.db.query(models.Project)
            .join(models.ProjectMember, models.ProjectMember.project_id == models.Project.id)
            .filter(models.ProjectMember.user_id == user_id)
            .distinct()
            .order_by(models.Project.id.asc())
            .all()
        )

    def delete(self, project: models.Project) -> bool:
        if project:
            self.db.delete(project)
            self.db.flush()
            return True
        return False
