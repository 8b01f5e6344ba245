from typing import List, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from agiletrack.database import models
from agiletrack.repositories.interfaces import IMembershipRepository, DuplicateEntryError

class SqlalchemyMembershipRepository(IMembershipRepository):
    def __init__(self, db_session: Session):
        self.db = db_session

    def insert(self, membership: models.ProjectMember) -> models.ProjectMember:
        self.db.add(membership)
        try:
            self.db.flush()
        except IntegrityError as e:
            raise DuplicateEntryError(
                f"Membership ({membership.project_id}, {membership.user_id}, {membership.role}) already exists."
            ) from e
        return membership

    def _by_pair(self, project_id: int, user_id: int):
        return self.db.query(models.ProjectMember).filter(
            models.ProjectMember.project_id == project_id,
            models.ProjectMember.user_id == user_id
        )

    def find_by_triple(self, project_id: int, user_id: int, role: models.UserRole) -> Optional[models.ProjectMember]:
        return self._by_pair(project_id, user_id).filter(models.ProjectMember.role == role).first()

    def delete_by_triple(self, project_id: int, user_id: int, role: models.UserRole) -> int:
        return self._by_pair(project_id, user_id).filter(
            models.ProjectMember.role == role
        ).delete(synchronize_session="fetch")

    def delete_by_pair(self, project_id: int, user_id: int) -> int:
        return self._by_pair(project_id, user_id).delete(synchronize_session="fetch")

    def roles_by_pair(self, project_id: int, user_id: int) -> List[models.UserRole]:
        rows = self.db.query(models.ProjectMember.role).filter(
            models.ProjectMember.project_id == project_id,
            models.ProjectMember.user_id == user_id
        ).all()
        return [row[0] for row in rows]

    def list_by_project(self, project_id: int) -> List[models.ProjectMember]:
        return (
            self.db.query(models.ProjectMember)
            .filter(models.ProjectMember.project_id == project_id)
            .order_by(models.ProjectMember.user_id.asc(), models.ProjectMember.role.asc())
            .all()
        )

    def delete_by_project(self, project_id: int) -> int:
        return self.db.query(models.ProjectMember).filter(
            models.ProjectMember.project_id == project_id
        ).delete(synchronize_session="fetch")

    def delete_by_user(self, user_id: int) -> int:
        return self.db.query(models.ProjectMember).filter(
            models.ProjectMember.user_id == user_id
        ).delete(synchronize_session="fetch")
