from typing import List, Optional
from sqlalchemy.orm import Session
from agiletrack.database import models
from agiletrack.repositories.interfaces import IUserStoryRepository

class SqlalchemyUserStoryRepository(IUserStoryRepository):
    def __init__(self, db_session: Session):
        self.db = db_session

    def create(self, story_model: models.UserStory) -> models.UserStory:
        self.db.add(story_model)
        self.db.flush()
        return story_model

    def save(self, story_model: models.UserStory) -> models.UserStory:
        self.db.add(story_model)
        self.db.flush()
        return story_model

    def find_by_id(self, story_id: int) -> Optional[models.UserStory]:
        return self.db.query(models.UserStory).filter(models.UserStory.id == story_id).first()

    def find_by_key(self, story_key: str) -> Optional[models.UserStory]:
        return self.db.query(models.UserStory).filter(models.UserStory.story_key == story_key).first()

    def list_all(self) -> List[models.UserStory]:
        return self.db.query(models.UserStory).order_by(models.UserStory.id.asc()).all()

    def list_by_project_id(self, project_id: int) -> List[models.UserStory]:
        return self.db.query(models.UserStory).filter(
            models.UserStory.project_id == project_id
        ).order_by(models.UserStory.id.asc()).all()

    def delete(self, story: models.UserStory) -> bool:
        if story:
            self.db.delete(story)
            self.db.flush()
            return True
        return False

    def delete_by_project_id(self, project_id: int) -> int:
        return self.db.query(models.UserStory).filter(
            models.UserStory.project_id == project_id
        ).delete(synchronize_session="fetch")

    def unlink_release_plan(self, plan_id: int) -> int:
        return self.db.query(models.UserStory).filter(
            models.UserStory.release_plan_id == plan_id
        ).update({models.UserStory.release_plan_id: None}, synchronize_session="fetch")

    def clear_user_references(self, user_id: int) -> int:
        created = self.db.query(models.UserStory).filter(
            models.UserStory.created_by_user_id == user_id
        ).update({models.UserStory.created_by_user_id: None}, synchronize_session="fetch")
        assigned = self.db.query(models.UserStory).filter(
            models.UserStory.assigned_to_user_id == user_id
        ).update({models.UserStory.assigned_to_user_id: None}, synchronize_session="fetch")
        return created + assigned
