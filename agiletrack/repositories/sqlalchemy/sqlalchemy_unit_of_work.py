from sqlalchemy.orm import Session
from agiletrack.repositories.interfaces import IUnitOfWork

class SqlalchemyUnitOfWork(IUnitOfWork):
    def __init__(self, db_session: Session):
        super().__init__()
        self.db = db_session

    def commit(self):
        self.db.commit()

    def rollback(self):
        self.db.rollback()
