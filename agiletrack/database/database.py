from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, declarative_base

from agiletrack.config import get_settings

# 데이터베이스 연결 문자열은 AGILETRACK_DATABASE_URL 환경 변수로 바꿀 수 있습니다.
SQLALCHEMY_DATABASE_URL = get_settings().database_url


def build_engine(url: str):
    """
    SQLAlchemy 엔진을 생성합니다.
    connect_args는 SQLite에서만 필요합니다. (요청마다 다른 스레드에서 세션을 사용)
    """
    connect_args = {"check_same_thread": False} if url.startswith("sqlite") else {}
    return create_engine(url, connect_args=connect_args)


engine = build_engine(SQLALCHEMY_DATABASE_URL)

# autocommit=False, autoflush=False로 설정하여, 커밋은 Unit of Work가 명시적으로 호출합니다.
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# 모든 모델 클래스가 상속받을 Base 클래스
Base = declarative_base()
