class DuplicateEntryError(Exception):
    """저장소의 유일성 제약 조건에 위배되는 행을 삽입하려 할 때"""
    pass
