from abc import ABC, abstractmethod
from contextlib import contextmanager


class IUnitOfWork(ABC):
    """
    하나의 논리적 작업 단위(트랜잭션)를 표현합니다.

    atomic() 블록은 중첩될 수 있으며, 가장 바깥 블록이 끝날 때만 커밋합니다.
    블록 안에서 예외가 발생하면(취소에 해당하는 KeyboardInterrupt 등 포함) 전체를 롤백합니다.
    """

    def __init__(self):
        self._depth = 0

    @abstractmethod
    def commit(self):
        """현재 트랜잭션을 커밋합니다."""
        pass

    @abstractmethod
    def rollback(self):
        """현재 트랜잭션을 롤백합니다."""
        pass

    @contextmanager
    def atomic(self):
        self._depth += 1
        try:
            yield self
        except BaseException:
            self._depth -= 1
            if self._depth == 0:
                self.rollback()
            raise
        self._depth -= 1
        if self._depth == 0:
            self.commit()
