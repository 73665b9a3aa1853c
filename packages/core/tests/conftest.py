"""packages/core 测试配置 -- 可控时钟 fixture"""

import pytest


class FakeClock:
    """手动推进的时钟，替代 time.time / time.monotonic"""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()
