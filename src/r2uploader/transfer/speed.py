"""上传速度平滑"""

import time
from collections import deque
from collections.abc import Callable


class SpeedMeter:
    """滑动窗口内的平均速度（字节/秒），取窗口首尾样本计算"""

    def __init__(
        self,
        window: float = 3.0,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._window = window
        self._clock = clock
        self._samples: deque[tuple[float, int]] = deque()
        self._samples.append((clock(), 0))

    def record(self, total_bytes: int) -> float:
        """记录累计上传字节数，返回当前平滑速度"""
        now = self._clock()
        self._samples.append((now, total_bytes))
        # 保留一个落在窗口边界之外的样本作为起点
        while len(self._samples) > 2 and self._samples[1][0] <= now - self._window:
            self._samples.popleft()
        return self.speed

    @property
    def speed(self) -> float:
        first_t, first_b = self._samples[0]
        last_t, last_b = self._samples[-1]
        elapsed = last_t - first_t
        if elapsed <= 0:
            return 0.0
        return (last_b - first_b) / elapsed
