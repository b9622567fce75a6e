"""
按实例的令牌桶限流：容量为 burst_size，每秒补充 requests_per_minute / 60 个令牌。
"""

import time
from typing import Callable, Dict, Tuple

from hub.config_loader import RateLimitConfig


class TokenBucket:
    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.monotonic):
        self.capacity = float(config.burst_size)
        self.rate = config.requests_per_minute / 60.0
        self.tokens = self.capacity
        self._clock = clock
        self._last = clock()

    def try_acquire(self) -> bool:
        now = self._clock()
        self.tokens = min(self.capacity, self.tokens + (now - self._last) * self.rate)
        self._last = now
        if self.tokens >= 1.0:
            self.tokens -= 1.0
            return True
        return False


class RateLimiter:
    """(system_name, instance_id) -> TokenBucket；配置变化时重建桶。"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._buckets: Dict[Tuple[str, str], Tuple[RateLimitConfig, TokenBucket]] = {}

    def try_acquire(self, system_name: str, instance_id: str, config: RateLimitConfig) -> bool:
        key = (system_name.lower(), instance_id)
        entry = self._buckets.get(key)
        if entry is None or entry[0] != config:
            entry = (config, TokenBucket(config, self._clock))
            self._buckets[key] = entry
        return entry[1].try_acquire()
