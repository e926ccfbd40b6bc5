"""Storage interface and implementations for context data and usage counters."""

from .base import AdvisorStorage
from .memory import InMemoryStorage
from .redis_usage import RedisUsageCounter, connect_usage_counter

__all__ = ["AdvisorStorage", "InMemoryStorage", "RedisUsageCounter", "connect_usage_counter"]
