"""Shared helpers for modelquery."""

from .concurrency import gather_bounded, maybe_await
from .merge import deep_merge

__all__ = ["gather_bounded", "maybe_await", "deep_merge"]
