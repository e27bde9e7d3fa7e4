# checkout/services/best_effort.py
from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Optional, Set, TypeVar

from checkout.obs.metrics import checkout_best_effort_failures_total

logger = logging.getLogger("checkout.best_effort")

T = TypeVar("T")

# fire-and-forget 任务的强引用，防止被 GC 提前回收
_background: Set["asyncio.Task[None]"] = set()


async def best_effort(task: str, aw: Awaitable[T], *, default: Optional[T] = None) -> Optional[T]:
    """
    尽力而为的副作用调用（偏好保存 / 验签等）：
    - 成功返回结果
    - 任何异常只记日志 + 计数，返回 default，绝不向上抛
    调用点用它来和“必须成功、错误要传播”的 await 明确区分开。
    """
    try:
        return await aw
    except asyncio.CancelledError:
        raise
    except Exception:
        checkout_best_effort_failures_total.labels(task).inc()
        logger.warning("best-effort task %s failed (ignored)", task, exc_info=True)
        return default


def fire_and_forget(task: str, aw: Awaitable[None]) -> "asyncio.Task[None]":
    """后台跑一个 best_effort，不等待结果。需要在运行中的事件循环里调用。"""

    async def _run() -> None:
        await best_effort(task, aw)

    t = asyncio.get_running_loop().create_task(_run(), name=f"best-effort:{task}")
    _background.add(t)
    t.add_done_callback(_background.discard)
    return t
