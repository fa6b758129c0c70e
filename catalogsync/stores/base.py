"""Helpers shared by the SQL stores."""

from __future__ import annotations

import asyncio
import json
from collections.abc import Callable
from concurrent.futures import Executor, ThreadPoolExecutor
from typing import Any, TypeVar

from sqlalchemy.engine import Engine

T = TypeVar("T")


class SqlStore:
    """Runs blocking SQLAlchemy work off the event loop.

    Each store owns a single worker thread unless an executor is supplied, so
    writes from one store never interleave on a connection.
    """

    def __init__(self, engine: Engine, *, executor: Executor | None = None) -> None:
        self.engine = engine
        self._executor = executor or ThreadPoolExecutor(max_workers=1, thread_name_prefix=type(self).__name__)

    async def _run(self, func: Callable[..., T], *args: Any) -> T:
        return await asyncio.get_running_loop().run_in_executor(self._executor, func, *args)


def json_list(value: Any) -> list[str]:
    if value in (None, ""):
        return []
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except json.JSONDecodeError:
            return [value]
    return [str(v) for v in value]
