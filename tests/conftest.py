from __future__ import annotations
import asyncio
from typing import Any, Callable, Dict, List, Optional, Sequence, Union

import pytest

from datadesk.core.gemini_client import parse_json_object

Reply = Union[str, Exception, Callable[..., Any]]


class FakeLLM:
    """
    Stands in for GeminiClient. Replies are consumed in order; the last one repeats.
    A reply may be a string, an exception to raise, or a callable(messages) returning either.
    """

    def __init__(self, *replies: Reply, delay_s: float = 0.0):
        self.replies: List[Reply] = list(replies)
        self.calls: List[Dict[str, Any]] = []
        self.delay_s = delay_s

    async def complete(self, messages, **kwargs) -> str:
        self.calls.append({"messages": messages, **kwargs})
        if self.delay_s:
            await asyncio.sleep(self.delay_s)
        reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
        if callable(reply) and not isinstance(reply, Exception):
            reply = reply(messages)
            if asyncio.iscoroutine(reply):
                reply = await reply
        if isinstance(reply, Exception):
            raise reply
        return reply

    async def complete_json(self, messages, **kwargs) -> Dict[str, Any]:
        return parse_json_object(await self.complete(messages, json_output=True, **kwargs))


def _matches(row: Dict[str, Any], where) -> bool:
    for k, v in (where or {}).items():
        if isinstance(v, (list, tuple, set)):
            if row.get(k) not in v:
                return False
        elif row.get(k) != v:
            return False
    return True


class FakeAccessor:
    """
    In-memory TableAccessor. `where` filters like the real one (lists mean IN);
    updates keyed on a value in `missing` match no row and return 0.
    """

    def __init__(
        self,
        name: str = "people",
        rows: Optional[Sequence[Dict[str, Any]]] = None,
        pk: Optional[str] = "id",
        fail_on: Optional[Callable[[Dict[str, Any]], Optional[Exception]]] = None,
        missing: Sequence[Any] = (),
    ):
        self.name = name
        self.rows = list(rows or [])
        self.pk = pk
        self.fail_on = fail_on
        self.missing = set(missing)
        self.updates: List[tuple] = []
        self.read_error: Optional[Exception] = None

    def _selected(self, where):
        if self.read_error:
            raise self.read_error
        return [r for r in self.rows if _matches(r, where)]

    async def find_many(self, skip: int = 0, take: int = 10, where=None):
        return [dict(r) for r in self._selected(where)[skip: skip + take]]

    async def count(self, where=None) -> int:
        return len(self._selected(where))

    def _groups(self, columns, where) -> List[Dict[str, Any]]:
        counts: Dict[tuple, int] = {}
        for r in self._selected(where):
            key = tuple(r.get(c) for c in columns)
            counts[key] = counts.get(key, 0) + 1
        groups = [{**dict(zip(columns, k)), "count": n} for k, n in counts.items() if n > 1]
        return sorted(groups, key=lambda g: (-g["count"], [str(g[c]) for c in columns]))

    async def duplicate_groups(self, columns, where=None, skip: int = 0, take: int = 50):
        return self._groups(columns, where)[skip: skip + take]

    async def duplicate_group_count(self, columns, where=None) -> int:
        return len(self._groups(columns, where))

    async def update(self, where, data) -> int:
        if self.fail_on:
            err = self.fail_on(where)
            if err:
                raise err
        if set(where.values()) & self.missing:
            return 0
        self.updates.append((dict(where), dict(data)))
        return 1

    async def primary_key(self):
        if isinstance(self.pk, Exception):
            raise self.pk
        return self.pk


@pytest.fixture
def run():
    return asyncio.run
