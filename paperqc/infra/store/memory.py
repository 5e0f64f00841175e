from __future__ import annotations

import asyncio

from paperqc.domain.models import Paper
from paperqc.infra.ports.paper_store import PaperStorePort


class MemoryPaperStore(PaperStorePort):
    """Dict-backed store that sleeps on every call to mimic a network-backed record store."""

    def __init__(self, *, latency_ms: int = 0):
        self.latency_seconds = max(0, latency_ms) / 1000.0
        self._papers: dict[str, Paper] = {}

    async def _delay(self) -> None:
        if self.latency_seconds > 0:
            await asyncio.sleep(self.latency_seconds)

    async def list(self) -> list[Paper]:
        await self._delay()
        return sorted(self._papers.values(), key=lambda paper: paper.created_at, reverse=True)

    async def save(self, paper: Paper) -> None:
        await self._delay()
        # Papers are immutable values, so storing the reference is a full snapshot.
        self._papers[paper.paper_id] = paper

    async def delete(self, paper_id: str) -> None:
        await self._delay()
        self._papers.pop(paper_id, None)
