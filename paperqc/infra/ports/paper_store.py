from __future__ import annotations

from abc import ABC, abstractmethod

from paperqc.domain.models import Paper


class PaperStorePort(ABC):
    """Async record store for papers. Each call is independently latent and all-or-nothing."""

    @abstractmethod
    async def list(self) -> list[Paper]:
        """Return every stored paper, most recently created first."""

    @abstractmethod
    async def save(self, paper: Paper) -> None:
        """Upsert one full paper record by id."""

    @abstractmethod
    async def delete(self, paper_id: str) -> None:
        """Remove a paper; deleting an unknown id is a no-op."""
