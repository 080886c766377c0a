"""Workspace health probe interface."""

from abc import ABC, abstractmethod
from dataclasses import dataclass


@dataclass
class HealthResult:
    ok: bool
    status_code: int | None = None


class HealthProbe(ABC):
    @abstractmethod
    async def check(self, main_url: str, timeout: float) -> HealthResult:
        """GET <main_url>/healthz.

        Raises on transport errors; an empty URL is reported healthy.
        """
        ...
