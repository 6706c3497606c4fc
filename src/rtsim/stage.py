from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any, ClassVar

from .parallel import CancellationToken


class Stage(ABC):
    """One step of a simulation run.

    Parameters go to the constructor, inputs go to ``run``. ``name`` and
    ``step_weight`` are static metadata used for progress reporting only.
    """

    name: ClassVar[str] = "stage"
    step_weight: ClassVar[int] = 1

    @abstractmethod
    def run(self, *inputs: Any, token: CancellationToken | None = None) -> Any:
        raise NotImplementedError

    def describe(self) -> str:
        return f"Operation: {self.name}"
