from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass
from typing import Final


@dataclass(frozen=True)
class ClassLabels:
    """Ordered, read-only class-name table indexed by model output position."""

    names: tuple[str, ...]

    def __post_init__(self) -> None:
        if len(self.names) == 0:
            raise ValueError("label table must not be empty")
        if any(not n.strip() for n in self.names):
            raise ValueError("label names must be non-blank")

    def __len__(self) -> int:
        return len(self.names)

    def __getitem__(self, index: int) -> str:
        return self.names[index]

    def __iter__(self) -> Iterator[str]:
        return iter(self.names)

    def name_for(self, index: int) -> str:
        if not (0 <= index < len(self.names)):
            raise IndexError(f"class index {index} outside [0, {len(self.names)})")
        return self.names[index]


FASHION_MNIST_LABELS: Final[ClassLabels] = ClassLabels(
    names=(
        "T-shirt/top",
        "Trouser",
        "Pullover",
        "Dress",
        "Coat",
        "Sandal",
        "Shirt",
        "Sneaker",
        "Bag",
        "Ankle boot",
    )
)
