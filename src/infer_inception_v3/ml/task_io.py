"""Input/output containers exchanged with the host application.

Outputs only store plain values (text, positions, rectangles). The host turns
them into its own graphics objects when it manages the output, which keeps the
task free of any GUI object creation.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import StrEnum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    import numpy as np
    from numpy.typing import NDArray


class ImageIO:
    """Image port."""

    def __init__(self, image: NDArray[np.uint8] | None = None) -> None:
        self._image = image

    def set_image(self, image: NDArray[np.uint8] | None) -> None:
        self._image = image

    def get_image(self) -> NDArray[np.uint8] | None:
        return self._image

    def is_data_available(self) -> bool:
        return self._image is not None and self._image.size > 0

    def clear_data(self) -> None:
        self._image = None


@dataclass(frozen=True)
class Rect:
    x: float
    y: float
    width: float
    height: float


@dataclass(frozen=True)
class ProxyGraphicsItem:
    """A region proposal drawn or computed upstream.

    Only the bounding rectangle matters for classification, whatever the
    original shape was.
    """

    id: int
    rect: Rect
    shape: str = "rectangle"


class GraphicsInput:
    """Optional graphics port carrying region proposals."""

    def __init__(self, items: list[ProxyGraphicsItem] | None = None) -> None:
        self.items: list[ProxyGraphicsItem] = list(items or [])

    def set_items(self, items: list[ProxyGraphicsItem]) -> None:
        self.items = list(items)

    def is_data_available(self) -> bool:
        return bool(self.items)

    def clear_data(self) -> None:
        self.items.clear()


@dataclass(frozen=True)
class GraphicsText:
    text: str
    x: float
    y: float


@dataclass(frozen=True)
class GraphicsRect:
    rect: Rect
    label: str
    graphics_id: int


class GraphicsOutput:
    """Graphics layer published to the host."""

    def __init__(self) -> None:
        self.layer_name: str = ""
        self.image_index: int = 0
        self.texts: list[GraphicsText] = []
        self.rectangles: list[GraphicsRect] = []

    def set_new_layer(self, name: str) -> None:
        self.layer_name = name
        self.texts = []
        self.rectangles = []

    def set_image_index(self, index: int) -> None:
        self.image_index = index

    def add_text(self, text: str, x: float, y: float) -> None:
        self.texts.append(GraphicsText(text, x, y))

    def add_rectangle(self, rect: Rect, label: str, graphics_id: int) -> None:
        self.rectangles.append(GraphicsRect(rect, label, graphics_id))


class MeasureKind(StrEnum):
    SURFACE = "surface"
    PERIMETER = "perimeter"
    CUSTOM = "custom"


@dataclass(frozen=True)
class Measure:
    kind: MeasureKind
    name: str


@dataclass(frozen=True)
class ObjectMeasure:
    measure: Measure
    value: float
    graphics_id: int
    label: str


@dataclass
class BlobMeasureIO:
    """Tabular measures shown in the host results table."""

    measures: list[ObjectMeasure] = field(default_factory=list)

    def add_object_measure(self, measure: ObjectMeasure) -> None:
        self.measures.append(measure)

    def clear_data(self) -> None:
        self.measures.clear()

    def is_data_available(self) -> bool:
        return bool(self.measures)
