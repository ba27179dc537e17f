"""Inception V3 classification task.

Runs the network on the whole input image, or on every region proposal of the
optional graphics input, and fills the graphics and measure outputs consumed
by the host.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import TYPE_CHECKING

from infer_inception_v3.exceptions import InvalidParameterError
from infer_inception_v3.ml.image_classifier import ClassificationResult, format_label, rank
from infer_inception_v3.ml.model_manager import INFERENCE_ERRORS
from infer_inception_v3.ml.params import Backend, Framework, InceptionV3Param
from infer_inception_v3.ml.preprocessing import crop_region, ensure_color, make_blob
from infer_inception_v3.ml.task_io import (
    BlobMeasureIO,
    GraphicsInput,
    GraphicsOutput,
    ImageIO,
    Measure,
    MeasureKind,
    ObjectMeasure,
    ProxyGraphicsItem,
)

if TYPE_CHECKING:
    from collections.abc import Callable

    import numpy as np
    from numpy.typing import NDArray

    from infer_inception_v3.ml.model_manager import DnnModelManager, DnnNetwork, ModelSpec

logger = logging.getLogger(__name__)

LAYER_NAME = "InceptionV3"
CONFIDENCE_MEASURE = Measure(MeasureKind.CUSTOM, "Confidence")

# Alternating resize offset used with the CUDA backend, see run().
CUDA_SIZE_OFFSET = 32


class ProgressSignal:
    """Minimal signal the host connects to for progress notifications."""

    def __init__(self) -> None:
        self._slots: list[Callable[[], None]] = []

    def connect(self, slot: Callable[[], None]) -> None:
        self._slots.append(slot)

    def emit(self) -> None:
        for slot in self._slots:
            slot()


@dataclass
class TaskResult:
    """Snapshot of the task outputs after one run."""

    results: list[ClassificationResult]
    graphics: GraphicsOutput
    measures: list[ObjectMeasure] = field(default_factory=list)
    elapsed_ms: float = 0.0


class InceptionV3:
    """Classification task wrapping the Inception network."""

    def __init__(
        self,
        name: str,
        param: InceptionV3Param | None,
        model_manager: DnnModelManager,
    ) -> None:
        self.name = name
        self.param = replace(param) if param is not None else InceptionV3Param()
        self.model_manager = model_manager

        self.inputs: list[ImageIO | GraphicsInput] = [ImageIO(), GraphicsInput()]
        self.outputs: list[ImageIO | GraphicsOutput | BlobMeasureIO] = [
            ImageIO(),
            GraphicsOutput(),
            BlobMeasureIO(),
        ]
        self.progress = ProgressSignal()

        self._net: DnnNetwork | None = None
        self._class_names: list[str] = []
        self._last_results: list[ClassificationResult] = []
        self._new_input = False
        self._sign = 1
        self._started_at = 0.0
        self.elapsed_ms = 0.0

    @property
    def model_name(self) -> str:
        return self.name

    # -- Host hooks -----------------------------------------------------------

    def get_progress_steps(self) -> int:
        return 3

    def get_network_input_size(self, spec: ModelSpec) -> int:
        size = spec.input_size
        if self._alternate_input_size(spec):
            size += self._sign * CUDA_SIZE_OFFSET
        return size

    def global_input_changed(self, new_sequence: bool) -> None:
        self._new_input = True

    def set_input_image(self, image: NDArray[np.uint8] | None) -> None:
        image_input = self.inputs[0]
        assert isinstance(image_input, ImageIO)
        image_input.set_image(image)
        self.global_input_changed(True)

    def set_param(self, param: InceptionV3Param) -> None:
        """Replace the parameters between two runs; the network reloads on the next run."""
        self.param = replace(param)
        self.param.update = True

    def set_regions(self, items: list[ProxyGraphicsItem]) -> None:
        graphics_input = self.inputs[1]
        assert isinstance(graphics_input, GraphicsInput)
        graphics_input.set_items(items)

    def begin_task_run(self) -> None:
        self._started_at = time.perf_counter()
        logger.debug("Starting %s", self.name)

    def end_task_run(self) -> None:
        self.elapsed_ms = (time.perf_counter() - self._started_at) * 1000.0
        logger.info("%s processed in %.1f ms", self.name, self.elapsed_ms)

    # -- Run ------------------------------------------------------------------

    def run(self) -> None:
        """Classify the input image (or its region proposals).

        Raises:
            InvalidParameterError: On missing input, empty image, model
                loading failure or any inference library error.
        """
        self.begin_task_run()
        image_input = self.inputs[0]
        if not isinstance(image_input, ImageIO):
            raise InvalidParameterError("Invalid parameters")

        if not image_input.is_data_available():
            raise InvalidParameterError("Empty image")

        spec = self.model_manager.resolve_files(self.name, self.param)
        self.model_manager.ensure_downloaded(self.name, Path(self.param.model_file))
        self.model_manager.ensure_downloaded(self.name, Path(self.param.labels_file))

        image = image_input.get_image()
        assert image is not None
        image = ensure_color(image)
        self.progress.emit()

        graphics_input = self.inputs[1]
        regions = graphics_input.items if isinstance(graphics_input, GraphicsInput) else []

        region_outputs: list[tuple[ProxyGraphicsItem, NDArray[np.float32]]] = []
        whole_output: NDArray[np.float32] | None = None
        try:
            if self._net is None or self.param.update:
                self._net = self.model_manager.get_net(self.param, reload=self.param.update)
                self.param.update = False

            size = self.get_network_input_size(spec)
            for item in regions:
                crop = crop_region(image, item.rect)
                if crop is None:
                    logger.debug("Region %d is outside the image, skipped", item.id)
                    continue
                region_outputs.append((item, self._forward(crop, spec, size)))
            if not regions:
                whole_output = self._forward(image, spec, size)
        except INFERENCE_ERRORS as e:
            raise InvalidParameterError(str(e)) from e

        self._class_names = self.model_manager.read_class_names(self.param.labels_file)
        self.end_task_run()
        self.progress.emit()

        self._forward_input_image(image_input)
        if whole_output is None:
            self._manage_object_outputs(region_outputs)
        else:
            self._manage_whole_image_output(whole_output)
        self.progress.emit()

        if self._alternate_input_size(spec):
            self._sign *= -1
            self._new_input = False

    def process(
        self,
        image: NDArray[np.uint8] | None,
        regions: list[ProxyGraphicsItem] | None = None,
    ) -> TaskResult:
        """Set the inputs, run the task and return a snapshot of its outputs.

        Not reentrant: the task owns a single network and output set, callers
        serialize runs (the HTTP surface does so through InferencePool).
        """
        self.set_input_image(image)
        self.set_regions(regions or [])
        self.run()

        graphics = self.outputs[1]
        measures = self.outputs[2]
        assert isinstance(graphics, GraphicsOutput)
        assert isinstance(measures, BlobMeasureIO)
        snapshot = GraphicsOutput()
        snapshot.set_new_layer(graphics.layer_name)
        snapshot.set_image_index(graphics.image_index)
        snapshot.texts = list(graphics.texts)
        snapshot.rectangles = list(graphics.rectangles)
        return TaskResult(
            results=list(self._last_results),
            graphics=snapshot,
            measures=list(measures.measures),
            elapsed_ms=self.elapsed_ms,
        )

    def classify(self, image: NDArray[np.uint8]) -> list[ClassificationResult]:
        return self.process(image).results

    # -- Internal -------------------------------------------------------------

    def _alternate_input_size(self, spec: ModelSpec) -> bool:
        # Trick to overcome OpenCV issue around CUDA context and multithreading
        # https://github.com/opencv/opencv/issues/20566
        # ONNX Runtime has its own CUDA provider and a fixed input shape.
        return spec.framework != Framework.ONNX and self.param.backend == Backend.CUDA and self._new_input

    def _forward(self, image: NDArray[np.uint8], spec: ModelSpec, size: int) -> NDArray[np.float32]:
        assert self._net is not None
        blob = make_blob(image, size, spec.scale_factor, spec.mean, spec.swap_rb)
        return self._net.forward(blob)

    def _forward_input_image(self, image_input: ImageIO) -> None:
        image_output = self.outputs[0]
        assert isinstance(image_output, ImageIO)
        image_output.set_image(image_input.get_image())

    def _prepare_outputs(self) -> tuple[GraphicsOutput, BlobMeasureIO]:
        graphics = self.outputs[1]
        measures = self.outputs[2]
        assert isinstance(graphics, GraphicsOutput)
        assert isinstance(measures, BlobMeasureIO)
        graphics.set_new_layer(LAYER_NAME)
        graphics.set_image_index(0)
        measures.clear_data()
        return graphics, measures

    def _manage_whole_image_output(self, dnn_output: NDArray[np.float32]) -> None:
        graphics, measures = self._prepare_outputs()
        ranked = rank(dnn_output, self._class_names)
        self._last_results = ranked

        # Text is stored as plain values; the host builds its graphics item.
        graphics.add_text(format_label(ranked[0]), 30, 30)

        for index, result in enumerate(ranked):
            measures.add_object_measure(ObjectMeasure(CONFIDENCE_MEASURE, result.confidence, index, result.label))

    def _manage_object_outputs(self, outputs: list[tuple[ProxyGraphicsItem, NDArray[np.float32]]]) -> None:
        graphics, measures = self._prepare_outputs()
        self._last_results = []
        for item, dnn_output in outputs:
            top = rank(dnn_output, self._class_names)[0]
            self._last_results.append(top)
            graphics.add_rectangle(item.rect, format_label(top), item.id)
            measures.add_object_measure(ObjectMeasure(CONFIDENCE_MEASURE, top.confidence, item.id, top.label))
