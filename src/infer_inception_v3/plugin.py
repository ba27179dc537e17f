"""Plugin registration: task descriptor, factories and configuration widget.

Hosts discover the plugin through the ``ikomia.plugin.process`` entry-point
group, which points at :class:`InceptionV3Interface`.
"""

from __future__ import annotations

import logging
import platform
from dataclasses import dataclass, replace
from typing import TYPE_CHECKING

from infer_inception_v3.config import get_settings
from infer_inception_v3.exceptions import InvalidParameterError
from infer_inception_v3.ml.inception_v3 import InceptionV3
from infer_inception_v3.ml.model_manager import MODEL_REGISTRY, DnnModelManager
from infer_inception_v3.ml.params import Backend, InceptionV3Param, Target

if TYPE_CHECKING:
    from collections.abc import Callable

logger = logging.getLogger(__name__)

TASK_NAME = "infer_inception_v3"


def architecture_keywords() -> str:
    return f"{platform.system().lower()},{platform.machine().lower()}"


@dataclass(frozen=True)
class TaskInfo:
    """Descriptor shown by the host in its process library."""

    name: str
    short_description: str
    description: str
    path: str
    icon_path: str
    authors: str
    article: str
    journal: str
    year: int
    license: str
    repo: str
    keywords: str
    version: str


def _build_info() -> TaskInfo:
    return TaskInfo(
        name=TASK_NAME,
        short_description="Classification deep neural network trained on ImageNet dataset. Developped by Google.",
        description=(
            "Convolutional networks are at the core of most state-of-the-art computer vision solutions for a "
            "wide variety of tasks. Since 2014 very deep convolutional networks started to become mainstream, "
            "yielding substantial gains in various benchmarks. Although increased model size and computational "
            "cost tend to translate to immediate quality gains for most tasks (as long as enough labeled data is "
            "provided for training), computational efficiency and low parameter count are still enabling factors "
            "for various use cases such as mobile vision and big-data scenarios. Here we are exploring ways to "
            "scale up networks in ways that aim at utilizing the added computation as efficiently as possible by "
            "suitably factorized convolutions and aggressive regularization. We benchmark our methods on the "
            "ILSVRC 2012 classification challenge validation set demonstrate substantial gains over the state of "
            "the art: 21.2% top-1 and 5.6% top-5 error for single frame evaluation using a network with a "
            "computational cost of 5 billion multiply-adds per inference and with using less than 25 million "
            "parameters. With an ensemble of 4 models and multi-crop evaluation, we report 3.5% top-5 error and "
            "17.3% top-1 error on the validation set and 3.6% top-5 error on the official test set."
        ),
        path="Plugins/Python/Classification",
        icon_path="Icon/icon.png",
        authors="Christian Szegedy, Vincent Vanhoucke, Sergei Ioffe, Jon Shlens, Zbigniew Wojna",
        article="Rethinking the Inception Architecture for Computer Vision",
        journal="CVPR",
        year=2016,
        license="Apache 2 License",
        repo="https://github.com/tensorflow/models/tree/master/research",
        keywords="deep,learning,classification,inception," + architecture_keywords(),
        version="1.2.0",
    )


class InceptionV3Factory:
    """Creates configured :class:`InceptionV3` tasks."""

    def __init__(self, model_manager: DnnModelManager) -> None:
        self.info = _build_info()
        self._model_manager = model_manager

    def create(self, param: InceptionV3Param | None = None) -> InceptionV3:
        if param is None:
            param = InceptionV3Param()
        return InceptionV3(self.info.name, param, self._model_manager)


@dataclass(frozen=True)
class FormField:
    """One editable field of the configuration panel."""

    key: str
    label: str
    choices: tuple[str, ...]
    value: str


class InceptionV3Widget:
    """Headless configuration panel for the task parameters.

    The host (or the HTTP API) renders :meth:`form`, pushes edited values with
    :meth:`set_values` and calls :meth:`apply`, which emits the parameters to
    every connected callback.
    """

    def __init__(self, param: InceptionV3Param | None = None) -> None:
        self.param = param if param is not None else InceptionV3Param()
        self._apply_slots: list[Callable[[InceptionV3Param], None]] = []

    def form(self) -> list[FormField]:
        return [
            FormField(
                key="framework",
                label="Framework",
                choices=tuple(framework.value for framework in MODEL_REGISTRY),
                value=self.param.framework.value,
            ),
            FormField(
                key="backend",
                label="Backend",
                choices=tuple(backend.value for backend in Backend),
                value=self.param.backend.value,
            ),
            FormField(
                key="target",
                label="Target",
                choices=tuple(target.value for target in Target),
                value=self.param.target.value,
            ),
        ]

    def set_values(self, values: dict[str, str]) -> None:
        """Validate and store edited values; raises InvalidParameterError."""
        choices = {field.key: field.choices for field in self.form()}
        editable = {key: value for key, value in values.items() if key in choices}
        for key, value in editable.items():
            if value not in choices[key]:
                raise InvalidParameterError(f"Invalid {key} '{value}' (expected one of: {', '.join(choices[key])})")
        edited = replace(self.param)
        edited.set_param_map(editable)
        self.param = edited

    def connect_apply(self, slot: Callable[[InceptionV3Param], None]) -> None:
        self._apply_slots.append(slot)

    def apply(self) -> InceptionV3Param:
        self.param.update = True
        logger.info("Applying %s", self.param.get_param_map())
        for slot in self._apply_slots:
            slot(self.param)
        return self.param


class InceptionV3WidgetFactory:
    def __init__(self) -> None:
        self.name = TASK_NAME

    def create(self, param: InceptionV3Param | None = None) -> InceptionV3Widget:
        return InceptionV3Widget(param)


class InceptionV3Interface:
    """Global plugin interface exposed to the host.

    Hosts instantiate it without arguments; settings then come from the
    environment.
    """

    def __init__(self, model_manager: DnnModelManager | None = None) -> None:
        self._model_manager = model_manager if model_manager is not None else DnnModelManager(get_settings())

    def get_process_factory(self) -> InceptionV3Factory:
        return InceptionV3Factory(self._model_manager)

    def get_widget_factory(self) -> InceptionV3WidgetFactory:
        return InceptionV3WidgetFactory()
