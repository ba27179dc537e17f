"""Parameter record of the Inception V3 task.

The host exchanges parameters as a flat string map, so the record knows how to
serialize itself to and from that representation.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TypeVar

from infer_inception_v3.exceptions import InvalidParameterError


E = TypeVar("E", bound=StrEnum)


class Framework(StrEnum):
    TENSORFLOW = "tensorflow"
    CAFFE = "caffe"
    DARKNET = "darknet"
    TORCH = "torch"
    ONNX = "onnx"


class Backend(StrEnum):
    DEFAULT = "default"
    HALIDE = "halide"
    INFERENCE_ENGINE = "inference_engine"
    OPENCV = "opencv"
    VKCOM = "vkcom"
    CUDA = "cuda"


class Target(StrEnum):
    CPU = "cpu"
    OPENCL = "opencl"
    OPENCL_FP16 = "opencl_fp16"
    MYRIAD = "myriad"
    VULKAN = "vulkan"
    FPGA = "fpga"
    CUDA = "cuda"
    CUDA_FP16 = "cuda_fp16"


@dataclass
class InceptionV3Param:
    """Network selection and model file locations.

    ``update`` is raised whenever the selection changes so that the task
    reloads its network on the next run.
    """

    model_file: str = ""
    labels_file: str = ""
    framework: Framework = Framework.TENSORFLOW
    backend: Backend = Backend.DEFAULT
    target: Target = Target.CPU
    update: bool = False

    def get_param_map(self) -> dict[str, str]:
        return {
            "framework": self.framework.value,
            "backend": self.backend.value,
            "target": self.target.value,
            "model_file": self.model_file,
            "labels_file": self.labels_file,
        }

    def set_param_map(self, param_map: dict[str, str]) -> None:
        """Update the record from a host parameter map.

        Unknown keys are ignored. Raises:
            InvalidParameterError: If an enum value is not recognised.
        """
        if "framework" in param_map:
            self.framework = _parse(Framework, param_map["framework"], "framework")
        if "backend" in param_map:
            self.backend = _parse(Backend, param_map["backend"], "backend")
        if "target" in param_map:
            self.target = _parse(Target, param_map["target"], "target")
        if "model_file" in param_map:
            self.model_file = param_map["model_file"]
        if "labels_file" in param_map:
            self.labels_file = param_map["labels_file"]
        self.update = True


def _parse(enum_cls: type[E], value: str, key: str) -> E:
    try:
        return enum_cls(value.strip().lower())
    except ValueError:
        choices = ", ".join(member.value for member in enum_cls)
        raise InvalidParameterError(f"Invalid {key} '{value}' (expected one of: {choices})") from None
