"""Model manager: resolve, download, load and cache Inception networks.

Model files always live in the plugin installation directory
(``<plugin_dir>/<task name>/Model``). Missing files are fetched from the
remote model repository on first use. Frozen graphs are executed through
OpenCV DNN; ONNX exports through ONNX Runtime.
"""

from __future__ import annotations

import logging
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

import cv2
import numpy as np
from huggingface_hub import hf_hub_download
from huggingface_hub.errors import HfHubHTTPError, LocalEntryNotFoundError
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import (
    ExecutionMode,
    Fail,
    InvalidArgument,
    InvalidGraph,
    InvalidProtobuf,
    NoSuchFile,
    RuntimeException,
)

from infer_inception_v3.exceptions import InvalidParameterError
from infer_inception_v3.ml.params import Backend, Framework, Target

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from infer_inception_v3.config import Settings
    from infer_inception_v3.ml.params import InceptionV3Param

logger = logging.getLogger(__name__)

# Exceptions raised by the inference libraries while loading or running a network.
INFERENCE_ERRORS: tuple[type[Exception], ...] = (
    cv2.error,
    Fail,
    InvalidArgument,
    InvalidGraph,
    InvalidProtobuf,
    NoSuchFile,
    RuntimeException,
)


# ---------------------------------------------------------------------------
# Model registry
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ModelSpec:
    """Static metadata for one serialized form of the network."""

    framework: Framework
    filename: str
    labels_filename: str
    input_size: int
    scale_factor: float
    mean: tuple[float, float, float]
    swap_rb: bool
    output_layer: str
    license: str


MODEL_REGISTRY: dict[Framework, ModelSpec] = {
    Framework.TENSORFLOW: ModelSpec(
        framework=Framework.TENSORFLOW,
        filename="tensorflow_inception_graph.pb",
        labels_filename="imagenet_names.txt",
        input_size=224,
        scale_factor=1.0,
        mean=(117.0, 117.0, 117.0),
        swap_rb=False,
        output_layer="softmax2",
        license="Apache-2.0",
    ),
    Framework.ONNX: ModelSpec(
        framework=Framework.ONNX,
        filename="tensorflow_inception_graph.onnx",
        labels_filename="imagenet_names.txt",
        input_size=224,
        scale_factor=1.0,
        mean=(117.0, 117.0, 117.0),
        swap_rb=False,
        output_layer="softmax2",
        license="Apache-2.0",
    ),
}

_OPENCV_FRAMEWORKS: dict[Framework, str] = {
    Framework.TENSORFLOW: "TensorFlow",
    Framework.CAFFE: "Caffe",
    Framework.DARKNET: "Darknet",
    Framework.TORCH: "Torch",
}

_OPENCV_BACKEND_NAMES: dict[Backend, str] = {
    Backend.DEFAULT: "DNN_BACKEND_DEFAULT",
    Backend.HALIDE: "DNN_BACKEND_HALIDE",
    Backend.INFERENCE_ENGINE: "DNN_BACKEND_INFERENCE_ENGINE",
    Backend.OPENCV: "DNN_BACKEND_OPENCV",
    Backend.VKCOM: "DNN_BACKEND_VKCOM",
    Backend.CUDA: "DNN_BACKEND_CUDA",
}

_OPENCV_TARGET_NAMES: dict[Target, str] = {
    Target.CPU: "DNN_TARGET_CPU",
    Target.OPENCL: "DNN_TARGET_OPENCL",
    Target.OPENCL_FP16: "DNN_TARGET_OPENCL_FP16",
    Target.MYRIAD: "DNN_TARGET_MYRIAD",
    Target.VULKAN: "DNN_TARGET_VULKAN",
    Target.FPGA: "DNN_TARGET_FPGA",
    Target.CUDA: "DNN_TARGET_CUDA",
    Target.CUDA_FP16: "DNN_TARGET_CUDA_FP16",
}

# Only the constants the installed OpenCV build still exports (Halide is gone in 5.x).
_OPENCV_BACKENDS: dict[Backend, int] = {
    backend: getattr(cv2.dnn, name) for backend, name in _OPENCV_BACKEND_NAMES.items() if hasattr(cv2.dnn, name)
}

_OPENCV_TARGETS: dict[Target, int] = {
    target: getattr(cv2.dnn, name) for target, name in _OPENCV_TARGET_NAMES.items() if hasattr(cv2.dnn, name)
}


def get_spec(framework: Framework) -> ModelSpec:
    try:
        return MODEL_REGISTRY[framework]
    except KeyError:
        raise InvalidParameterError(f"No Inception V3 model available for framework '{framework}'") from None


def conform_name(name: str) -> str:
    """Make a task name usable as a directory name."""
    return re.sub(r"[^A-Za-z0-9_-]", "_", name)


# ---------------------------------------------------------------------------
# Networks
# ---------------------------------------------------------------------------


class DnnNetwork(Protocol):
    """A loaded network ready for forward passes."""

    def forward(self, blob: NDArray[np.float32]) -> NDArray[np.float32]:
        """Run one forward pass and return a 1 x n probability matrix."""
        ...


class OpenCvNetwork:
    """OpenCV DNN network reading a single output layer."""

    def __init__(self, net: cv2.dnn.Net, output_layer: str) -> None:
        self._net = net
        self._output_layer = output_layer

    def forward(self, blob: NDArray[np.float32]) -> NDArray[np.float32]:
        self._net.setInput(blob)
        output = self._net.forward(self._output_layer)
        return np.asarray(output, dtype=np.float32).reshape(1, -1)


class OnnxNetwork:
    """ONNX Runtime session fed with the same NCHW blob as OpenCV."""

    def __init__(self, session: InferenceSession) -> None:
        self._session = session
        self._input_name = session.get_inputs()[0].name

    def forward(self, blob: NDArray[np.float32]) -> NDArray[np.float32]:
        outputs = self._session.run(None, {self._input_name: blob})
        return np.asarray(outputs[0], dtype=np.float32).reshape(1, -1)


# ---------------------------------------------------------------------------
# Manager
# ---------------------------------------------------------------------------


_NetKey = tuple[str, Framework, Backend, Target]


class DnnModelManager:
    """Resolves model files, downloads them on demand and caches networks."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._plugin_dir = Path(settings.plugin_dir)

        self._lock = threading.Lock()
        self._nets: dict[_NetKey, DnnNetwork] = {}
        self._class_names: dict[str, list[str]] = {}

    # -- Public API ---------------------------------------------------------

    def model_dir(self, task_name: str) -> Path:
        return self._plugin_dir / conform_name(task_name) / "Model"

    def resolve_files(self, task_name: str, param: InceptionV3Param) -> ModelSpec:
        """Force the model and labels paths of ``param`` into the plugin directory."""
        spec = get_spec(param.framework)
        model_dir = self.model_dir(task_name)
        param.model_file = str(model_dir / spec.filename)
        param.labels_file = str(model_dir / spec.labels_filename)
        return spec

    def ensure_downloaded(self, task_name: str, path: Path) -> Path:
        """Fetch ``path`` from the model repository if it is not present locally."""
        if path.exists():
            return path

        logger.info("Downloading model...")
        try:
            downloaded = Path(
                hf_hub_download(
                    repo_id=self._settings.hub_repo_id,
                    filename=path.name,
                    subfolder=f"{conform_name(task_name)}/Model",
                    local_dir=str(self._plugin_dir),
                )
            )
        except (HfHubHTTPError, LocalEntryNotFoundError) as e:
            raise InvalidParameterError(f"Failed to download {path.name}: {e}") from e
        logger.info("Downloaded %s to %s", path.name, downloaded)
        return downloaded

    def get_net(self, param: InceptionV3Param, reload: bool = False) -> DnnNetwork:
        """Return a cached network for the param selection, loading it if needed."""
        key: _NetKey = (param.model_file, param.framework, param.backend, param.target)
        with self._lock:
            if not reload and key in self._nets:
                return self._nets[key]

        net = self._load(param)

        with self._lock:
            self._nets[key] = net
            logger.info(
                "Loaded %s (framework=%s, backend=%s, target=%s)",
                Path(param.model_file).name,
                param.framework,
                param.backend,
                param.target,
            )
            return net

    def read_class_names(self, labels_file: str) -> list[str]:
        """Read newline-delimited class names, cached per file."""
        with self._lock:
            cached = self._class_names.get(labels_file)
        if cached is not None:
            return cached

        path = Path(labels_file)
        if not path.exists():
            logger.warning("Labels file %s not found, classes will be reported by index", path)
            return []

        try:
            names = path.read_text(encoding="utf-8").splitlines()
        except UnicodeDecodeError as e:
            raise InvalidParameterError(f"Labels file {path.name} is not valid UTF-8: {e}") from e
        while names and not names[-1].strip():
            names.pop()

        with self._lock:
            self._class_names[labels_file] = names
        return names

    def get_loaded_models(self) -> list[str]:
        """Return names of model files with a loaded network."""
        with self._lock:
            return sorted({Path(key[0]).name for key in self._nets})

    def shutdown(self) -> None:
        """Release all cached networks."""
        with self._lock:
            self._nets.clear()
            self._class_names.clear()
            logger.info("All networks released")

    # -- Internal -----------------------------------------------------------

    def _load(self, param: InceptionV3Param) -> DnnNetwork:
        if param.framework == Framework.ONNX:
            session = InferenceSession(
                param.model_file,
                sess_options=self._build_session_options(),
                providers=self._build_providers(param),
            )
            return OnnxNetwork(session)

        spec = get_spec(param.framework)
        if param.backend not in _OPENCV_BACKENDS:
            raise InvalidParameterError(f"Backend '{param.backend}' is not available in OpenCV {cv2.__version__}")
        if param.target not in _OPENCV_TARGETS:
            raise InvalidParameterError(f"Target '{param.target}' is not available in OpenCV {cv2.__version__}")

        net = cv2.dnn.readNet(param.model_file, "", _OPENCV_FRAMEWORKS[param.framework])
        if net.empty():
            raise InvalidParameterError("Failed to load network")

        net.setPreferableBackend(_OPENCV_BACKENDS[param.backend])
        net.setPreferableTarget(_OPENCV_TARGETS[param.target])
        return OpenCvNetwork(net, spec.output_layer)

    @staticmethod
    def _build_providers(param: InceptionV3Param) -> list[str | tuple[str, dict[str, object]]]:
        if param.backend == Backend.CUDA or param.target in (Target.CUDA, Target.CUDA_FP16):
            return [
                ("CUDAExecutionProvider", {"device_id": 0}),
                "CPUExecutionProvider",
            ]
        if param.backend == Backend.INFERENCE_ENGINE:
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL
        return opts
