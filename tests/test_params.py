"""Tests for the parameter record and task errors."""

from __future__ import annotations

import pytest

from infer_inception_v3.exceptions import CoreExCode, InvalidParameterError, TaskError
from infer_inception_v3.ml.params import Backend, Framework, InceptionV3Param, Target


class TestParamMap:
    def test_defaults(self) -> None:
        param = InceptionV3Param()
        assert param.get_param_map() == {
            "framework": "tensorflow",
            "backend": "default",
            "target": "cpu",
            "model_file": "",
            "labels_file": "",
        }
        assert param.update is False

    def test_set_param_map_parses_values(self) -> None:
        param = InceptionV3Param()

        param.set_param_map({"framework": "ONNX", "backend": "cuda", "target": "cuda_fp16"})

        assert param.framework == Framework.ONNX
        assert param.backend == Backend.CUDA
        assert param.target == Target.CUDA_FP16
        assert param.update is True

    def test_param_map_restores_record(self) -> None:
        source = InceptionV3Param(backend=Backend.OPENCV, target=Target.OPENCL, model_file="/m.pb")
        restored = InceptionV3Param()

        restored.set_param_map(source.get_param_map())

        assert restored.get_param_map() == source.get_param_map()

    def test_unknown_keys_ignored(self) -> None:
        param = InceptionV3Param()
        param.set_param_map({"threshold": "0.5"})
        assert param.backend == Backend.DEFAULT

    def test_invalid_value_raises(self) -> None:
        param = InceptionV3Param()
        with pytest.raises(InvalidParameterError, match="Invalid backend 'tpu'"):
            param.set_param_map({"backend": "tpu"})


class TestTaskError:
    def test_location_is_captured(self) -> None:
        def failing() -> None:
            raise InvalidParameterError("Empty image")

        with pytest.raises(TaskError) as exc_info:
            failing()

        error = exc_info.value
        assert error.code == CoreExCode.INVALID_PARAMETER
        assert error.message == "Empty image"
        assert error.func == "failing"
        assert error.file.endswith("test_params.py")
        assert "Empty image (failing in test_params.py:" in str(error)
