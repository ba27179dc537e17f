"""API route definitions."""

from __future__ import annotations

from dataclasses import asdict
from typing import TYPE_CHECKING, Annotated

from fastapi import APIRouter, Depends, Form, HTTPException, Request, UploadFile, status
from pydantic import TypeAdapter, ValidationError

from infer_inception_v3.api.middleware import verify_api_key
from infer_inception_v3.api.schemas import (
    ClassifyImageResponse,
    ErrorResponse,
    GraphicsLayer,
    GraphicsRectItem,
    GraphicsTextItem,
    HealthResponse,
    ImageTag,
    MeasureRow,
    ModelInfo,
    ModelsResponse,
    ParamField,
    ParamsResponse,
    ParamsUpdate,
    PluginInfo,
    Region,
)
from infer_inception_v3.exceptions import TaskError
from infer_inception_v3.ml.model_manager import MODEL_REGISTRY
from infer_inception_v3.ml.params import Backend, Target
from infer_inception_v3.ml.preprocessing import decode_image
from infer_inception_v3.ml.task_io import ProxyGraphicsItem, Rect

if TYPE_CHECKING:
    from infer_inception_v3.config import Settings
    from infer_inception_v3.ml.inception_v3 import InceptionV3, TaskResult
    from infer_inception_v3.ml.inference import InferencePool
    from infer_inception_v3.ml.model_manager import DnnModelManager
    from infer_inception_v3.plugin import InceptionV3Factory, InceptionV3Widget

router = APIRouter(prefix="/api/v1", dependencies=[Depends(verify_api_key)])

_REGIONS_ADAPTER = TypeAdapter(list[Region])


def _get_settings(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def _get_inference_pool(request: Request) -> InferencePool:
    pool: InferencePool = request.app.state.inference_pool
    return pool


def _get_task(request: Request) -> InceptionV3:
    task: InceptionV3 = request.app.state.task
    return task


def _get_model_manager(request: Request) -> DnnModelManager:
    manager: DnnModelManager = request.app.state.model_manager
    return manager


def _get_widget(request: Request) -> InceptionV3Widget:
    widget: InceptionV3Widget = request.app.state.widget
    return widget


def _parse_regions(raw: str | None) -> list[ProxyGraphicsItem]:
    if not raw:
        return []
    try:
        regions = _REGIONS_ADAPTER.validate_json(raw)
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=f"Invalid regions: {e.errors(include_url=False)}",
        ) from e
    return [ProxyGraphicsItem(id=r.id, rect=Rect(r.x, r.y, r.width, r.height)) for r in regions]


def _to_response(result: TaskResult, top_k: int, by_region: bool) -> ClassifyImageResponse:
    results = result.results if by_region else result.results[:top_k]
    return ClassifyImageResponse(
        tags=[ImageTag(label=r.label, confidence=r.confidence, class_id=r.class_id) for r in results],
        graphics=GraphicsLayer(
            name=result.graphics.layer_name,
            image_index=result.graphics.image_index,
            texts=[GraphicsTextItem(text=t.text, x=t.x, y=t.y) for t in result.graphics.texts],
            rectangles=[
                GraphicsRectItem(
                    graphics_id=r.graphics_id,
                    x=r.rect.x,
                    y=r.rect.y,
                    width=r.rect.width,
                    height=r.rect.height,
                    label=r.label,
                )
                for r in result.graphics.rectangles
            ],
        ),
        measures=[
            MeasureRow(name=m.measure.name, value=m.value, graphics_id=m.graphics_id, label=m.label)
            for m in result.measures
        ],
        elapsed_ms=result.elapsed_ms,
    )


@router.post(
    "/classify-image",
    response_model=ClassifyImageResponse,
    responses={
        status.HTTP_400_BAD_REQUEST: {"model": ErrorResponse},
        status.HTTP_413_REQUEST_ENTITY_TOO_LARGE: {"model": ErrorResponse},
        status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"model": ErrorResponse},
    },
    summary="Classify an image with tags",
)
async def classify_image(
    request: Request,
    file: UploadFile,
    regions: Annotated[str | None, Form(description="JSON list of {id, x, y, width, height}")] = None,
) -> ClassifyImageResponse:
    """Classify an uploaded image, or each of the given regions, and return ranked tags."""
    settings = _get_settings(request)
    pool = _get_inference_pool(request)

    data = await file.read()
    if len(data) > settings.max_file_size:
        raise HTTPException(
            status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
            detail=f"File exceeds {settings.max_file_size} bytes",
        )
    proposals = _parse_regions(regions)

    try:
        image = decode_image(data, settings.max_image_pixels)
    except ValueError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    try:
        result = await pool.classify(image, proposals)
    except TimeoutError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference queue is full, retry later",
        ) from e
    except TaskError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message) from e

    return _to_response(result, settings.top_k, by_region=bool(proposals))


@router.get(
    "/health",
    response_model=HealthResponse,
    summary="Health check",
)
async def health(request: Request) -> HealthResponse:
    """Return service health status."""
    pool = _get_inference_pool(request)
    task = _get_task(request)
    manager = _get_model_manager(request)
    return HealthResponse(
        status="ok",
        gpu=task.param.backend == Backend.CUDA or task.param.target in (Target.CUDA, Target.CUDA_FP16),
        models_loaded=manager.get_loaded_models(),
        concurrent_requests=pool.active_count,
        queue_depth=pool.queue_depth,
    )


@router.get(
    "/models",
    response_model=ModelsResponse,
    summary="List available models",
)
async def list_models(request: Request) -> ModelsResponse:
    """Return available model files and their status for the current parameters."""
    task = _get_task(request)
    manager = _get_model_manager(request)
    model_dir = manager.model_dir(task.name)

    models: list[ModelInfo] = []
    for framework, spec in MODEL_REGISTRY.items():
        if framework == task.param.framework:
            model_status = "active"
        elif (model_dir / spec.filename).exists():
            model_status = "downloaded"
        else:
            model_status = "available"

        models.append(
            ModelInfo(
                name=spec.filename,
                framework=framework.value,
                status=model_status,
                license=spec.license,
            )
        )

    return ModelsResponse(models=models)


@router.get(
    "/plugin",
    response_model=PluginInfo,
    summary="Task descriptor",
)
async def plugin_info(request: Request) -> PluginInfo:
    """Return the descriptor the plugin registers with its host."""
    factory: InceptionV3Factory = request.app.state.factory
    return PluginInfo(**asdict(factory.info))


def _params_response(task: InceptionV3, widget: InceptionV3Widget) -> ParamsResponse:
    return ParamsResponse(
        params=task.param.get_param_map(),
        form=[
            ParamField(key=f.key, label=f.label, choices=list(f.choices), value=f.value)
            for f in widget.form()
        ],
    )


@router.get(
    "/params",
    response_model=ParamsResponse,
    summary="Current task parameters",
)
async def get_params(request: Request) -> ParamsResponse:
    """Return the parameter map and the configuration form."""
    return _params_response(_get_task(request), _get_widget(request))


@router.put(
    "/params",
    response_model=ParamsResponse,
    responses={status.HTTP_422_UNPROCESSABLE_ENTITY: {"model": ErrorResponse}},
    summary="Update task parameters",
)
async def update_params(request: Request, update: ParamsUpdate) -> ParamsResponse:
    """Apply new network selection; the network is reloaded on the next run."""
    pool = _get_inference_pool(request)
    widget = _get_widget(request)
    try:
        widget.set_values(update.model_dump(exclude_none=True))
    except TaskError as e:
        raise HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=e.message) from e

    try:
        await pool.update_params(widget)
    except TimeoutError as e:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Inference queue is full, retry later",
        ) from e
    return _params_response(_get_task(request), widget)
