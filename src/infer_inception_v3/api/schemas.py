"""Pydantic request/response schemas for the Inception V3 API."""

from __future__ import annotations

from pydantic import BaseModel, Field


class Region(BaseModel):
    """A region proposal to classify independently."""

    id: int
    x: float
    y: float
    width: float = Field(gt=0.0)
    height: float = Field(gt=0.0)


class ImageTag(BaseModel):
    """A single classification tag with confidence score."""

    label: str
    confidence: float = Field(ge=0.0, le=1.0)
    class_id: int


class GraphicsTextItem(BaseModel):
    text: str
    x: float
    y: float


class GraphicsRectItem(BaseModel):
    graphics_id: int
    x: float
    y: float
    width: float
    height: float
    label: str


class GraphicsLayer(BaseModel):
    """Graphics output of a run, ready to be drawn over the image."""

    name: str
    image_index: int
    texts: list[GraphicsTextItem]
    rectangles: list[GraphicsRectItem]


class MeasureRow(BaseModel):
    """One row of the results table."""

    name: str
    value: float
    graphics_id: int
    label: str


class ClassifyImageResponse(BaseModel):
    """Response for image classification endpoint."""

    tags: list[ImageTag]
    graphics: GraphicsLayer
    measures: list[MeasureRow]
    elapsed_ms: float


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    gpu: bool
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class ModelInfo(BaseModel):
    """Information about an available model."""

    name: str
    framework: str
    status: str = Field(description="Model status: 'active', 'downloaded' or 'available'")
    license: str


class ModelsResponse(BaseModel):
    """Response for the models listing endpoint."""

    models: list[ModelInfo]


class PluginInfo(BaseModel):
    """Task descriptor published to the host."""

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


class ParamField(BaseModel):
    key: str
    label: str
    choices: list[str]
    value: str


class ParamsResponse(BaseModel):
    """Current parameter map and the editable form of the configuration panel."""

    params: dict[str, str]
    form: list[ParamField]


class ParamsUpdate(BaseModel):
    framework: str | None = None
    backend: str | None = None
    target: str | None = None


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
