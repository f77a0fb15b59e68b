"""
Request/response models for the HTTP API.

Template configuration is validated here once and converted into domain
dataclasses; nothing past this module sees raw JSON.
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from domain.models import (
    Customization,
    Generation,
    Point,
    Polygon,
    SubjectSlot,
    Template,
    TemplateConfig,
    TextBlock,
    TextField,
)


class PointPayload(BaseModel):
    xPct: float = Field(allow_inf_nan=False)
    yPct: float = Field(allow_inf_nan=False)


class PolygonPayload(BaseModel):
    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    color: str = Field(min_length=1)
    points: List[PointPayload]


class SubjectSlotPayload(BaseModel):
    id: str = Field(min_length=1)
    label: Optional[str] = None
    required: bool = False


class TextFieldPayload(BaseModel):
    key: str = Field(min_length=1)
    label: Optional[str] = None
    required: bool = False
    default_value: Optional[str] = None
    fill_color: Optional[str] = None


class CustomizationPayload(BaseModel):
    id: str = Field(min_length=1)
    label: Optional[str] = None
    kind: Literal["toggle", "select"] = "toggle"
    options: List[str] = []


class TextBlockPayload(BaseModel):
    centered: bool = True
    width_pct: Optional[float] = Field(default=None, ge=0, le=100)
    top_pct: Optional[float] = Field(default=None, ge=0, le=100)
    bottom_pct: Optional[float] = Field(default=None, ge=0, le=100)
    height_pct: Optional[float] = Field(default=None, ge=0, le=100)


class TemplateConfigPayload(BaseModel):
    subject_slots: List[SubjectSlotPayload] = []
    text_fields: List[TextFieldPayload] = []
    polygons: List[PolygonPayload] = []
    text_block: Optional[TextBlockPayload] = None
    customizations: List[CustomizationPayload] = []
    reconstruction_prompt: Optional[str] = None

    def to_domain(self) -> TemplateConfig:
        return TemplateConfig(
            subject_slots=[SubjectSlot(id=s.id, label=s.label, required=s.required) for s in self.subject_slots],
            text_fields=[
                TextField(
                    key=t.key,
                    label=t.label,
                    required=t.required,
                    default_value=t.default_value,
                    fill_color=t.fill_color,
                )
                for t in self.text_fields
            ],
            polygons=[
                Polygon(
                    id=p.id,
                    label=p.label,
                    color=p.color,
                    points=[Point(pt.xPct, pt.yPct) for pt in p.points],
                )
                for p in self.polygons
            ],
            text_block=TextBlock(**self.text_block.model_dump()) if self.text_block else None,
            customizations=[
                Customization(id=c.id, label=c.label, kind=c.kind, options=list(c.options))
                for c in self.customizations
            ],
            reconstruction_prompt=(self.reconstruction_prompt or "").strip() or None,
        )


class TextValuePayload(BaseModel):
    key: str = Field(min_length=1)
    value: str = ""


class TemplateResponse(BaseModel):
    id: str
    name: str
    image_path: Optional[str] = None
    config: Dict[str, Any]
    created_at: str
    updated_at: str


class GenerationResponse(BaseModel):
    id: str
    template_id: str
    status: str
    output_path: Optional[str] = None
    executed_passes: List[str] = []
    error: Optional[str] = None
    created_at: str
    updated_at: str


class TextBlockRefineResponse(BaseModel):
    refined: bool
    text_block: Optional[Dict[str, Any]] = None


def template_to_response(template: Template) -> TemplateResponse:
    """Convert domain Template to API response."""
    return TemplateResponse(
        id=template.id,
        name=template.name,
        image_path=template.image_path,
        config=template.config.to_dict(),
        created_at=template.created_at.isoformat(),
        updated_at=template.updated_at.isoformat(),
    )


def generation_to_response(generation: Generation) -> GenerationResponse:
    return GenerationResponse(
        id=generation.id,
        template_id=generation.template_id,
        status=generation.status.value,
        output_path=generation.output_path,
        executed_passes=generation.executed_passes,
        error=generation.error,
        created_at=generation.created_at.isoformat(),
        updated_at=generation.updated_at.isoformat(),
    )
