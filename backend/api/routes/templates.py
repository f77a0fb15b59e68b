"""
Templates API routes.

Handles template upload, polygon/text configuration and mask previews.
"""
from typing import List
from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import Response

from db import SessionLocal
from domain.errors import InvalidGeometry
from domain.models import Template, TemplateConfig, normalize_label
from repositories import TemplatesRepository
from api.schemas import (
    TemplateConfigPayload,
    TemplateResponse,
    TextBlockRefineResponse,
    template_to_response,
)
from services.generation_service import default_subject_slots
from services.glyph_mask import build_text_glyph_mask_png
from services.image_ops import image_dimensions
from services.mask_builder import build_edit_mask_png, is_text_label, label_equals
from services.special_pipeline import usable_polygons
from services.text_layout import line_colors, refine_text_block
from storage.file_storage import FileStorage

router = APIRouter()
storage = FileStorage()
templates_repo = TemplatesRepository()

MASK_MODES = ("polygon", "glyph")


def _get_template_or_404(session, template_id: str) -> Template:
    template = templates_repo.get_template(session, template_id)
    if not template:
        raise HTTPException(status_code=404, detail="Template not found")
    return template


def _template_image_or_400(template: Template) -> bytes:
    if not template.image_path or not storage.file_exists(template.image_path):
        raise HTTPException(status_code=400, detail="Template has no image yet")
    return storage.read_bytes(template.image_path)


@router.post("", response_model=TemplateResponse)
async def create_template(name: str = Form(...), image: UploadFile = File(...)):
    """Upload a template image. Special templates start with the background/main slots."""
    data = await image.read()
    try:
        image_dimensions(data)
    except InvalidGeometry as e:
        raise HTTPException(status_code=400, detail=str(e))

    template_id = Template.generate_id()
    image_path = storage.save_template_image(template_id, image.filename or "template.png", data)
    template = Template(
        id=template_id,
        name=name.strip() or "Untitled",
        image_path=image_path,
        config=TemplateConfig(subject_slots=default_subject_slots()),
    )
    with SessionLocal() as session:
        created = templates_repo.create_template(session, template)
    return template_to_response(created)


@router.get("", response_model=List[TemplateResponse])
async def list_templates():
    with SessionLocal() as session:
        return [template_to_response(t) for t in templates_repo.list_templates(session)]


@router.get("/{template_id}", response_model=TemplateResponse)
async def get_template(template_id: str):
    with SessionLocal() as session:
        return template_to_response(_get_template_or_404(session, template_id))


@router.put("/{template_id}/config", response_model=TemplateResponse)
async def update_template_config(template_id: str, payload: TemplateConfigPayload):
    """Replace the template configuration (slots, text fields, polygons, text block)."""
    config = payload.to_domain()
    if not config.subject_slots:
        config.subject_slots = default_subject_slots()
    with SessionLocal() as session:
        _get_template_or_404(session, template_id)
        updated = templates_repo.update_config(session, template_id, config)
    return template_to_response(updated)


@router.get("/{template_id}/mask-preview")
async def get_mask_preview(template_id: str, label: str, mode: str = "polygon"):
    """
    Render the edit mask a pass would use for `label`, at template resolution.

    `label=text` covers every text polygon; `mode=glyph` applies glyph refinement.
    """
    if mode not in MASK_MODES:
        raise HTTPException(status_code=400, detail=f"mode must be one of: {', '.join(MASK_MODES)}")
    with SessionLocal() as session:
        template = _get_template_or_404(session, template_id)
    data = _template_image_or_400(template)

    canonical = normalize_label(label)
    include = is_text_label if canonical == "text" else label_equals(canonical)
    polygons = usable_polygons(template.config.polygons)
    width, height = image_dimensions(data)
    if mode == "glyph":
        mask = build_text_glyph_mask_png(data, width, height, polygons, include)
    else:
        mask = build_edit_mask_png(width, height, polygons, include)
    return Response(content=mask, media_type="image/png")


@router.post("/{template_id}/text-block/refine", response_model=TextBlockRefineResponse)
async def refine_template_text_block(template_id: str):
    """
    Correct the stored text block extent against the template pixels.

    Uses the fill colours of the first and last text fields. When probing finds
    nothing the stored block is left untouched and `refined` is false.
    """
    with SessionLocal() as session:
        template = _get_template_or_404(session, template_id)
        block = template.config.text_block
        if block is None:
            raise HTTPException(status_code=400, detail="Template has no text block to refine")
        data = _template_image_or_400(template)

        top_color, bottom_color = line_colors(template.config.text_fields)
        refined = refine_text_block(block, data, top_color, bottom_color)
        if refined == block:
            return TextBlockRefineResponse(refined=False, text_block=block.to_dict())

        template.config.text_block = refined
        templates_repo.update_config(session, template_id, template.config)
    return TextBlockRefineResponse(refined=True, text_block=refined.to_dict())
