"""
Generations API routes.
"""
import json
import logging
from typing import Any, Dict, List, Optional
from fastapi import APIRouter, File, Form, HTTPException, UploadFile
from fastapi.responses import FileResponse
from pydantic import TypeAdapter, ValidationError

from db import SessionLocal
from domain.errors import EditFailed, InvalidGenerationInput, InvalidGeometry, NoApplicablePass
from domain.models import TextValue
from repositories import GenerationsRepository, TemplatesRepository
from api.schemas import GenerationResponse, TextValuePayload, generation_to_response
from services.generation_service import GenerationsService, SubjectUpload
from storage.file_storage import FileStorage

router = APIRouter()
templates_repo = TemplatesRepository()
generations_repo = GenerationsRepository()
storage = FileStorage()
generations_service = GenerationsService(storage=storage, generations_repo=generations_repo)
logger = logging.getLogger(__name__)

_slot_ids_adapter = TypeAdapter(List[str])
_texts_adapter = TypeAdapter(List[TextValuePayload])
_customizations_adapter = TypeAdapter(Dict[str, Any])


def _parse_form_json(raw: str, adapter: TypeAdapter, field_name: str, empty: str = "[]"):
    try:
        return adapter.validate_python(json.loads(raw or empty))
    except (json.JSONDecodeError, ValidationError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid {field_name}: {e}")


@router.post("/templates/{template_id}/generations", response_model=GenerationResponse)
def create_generation(
    template_id: str,
    subjectSlotIdsJson: str = Form("[]"),
    textsJson: str = Form("[]"),
    userNotes: Optional[str] = Form(None),
    customizationsJson: str = Form("{}"),
    output_format: str = Form("png", alias="format"),
    subjectImages: List[UploadFile] = File(default=[]),
):
    """
    Run a generation for a template (masked passes or a single edit).

    `subjectSlotIdsJson` lists one slot id per uploaded file, in upload order.
    Blocks until the pipeline finishes; the returned record is terminal.
    """
    slot_ids = _parse_form_json(subjectSlotIdsJson, _slot_ids_adapter, "subjectSlotIdsJson")
    texts = _parse_form_json(textsJson, _texts_adapter, "textsJson")
    customizations = _parse_form_json(customizationsJson, _customizations_adapter, "customizationsJson", "{}")
    if len(slot_ids) != len(subjectImages):
        raise HTTPException(
            status_code=400,
            detail=f"subjectSlotIdsJson has {len(slot_ids)} entries but {len(subjectImages)} images were uploaded",
        )

    subjects = [
        SubjectUpload(slot_id=slot_id, data=upload.file.read(), filename=upload.filename or "subject.png")
        for slot_id, upload in zip(slot_ids, subjectImages)
    ]
    values = [TextValue(key=t.key, value=t.value) for t in texts]

    with SessionLocal() as session:
        template = templates_repo.get_template(session, template_id)
        if not template:
            raise HTTPException(status_code=404, detail="Template not found")
        try:
            generation = generations_service.create_generation(
                session,
                template,
                subjects,
                values,
                user_notes=userNotes,
                customizations=customizations,
                output_format=output_format,
            )
        except EditFailed as e:
            logger.warning("Generation failed for template %s: %s", template_id, e)
            raise HTTPException(status_code=400, detail=str(e))
        except (InvalidGenerationInput, InvalidGeometry, NoApplicablePass) as e:
            raise HTTPException(status_code=400, detail=str(e))
    return generation_to_response(generation)


@router.get("/generations/{generation_id}", response_model=GenerationResponse)
async def get_generation(generation_id: str):
    with SessionLocal() as session:
        generation = generations_repo.get_generation(session, generation_id)
    if not generation:
        raise HTTPException(status_code=404, detail="Generation not found")
    return generation_to_response(generation)


@router.get("/generations/{generation_id}/image")
async def get_generation_image(generation_id: str):
    """Serve the final image of a succeeded generation."""
    with SessionLocal() as session:
        generation = generations_repo.get_generation(session, generation_id)
    if not generation:
        raise HTTPException(status_code=404, detail="Generation not found")
    if not generation.output_path or not storage.file_exists(generation.output_path):
        raise HTTPException(status_code=404, detail="Generation has no output image")
    return FileResponse(
        storage.get_absolute_path(generation.output_path),
        media_type=storage.media_type(generation.output_path),
    )


@router.get("/templates/{template_id}/generations", response_model=List[GenerationResponse])
async def list_generations(template_id: str):
    with SessionLocal() as session:
        return [generation_to_response(g) for g in generations_repo.list_by_template(session, template_id)]
