"""
Generation orchestration around the edit pipeline.

Validates a request against the template configuration, records the
generation as 'running', runs either the masked multi-pass pipeline (templates
with polygons) or a single unmasked edit, and always leaves the record in a
terminal state ('succeeded' or 'failed').
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.orm import Session

from domain.errors import InvalidGenerationInput
from domain.models import Generation, GenerationStatus, SubjectSlot, Template, TemplateConfig, TextValue
from repositories import GenerationsRepository
from services.image_edit_client import OUTPUT_FORMATS, ImageEditor, OpenAIImageEditor
from services.image_ops import enhance_subject_image
from services.prompts import build_generation_prompt, sanitize_user_notes
from services.special_pipeline import MultiPassEditPipeline, PipelineRequest, PipelineResult, SinglePassRequest
from settings import settings
from storage.file_storage import FileStorage

logger = logging.getLogger(__name__)

BACKGROUND_SLOT = "background"
MAIN_SLOT = "main"


@dataclass
class SubjectUpload:
    slot_id: str
    data: bytes
    filename: str = "subject.png"


def validate_generation_input(
    config: TemplateConfig,
    subjects: Sequence[SubjectUpload],
    texts: Sequence[TextValue],
    customizations: Optional[Mapping[str, Any]] = None,
) -> None:
    """Raise InvalidGenerationInput when uploads, texts or customizations don't fit the template."""
    known_slots = {s.id for s in config.subject_slots}
    required_slots = {s.id for s in config.subject_slots if s.required}
    known_keys = {f.key for f in config.text_fields}
    required_keys = {f.key for f in config.text_fields if f.required}

    seen = set()
    for upload in subjects:
        if upload.slot_id in seen:
            raise InvalidGenerationInput(f"Duplicate subject slot ID: {upload.slot_id}")
        seen.add(upload.slot_id)
        if upload.slot_id not in known_slots:
            raise InvalidGenerationInput(f"Unknown subject slot ID: {upload.slot_id}")

    missing_slots = sorted(required_slots - seen)
    if missing_slots:
        raise InvalidGenerationInput(f"Missing required subject uploads: {', '.join(missing_slots)}")

    by_key = {t.key: (t.value or "").strip() for t in texts}
    unknown = [t.key for t in texts if t.key not in known_keys]
    if unknown:
        raise InvalidGenerationInput(f"Unknown text key: {unknown[0]}")
    missing_text = sorted(k for k in required_keys if not by_key.get(k))
    if missing_text:
        raise InvalidGenerationInput(f"Missing required text: {', '.join(missing_text)}")

    allowed = {c.id for c in config.customizations}
    for customization_id in customizations or {}:
        if customization_id not in allowed:
            raise InvalidGenerationInput(f"Unknown customization: {customization_id}")


def validate_output_format(output_format: Optional[str]) -> str:
    fmt = (output_format or "png").strip().lower()
    if fmt not in OUTPUT_FORMATS:
        raise InvalidGenerationInput(
            f"Unsupported output format: {output_format} (expected one of {', '.join(OUTPUT_FORMATS)})"
        )
    return fmt


class GenerationsService:
    """Runs one generation per call; holds no per-request state."""

    def __init__(
        self,
        storage: Optional[FileStorage] = None,
        editor_factory: Optional[Callable[[str], ImageEditor]] = None,
        generations_repo: Optional[GenerationsRepository] = None,
        pipeline_factory: Optional[Callable[[], MultiPassEditPipeline]] = None,
    ) -> None:
        self.storage = storage or FileStorage()
        self.editor_factory = editor_factory or (lambda fmt: OpenAIImageEditor(output_format=fmt))
        self.generations_repo = generations_repo or GenerationsRepository()
        self._pipeline_factory = pipeline_factory

    def new_pipeline(self, output_format: str = "png") -> MultiPassEditPipeline:
        if self._pipeline_factory is not None:
            return self._pipeline_factory()
        return MultiPassEditPipeline(editor=self.editor_factory(output_format), artifacts=self.storage)

    def create_generation(
        self,
        session: Session,
        template: Template,
        subjects: Sequence[SubjectUpload],
        texts: Sequence[TextValue],
        user_notes: Optional[str] = None,
        customizations: Optional[Mapping[str, Any]] = None,
        output_format: Optional[str] = "png",
    ) -> Generation:
        """
        Validate, record and run a generation.

        Raises InvalidGenerationInput before anything is recorded; pipeline
        errors are re-raised after the record is marked failed.
        """
        if not template.image_path:
            raise InvalidGenerationInput("Template has no image yet")
        validate_generation_input(template.config, subjects, texts, customizations)
        fmt = validate_output_format(output_format)
        notes = sanitize_user_notes(user_notes, settings.USER_NOTES_MAX_CHARS)
        customizations = dict(customizations or {})

        generation = self.generations_repo.create_generation(
            session,
            Generation(
                id=Generation.generate_id(),
                template_id=template.id,
                status=GenerationStatus.RUNNING,
                prompt_payload={
                    "template_id": template.id,
                    "subject_slot_ids": [s.slot_id for s in subjects],
                    "texts": [{"key": t.key, "value": t.value} for t in texts],
                    "customizations": customizations,
                    "user_notes": notes,
                    "format": fmt,
                },
            ),
        )
        logger.info(
            "generation:start id=%s template=%s mode=%s format=%s",
            generation.id, template.id, "masked" if template.config.uses_masks else "single", fmt,
        )

        try:
            template_bytes = self.storage.read_bytes(template.image_path)
            by_slot = self._save_subjects(generation.id, subjects)
            pipeline = self.new_pipeline(fmt)
            if template.config.uses_masks:
                result = self._run_masked(pipeline, generation.id, template, template_bytes, by_slot, texts, notes)
            else:
                result = self._run_single(
                    pipeline, generation.id, template, template_bytes, subjects, by_slot, texts, customizations, notes,
                )
            output_path = self.storage.save_generation_image(generation.id, result.image_bytes, fmt)
        except BaseException as err:
            # Cancellation included: the record must never stay 'running'.
            logger.error("generation:failed id=%s error=%s", generation.id, err)
            self.generations_repo.mark_failed(session, generation.id, str(err) or type(err).__name__)
            raise

        logger.info("generation:succeeded id=%s passes=%s", generation.id, ",".join(result.executed_passes))
        return self.generations_repo.mark_succeeded(session, generation.id, output_path, result.executed_passes)

    @staticmethod
    def _run_masked(
        pipeline: MultiPassEditPipeline,
        generation_id: str,
        template: Template,
        template_bytes: bytes,
        by_slot: Dict[str, bytes],
        texts: Sequence[TextValue],
        notes: Optional[str],
    ) -> PipelineResult:
        request = PipelineRequest(
            generation_id=generation_id,
            template_image=template_bytes,
            polygons=list(template.config.polygons),
            background_image=by_slot.get(BACKGROUND_SLOT),
            main_image=by_slot.get(MAIN_SLOT),
            texts=list(texts),
            text_fields=list(template.config.text_fields),
            user_notes=notes,
            template_name=template.name,
            text_block=template.config.text_block,
        )
        return pipeline.run(request)

    @staticmethod
    def _run_single(
        pipeline: MultiPassEditPipeline,
        generation_id: str,
        template: Template,
        template_bytes: bytes,
        subjects: Sequence[SubjectUpload],
        by_slot: Dict[str, bytes],
        texts: Sequence[TextValue],
        customizations: Mapping[str, Any],
        notes: Optional[str],
    ) -> PipelineResult:
        config = template.config
        slot_ids = [s.slot_id for s in subjects]

        def _prompt(with_notes: Optional[str]) -> str:
            return build_generation_prompt(
                template.name,
                config.reconstruction_prompt,
                config.subject_slots,
                slot_ids,
                config.text_fields,
                texts,
                customizations,
                with_notes,
            )

        request = SinglePassRequest(
            generation_id=generation_id,
            template_image=template_bytes,
            subject_images=[by_slot[slot_id] for slot_id in slot_ids],
            prompt=_prompt(notes),
            fallback_prompt=_prompt(None),
        )
        return pipeline.run_single_pass(request)

    def _save_subjects(self, generation_id: str, subjects: Sequence[SubjectUpload]) -> Dict[str, bytes]:
        by_slot: Dict[str, bytes] = {}
        for upload in subjects:
            enhanced = enhance_subject_image(upload.data, settings.SUBJECT_MIN_DIMENSION)
            # stored as PNG when re-encoded; keep the upload's extension otherwise
            filename = "subject.png" if enhanced is not upload.data else upload.filename
            self.storage.save_subject_image(generation_id, upload.slot_id, enhanced, filename)
            by_slot[upload.slot_id] = enhanced
        return by_slot


def default_subject_slots() -> List[SubjectSlot]:
    """Special templates always accept exactly these two image inputs."""
    return [
        SubjectSlot(id=BACKGROUND_SLOT, label="Background image"),
        SubjectSlot(id=MAIN_SLOT, label="Main subject"),
    ]
