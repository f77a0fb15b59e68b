"""
Multi-pass masked edit pipeline for special (polygon-configured) templates.

Pass order is fixed: background -> main -> text. Each pass that runs edits
the output of the previous one, so passes are strictly sequential. A pass
runs only when its input was supplied and (for masked passes) a polygon with
its label exists; skipped passes never block later ones. If nothing runs the
pipeline raises NoApplicablePass rather than returning the untouched
template, which surfaces mislabeled polygons immediately.

Templates without polygons go through `run_single_pass` instead: one
unmasked edit of the template with every subject image as a reference.

Masks and prompts are written to the artifact sink before each edit call so
a failed generation can be inspected afterwards. Sink failures are logged and
otherwise ignored.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
import logging
from typing import Callable, List, Optional, Protocol, Sequence, Tuple

from domain.errors import EditError, EditFailed, InvalidGeometry, ModerationBlocked, NoApplicablePass
from domain.models import LabelKind, PassName, Polygon, TextBlock, TextField, TextValue
from services.glyph_mask import build_text_glyph_mask_png
from services.image_edit_client import ImageEditor
from services.image_ops import fill_resize, image_dimensions, stored_image_info
from services.mask_builder import LabelPredicate, build_edit_mask_png, is_text_label, label_equals
from services.prompts import (
    build_background_pass_prompt,
    build_change_text_prompt,
    build_main_pass_prompt,
    extract_two_line_text,
)
from services.text_layout import build_auto_text_polygon
from settings import settings

logger = logging.getLogger(__name__)

PASS_ORDER: Tuple[PassName, ...] = (PassName.BACKGROUND, PassName.MAIN, PassName.TEXT)
SINGLE_PASS = "single"


class ArtifactSink(Protocol):
    def save_intermediate_image(self, generation_id: str, step_name: str, data: bytes): ...

    def save_intermediate_text(self, generation_id: str, step_name: str, text: str): ...


class MaskPolicy(str, Enum):
    NONE = "none"
    POLYGON = "polygon"
    GLYPH = "glyph"


@dataclass
class PipelineRequest:
    """Everything one generation needs; built by the caller per request."""
    generation_id: str
    template_image: bytes
    polygons: List[Polygon] = field(default_factory=list)
    background_image: Optional[bytes] = None
    main_image: Optional[bytes] = None
    texts: List[TextValue] = field(default_factory=list)
    text_fields: List[TextField] = field(default_factory=list)
    user_notes: Optional[str] = None
    template_name: Optional[str] = None
    text_block: Optional[TextBlock] = None


@dataclass
class SinglePassRequest:
    """An unmasked edit: template first, then subjects in upload order."""
    generation_id: str
    template_image: bytes
    prompt: str
    subject_images: List[bytes] = field(default_factory=list)
    fallback_prompt: Optional[str] = None


@dataclass
class PipelineResult:
    image_bytes: bytes
    executed_passes: List[str]


@dataclass
class PipelineState:
    generation_id: str
    current_base_image: bytes
    completed_pass_names: List[str] = field(default_factory=list)
    final_bytes: Optional[bytes] = None


@dataclass
class EditPass:
    name: PassName
    applicable: bool
    mask_policy: MaskPolicy
    prompt_builder: Callable[[], str]
    fallback_prompt_builder: Optional[Callable[[], str]] = None
    reference_image: Optional[bytes] = None
    include_label: Optional[LabelPredicate] = None
    mask_polygons: List[Polygon] = field(default_factory=list)
    skip_reason: str = ""

    @property
    def number(self) -> int:
        return PASS_ORDER.index(self.name) + 1


def usable_polygons(polygons: Sequence[Polygon]) -> List[Polygon]:
    """Polygons with a known label and at least 3 finite points."""
    out: List[Polygon] = []
    for polygon in polygons:
        if polygon.parsed_label is None:
            logger.warning("Ignoring polygon %s with unknown label %r", polygon.id, polygon.label)
            continue
        if not polygon.is_valid:
            logger.warning("Ignoring polygon %s (%s): fewer than 3 points", polygon.id, polygon.label)
            continue
        out.append(polygon)
    return out


def has_text_values(texts: Sequence[TextValue]) -> bool:
    return any((t.value or "").strip() for t in texts)


class MultiPassEditPipeline:
    """
    Runs the background/main/text edit passes for one generation at a time.

    The editor and artifact sink are injected; the pipeline keeps no state
    between `run` calls.
    """

    def __init__(
        self,
        editor: ImageEditor,
        artifacts: Optional[ArtifactSink] = None,
        working_size: Optional[Tuple[int, int]] = None,
        glyph_text_mask: Optional[bool] = None,
    ) -> None:
        self.editor = editor
        self.artifacts = artifacts
        self.working_size = working_size or settings.working_size
        self.glyph_text_mask = settings.GLYPH_TEXT_MASK if glyph_text_mask is None else glyph_text_mask

    # --- planning ---

    def plan(self, request: PipelineRequest, polygons: Sequence[Polygon]) -> List[EditPass]:
        labels = {p.label for p in polygons}
        notes = request.user_notes
        name = request.template_name

        background = EditPass(
            name=PassName.BACKGROUND,
            applicable=request.background_image is not None and LabelKind.BACKGROUND.value in labels,
            mask_policy=MaskPolicy.POLYGON,
            reference_image=request.background_image,
            include_label=label_equals(LabelKind.BACKGROUND.value),
            mask_polygons=list(polygons),
            prompt_builder=lambda: build_background_pass_prompt(name, notes),
            fallback_prompt_builder=lambda: build_background_pass_prompt(name, None),
            skip_reason=self._skip_reason(request.background_image, LabelKind.BACKGROUND.value, labels),
        )
        main = EditPass(
            name=PassName.MAIN,
            applicable=request.main_image is not None and LabelKind.MAIN.value in labels,
            mask_policy=MaskPolicy.POLYGON,
            reference_image=request.main_image,
            include_label=label_equals(LabelKind.MAIN.value),
            mask_polygons=list(polygons),
            prompt_builder=lambda: build_main_pass_prompt(name, notes),
            fallback_prompt_builder=lambda: build_main_pass_prompt(name, None),
            skip_reason=self._skip_reason(request.main_image, LabelKind.MAIN.value, labels),
        )

        line1, line2 = extract_two_line_text(request.text_fields, request.texts)
        text_policy, text_polygons = self._text_mask_plan(request, polygons)
        text = EditPass(
            name=PassName.TEXT,
            applicable=has_text_values(request.texts),
            mask_policy=text_policy,
            include_label=is_text_label,
            mask_polygons=text_polygons,
            prompt_builder=lambda: build_change_text_prompt(line1, line2, name, notes),
            fallback_prompt_builder=lambda: build_change_text_prompt(line1, line2, name, None),
            skip_reason="no text values supplied",
        )
        return [background, main, text]

    @staticmethod
    def _skip_reason(input_image: Optional[bytes], label: str, labels: set) -> str:
        if input_image is None:
            return f"no {label} input supplied"
        if label not in labels:
            return f"no polygon labeled {label!r}"
        return ""

    def _text_mask_plan(self, request: PipelineRequest, polygons: Sequence[Polygon]) -> Tuple[MaskPolicy, List[Polygon]]:
        if not self.glyph_text_mask:
            return MaskPolicy.NONE, []
        text_polygons = [p for p in polygons if is_text_label(p.label)]
        if text_polygons:
            return MaskPolicy.GLYPH, text_polygons
        if request.text_block is not None:
            return MaskPolicy.GLYPH, [build_auto_text_polygon(request.text_block)]
        return MaskPolicy.NONE, []

    # --- execution ---

    def run(self, request: PipelineRequest) -> PipelineResult:
        polygons = usable_polygons(request.polygons)
        passes = self.plan(request, polygons)
        if not any(p.applicable for p in passes):
            raise NoApplicablePass(self._no_pass_message(request, polygons))

        state = PipelineState(
            generation_id=request.generation_id,
            current_base_image=self._prepare_base(request),
        )
        for edit_pass in passes:
            if not edit_pass.applicable:
                logger.info(
                    "pipeline:pass:skip generationId=%s pass=%s reason=%s",
                    request.generation_id, edit_pass.name.value, edit_pass.skip_reason,
                )
                continue
            state.current_base_image = self._run_pass(state, edit_pass)
            state.completed_pass_names.append(edit_pass.name.value)

        state.final_bytes = state.current_base_image
        return PipelineResult(image_bytes=state.final_bytes, executed_passes=list(state.completed_pass_names))

    def run_single_pass(self, request: SinglePassRequest) -> PipelineResult:
        generation_id = request.generation_id
        logger.info(
            "pipeline:pass:start generationId=%s pass=%s subjects=%d",
            generation_id, SINGLE_PASS, len(request.subject_images),
        )
        self._save_text(generation_id, f"prompt-{SINGLE_PASS}", request.prompt)
        if request.fallback_prompt is not None:
            self._save_text(generation_id, f"prompt-{SINGLE_PASS}-fallback", request.fallback_prompt)

        output = self._edit_or_raise(
            generation_id,
            SINGLE_PASS,
            request.template_image,
            list(request.subject_images),
            None,
            request.prompt,
            request.fallback_prompt,
        )
        self._save_image(generation_id, f"pass-1-{SINGLE_PASS}", output)
        logger.info("pipeline:pass:done generationId=%s pass=%s bytes=%d", generation_id, SINGLE_PASS, len(output))
        return PipelineResult(image_bytes=output, executed_passes=[SINGLE_PASS])

    def _no_pass_message(self, request: PipelineRequest, polygons: Sequence[Polygon]) -> str:
        uploaded = [
            slot for slot, data in (("background", request.background_image), ("main", request.main_image))
            if data is not None
        ]
        labels = sorted({p.label for p in polygons})
        return " ".join([
            "Special template masks were configured but no valid mask passes ran.",
            f"Uploaded slots: {', '.join(uploaded) or '(none)'}.",
            f"Polygon labels found: {', '.join(labels) or '(none)'}.",
            "Expected at least one of: background, main, text:<key> (or text for all text).",
        ])

    def _prepare_base(self, request: PipelineRequest) -> bytes:
        # The raw bytes are only reusable when their stored pixels are upright;
        # an EXIF-rotated template is re-encoded so base and masks agree.
        width, height, orientation = stored_image_info(request.template_image)
        if (width, height) == tuple(self.working_size) and orientation == 1:
            return request.template_image
        target_w, target_h = self.working_size
        logger.info(
            "pipeline:base:resize generationId=%s from=%dx%d orientation=%d to=%dx%d",
            request.generation_id, width, height, orientation, target_w, target_h,
        )
        resized = fill_resize(request.template_image, (target_w, target_h))
        self._save_image(request.generation_id, f"base-{target_w}x{target_h}", resized)
        return resized

    def _build_mask(self, edit_pass: EditPass, base_image: bytes) -> Optional[bytes]:
        if edit_pass.mask_policy == MaskPolicy.NONE:
            return None
        # Masks always match the current base, which may differ from the template size.
        width, height = image_dimensions(base_image)
        if edit_pass.mask_policy == MaskPolicy.GLYPH:
            return build_text_glyph_mask_png(
                base_image, width, height, edit_pass.mask_polygons, edit_pass.include_label,
            )
        return build_edit_mask_png(width, height, edit_pass.mask_polygons, edit_pass.include_label)

    def _run_pass(self, state: PipelineState, edit_pass: EditPass) -> bytes:
        generation_id = state.generation_id
        pass_name = edit_pass.name.value
        logger.info("pipeline:pass:start generationId=%s pass=%s", generation_id, pass_name)

        mask = self._build_mask(edit_pass, state.current_base_image)
        if mask is not None:
            self._save_image(generation_id, f"mask-{pass_name}", mask)

        prompt = edit_pass.prompt_builder()
        fallback = edit_pass.fallback_prompt_builder() if edit_pass.fallback_prompt_builder else None
        self._save_text(generation_id, f"prompt-{pass_name}", prompt)
        if fallback is not None:
            self._save_text(generation_id, f"prompt-{pass_name}-fallback", fallback)

        references = [edit_pass.reference_image] if edit_pass.reference_image is not None else []
        output = self._edit_or_raise(
            generation_id, pass_name, state.current_base_image, references, mask, prompt, fallback,
        )
        self._save_image(generation_id, f"pass-{edit_pass.number}-{pass_name}", output)
        logger.info("pipeline:pass:done generationId=%s pass=%s bytes=%d", generation_id, pass_name, len(output))
        return output

    def _edit_or_raise(
        self,
        generation_id: str,
        pass_name: str,
        base_image: bytes,
        references: List[bytes],
        mask: Optional[bytes],
        prompt: str,
        fallback: Optional[str],
    ) -> bytes:
        try:
            output = self.editor.edit(base_image, references, mask, prompt)
        except ModerationBlocked as err:
            if fallback is None:
                raise self._failure(pass_name, generation_id, err) from err
            logger.warning(
                "pipeline:pass:moderation_blocked generationId=%s pass=%s; retrying with fallback prompt",
                generation_id, pass_name,
            )
            try:
                output = self.editor.edit(base_image, references, mask, fallback)
            except EditError as retry_err:
                raise self._failure(pass_name, generation_id, retry_err) from retry_err
        except EditError as err:
            raise self._failure(pass_name, generation_id, err) from err

        self._check_output(generation_id, pass_name, output)
        return output

    @staticmethod
    def _failure(pass_name: str, generation_id: str, err: EditError) -> EditFailed:
        return EditFailed(
            pass_name=pass_name,
            generation_id=generation_id,
            code=err.code,
            message=err.message,
            request_id=err.request_id,
            cause=err,
        )

    @staticmethod
    def _check_output(generation_id: str, pass_name: str, output: bytes) -> None:
        if not output:
            raise EditFailed(pass_name, generation_id, code="empty_output", message="edit returned no bytes")
        try:
            image_dimensions(output)
        except InvalidGeometry as err:
            raise EditFailed(pass_name, generation_id, code="unusable_output", message=str(err), cause=err) from err

    # --- artifacts (best effort) ---

    def _save_image(self, generation_id: str, step_name: str, data: bytes) -> None:
        if self.artifacts is None:
            return
        try:
            self.artifacts.save_intermediate_image(generation_id, step_name, data)
        except Exception:
            logger.warning("Failed to persist artifact %s for generation %s", step_name, generation_id, exc_info=True)

    def _save_text(self, generation_id: str, step_name: str, text: str) -> None:
        if self.artifacts is None:
            return
        try:
            self.artifacts.save_intermediate_text(generation_id, step_name, text)
        except Exception:
            logger.warning("Failed to persist artifact %s for generation %s", step_name, generation_id, exc_info=True)
