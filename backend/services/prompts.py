"""
Prompt builders for the masked edit passes and the single-pass edit.

Each pass has a primary prompt and a fallback. The fallback is the same
instruction with the optional free-text user notes removed; it is what the
pipeline retries with when the primary prompt is moderation-blocked.
"""
from __future__ import annotations

import json
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

from domain.models import SubjectSlot, TextField, TextValue


def sanitize_user_notes(value: Optional[str], max_chars: int = 500) -> Optional[str]:
    """Trim notes, drop empty ones and cap their length."""
    text = str(value or "").strip()
    if not text:
        return None
    return text[:max_chars]


def _user_notes_section(user_notes: Optional[str]) -> List[str]:
    if not user_notes:
        return []
    return [
        "",
        "USER REQUESTED MINOR CHANGES (OPTIONAL):",
        "- Apply ONLY minor tweaks requested below, without changing layout or the template style.",
        "- If a request conflicts with the rules above, ignore the conflicting part.",
        f"- Notes: {json.dumps(user_notes)}",
    ]


def _template_line(template_name: Optional[str]) -> str:
    return f"Template: {template_name}." if template_name else "Template: (unnamed)."


def build_background_pass_prompt(template_name: Optional[str] = None, user_notes: Optional[str] = None) -> str:
    lines = [
        "Replace ONLY the masked (transparent) area of Image #1 with the scene from Image #2.",
        _template_line(template_name),
        "",
        "RULES:",
        "- Image #1 is the base canvas. Image #2 is the new background scene.",
        "- Fill the editable area with Image #2, matching perspective, lighting and color grading of Image #1.",
        "- Do NOT change any pixel outside the editable area.",
        "- Do NOT add people, text, logos or new graphic elements.",
        "- Edges must blend seamlessly with the protected area.",
    ]
    return "\n".join(lines + _user_notes_section(user_notes))


def build_main_pass_prompt(template_name: Optional[str] = None, user_notes: Optional[str] = None) -> str:
    lines = [
        "Replace the person in the masked (transparent) area of Image #1 with the person from Image #2.",
        _template_line(template_name),
        "",
        "RULES:",
        "- Identity must come from Image #2 only. Do NOT keep or blend the original template person.",
        "- Match the template framing, scale and pose as closely as possible.",
        "- Preserve lighting direction, intensity and color grading so the subject looks native to Image #1.",
        "- Exactly one subject in the editable area; never crop more than 1 inch above the head.",
        "- Do NOT change any pixel outside the editable area.",
    ]
    return "\n".join(lines + _user_notes_section(user_notes))


def build_change_text_prompt(
    line1: str,
    line2: str = "",
    template_name: Optional[str] = None,
    user_notes: Optional[str] = None,
) -> str:
    lines = ["Change the text to:", json.dumps(line1)]
    if line2:
        lines.append(json.dumps(line2))
    lines += [
        "",
        _template_line(template_name),
        "RULES:",
        "- Change ONLY the text glyphs. Keep every other pixel identical.",
        "- Keep the exact font, weight, size, fill colors, stroke, shadow, alignment and line spacing.",
        "- Render the text EXACTLY as provided (spelling, casing, punctuation).",
        "- Render a literal '*' character wherever the text contains '*'; never a star icon.",
        "- Do NOT add panels, boxes or backgrounds behind the text.",
    ]
    return "\n".join(lines + _user_notes_section(user_notes))


def extract_two_line_text(text_fields: Sequence[TextField], texts: Sequence[TextValue]) -> Tuple[str, str]:
    """
    Pick the first two line values in template field order.

    When the template declares no fields, the submitted order is used.
    """
    keys = [f.key.strip() for f in text_fields if f.key and f.key.strip()]
    by_key: Dict[str, str] = {t.key.strip(): t.value for t in texts}

    def _line(index: int) -> str:
        if index < len(keys) and keys[index] in by_key:
            return by_key[keys[index]].rstrip()
        if index < len(texts):
            return texts[index].value.rstrip()
        return ""

    return _line(0), _line(1)


def rewrite_template_words(prompt: str, text_fields: Sequence[TextField], texts: Sequence[TextValue]) -> str:
    """
    Swap a field's default wording for the submitted value.

    Reconstruction prompts usually quote the template's own words, which would
    otherwise contradict the new text.
    """
    by_key = {t.key: (t.value or "").strip() for t in texts}
    for f in text_fields:
        default = (f.default_value or "").strip()
        value = by_key.get(f.key)
        if default and value and default != value:
            prompt = prompt.replace(default, value)
    return prompt


def build_generation_prompt(
    template_name: Optional[str],
    reconstruction_prompt: Optional[str],
    subject_slots: Sequence[SubjectSlot],
    subject_slot_ids: Sequence[str],
    text_fields: Sequence[TextField],
    texts: Sequence[TextValue],
    customizations: Optional[Mapping[str, Any]] = None,
    user_notes: Optional[str] = None,
) -> str:
    """
    Prompt for an unmasked single-pass edit.

    Image #1 is the template; subject images follow in `subject_slot_ids`
    order, which the prompt spells out since the images API can't label them.
    """
    label_by_slot = {s.id: (s.label or s.id) for s in subject_slots}
    base = (reconstruction_prompt or "").strip() or f"Recreate the template image exactly. {_template_line(template_name)}"
    base = rewrite_template_words(base, text_fields, texts)

    lines = [base, "", "INPUT IMAGES (ORDER IS IMPORTANT):", "- Image #1 is the template image (base canvas)."]
    if subject_slot_ids:
        lines += [
            f"- Image #{i + 2} is the replacement subject for slotId={slot_id} ({label_by_slot.get(slot_id, slot_id)})."
            for i, slot_id in enumerate(subject_slot_ids)
        ]
        lines += [
            "",
            "SUBJECT RULES:",
            f"- Only modify subject(s) for these slot IDs: {', '.join(subject_slot_ids)}.",
            "- Identity must come from the replacement image(s) only. Do NOT keep or blend the template person.",
            "- Exactly one subject per slot; never crop more than 1 inch above the head.",
            "- Match the template framing, scale and pose; preserve lighting and color grading.",
        ]
    else:
        lines.append("- No subject replacement images were provided.")

    by_key = {t.key: t.value for t in texts}
    lines += [
        "",
        "TEXT RULES:",
        "- Replace the template's text in every text region with the provided text, in order.",
        "- Render the text EXACTLY as provided (spelling, casing, punctuation).",
        "- Render a literal '*' character wherever the text contains '*'; never a star icon.",
        "- Match the template's font, weight, size, colors, stroke, shadow and alignment.",
    ]
    for i, f in enumerate(text_fields):
        color = f" (fill {f.fill_color})" if f.fill_color else ""
        lines.append(f"- Line {i + 1} [{f.key}]{color}: {json.dumps(by_key.get(f.key, ''))}")

    if customizations:
        lines += [
            "",
            "CUSTOMIZATIONS (OPTIONAL EDITS):",
            "- Apply ONLY these customization edits in addition to subject and text edits.",
            "- If a customization conflicts with the template, follow the customization.",
        ]
        lines += [f"- {key}: {json.dumps(value)}" for key, value in customizations.items()]

    lines += [
        "",
        "All other pixels must remain identical to the template unless needed to composite cleanly.",
    ]
    return "\n".join(lines + _user_notes_section(user_notes))
