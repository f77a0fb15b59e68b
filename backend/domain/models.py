"""
Core domain models for the template studio.
These are framework-agnostic and can be used across all services.
"""
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
import math
from typing import Any, Dict, List, Optional
import uuid


class GenerationStatus(str, Enum):
    """Lifecycle of a generation record."""
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class LabelKind(str, Enum):
    """Semantic region a polygon marks on the template canvas."""
    BACKGROUND = "background"
    MAIN = "main"
    TEXT = "text"


class PassName(str, Enum):
    """Edit passes, in the order the pipeline runs them."""
    BACKGROUND = "background"
    MAIN = "main"
    TEXT = "text"


# Authoring synonyms folded onto the canonical labels.
LABEL_SYNONYMS: Dict[str, str] = {
    "bg": "background",
    "background image": "background",
    "background photo": "background",
    "background_scene": "background",
    "fg": "main",
    "foreground": "main",
    "main subject": "main",
    "subject": "main",
    "person": "main",
}

TEXT_KEY_PREFIX = "text:"


def normalize_label(value: Any) -> str:
    """
    Fold a free-form polygon label onto its canonical spelling.

    Canonical labels (`background`, `main`, `text`, `text:<key>`) come back
    unchanged; unknown labels are only trimmed and lowercased.
    """
    s = str(value if value is not None else "").strip().lower()
    if not s:
        return ""
    if s in LABEL_SYNONYMS:
        return LABEL_SYNONYMS[s]
    if s.startswith(TEXT_KEY_PREFIX):
        key = s[len(TEXT_KEY_PREFIX):].strip()
        return f"{TEXT_KEY_PREFIX}{key}" if key else "text"
    return s


@dataclass(frozen=True)
class PolygonLabel:
    """A parsed polygon label: one of background | main | text | text:<key>."""
    kind: LabelKind
    key: Optional[str] = None

    @classmethod
    def parse(cls, value: Any) -> Optional["PolygonLabel"]:
        s = normalize_label(value)
        if s == LabelKind.BACKGROUND.value:
            return cls(LabelKind.BACKGROUND)
        if s == LabelKind.MAIN.value:
            return cls(LabelKind.MAIN)
        if s == LabelKind.TEXT.value:
            return cls(LabelKind.TEXT)
        if s.startswith(TEXT_KEY_PREFIX):
            return cls(LabelKind.TEXT, s[len(TEXT_KEY_PREFIX):])
        return None

    @property
    def is_text(self) -> bool:
        return self.kind == LabelKind.TEXT

    def __str__(self) -> str:
        if self.kind == LabelKind.TEXT and self.key:
            return f"{TEXT_KEY_PREFIX}{self.key}"
        return self.kind.value


def _clamp_pct(value: float) -> float:
    return max(0.0, min(100.0, value))


@dataclass
class Point:
    """A polygon vertex as percentages of the canvas width/height."""
    x_pct: float
    y_pct: float

    @property
    def is_finite(self) -> bool:
        return math.isfinite(self.x_pct) and math.isfinite(self.y_pct)

    def clamped(self) -> "Point":
        return Point(_clamp_pct(self.x_pct), _clamp_pct(self.y_pct))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Point":
        return cls(x_pct=float(data.get("xPct", data.get("x_pct"))), y_pct=float(data.get("yPct", data.get("y_pct"))))

    def to_dict(self) -> Dict[str, float]:
        return {"xPct": self.x_pct, "yPct": self.y_pct}


@dataclass
class Polygon:
    """
    An authored region on the template.

    `label` is stored in normalized form; `parsed_label` is None for labels
    outside the closed vocabulary.
    """
    id: str
    label: str
    points: List[Point] = field(default_factory=list)
    color: str = "#ff0000"

    def __post_init__(self) -> None:
        self.label = normalize_label(self.label)

    @property
    def parsed_label(self) -> Optional[PolygonLabel]:
        return PolygonLabel.parse(self.label)

    @property
    def is_valid(self) -> bool:
        return len([p for p in self.points if p.is_finite]) >= 3

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Polygon":
        return cls(
            id=str(data.get("id") or uuid.uuid4()),
            label=data.get("label", ""),
            color=str(data.get("color") or "#ff0000"),
            points=[Point.from_dict(p) for p in data.get("points") or []],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "label": self.label,
            "color": self.color,
            "points": [p.to_dict() for p in self.points],
        }


@dataclass
class SubjectSlot:
    """An image input the template accepts (`background`, `main`, ...)."""
    id: str
    label: Optional[str] = None
    required: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.label, "required": self.required}


@dataclass
class TextField:
    """An editable line of text; `fill_color` is the line's glyph colour if known."""
    key: str
    label: Optional[str] = None
    required: bool = False
    default_value: Optional[str] = None
    fill_color: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "key": self.key,
            "label": self.label,
            "required": self.required,
            "default_value": self.default_value,
            "fill_color": self.fill_color,
        }


@dataclass
class Customization:
    """An optional edit offered on the generate form (a toggle or a select)."""
    id: str
    label: Optional[str] = None
    kind: str = "toggle"
    options: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "label": self.label, "kind": self.kind, "options": list(self.options)}


@dataclass
class TextBlock:
    """
    Estimated extent of the stacked text block, in canvas percentages.

    Usually produced by an upstream model estimate and corrected against the
    template pixels by the text extent prober.
    """
    centered: bool = True
    width_pct: Optional[float] = None
    top_pct: Optional[float] = None
    bottom_pct: Optional[float] = None
    height_pct: Optional[float] = None

    @property
    def has_extents(self) -> bool:
        w, t, b = self.width_pct, self.top_pct, self.bottom_pct
        if w is None or t is None or b is None:
            return False
        if not all(math.isfinite(v) for v in (w, t, b)):
            return False
        return 0 < w <= 100 and t >= 0 and b <= 100 and t < b

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TextBlock":
        def _num(key: str) -> Optional[float]:
            val = data.get(key)
            return float(val) if val is not None else None

        return cls(
            centered=bool(data.get("centered", True)),
            width_pct=_num("width_pct"),
            top_pct=_num("top_pct"),
            bottom_pct=_num("bottom_pct"),
            height_pct=_num("height_pct"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "centered": self.centered,
            "width_pct": self.width_pct,
            "top_pct": self.top_pct,
            "bottom_pct": self.bottom_pct,
            "height_pct": self.height_pct,
        }


@dataclass
class TemplateConfig:
    """
    Editable configuration of a template, validated at the API boundary.

    A template with polygons is edited pass by pass through masks; one
    without is edited in a single pass driven by `reconstruction_prompt`.
    """
    subject_slots: List[SubjectSlot] = field(default_factory=list)
    text_fields: List[TextField] = field(default_factory=list)
    polygons: List[Polygon] = field(default_factory=list)
    text_block: Optional[TextBlock] = None
    customizations: List[Customization] = field(default_factory=list)
    reconstruction_prompt: Optional[str] = None

    @property
    def uses_masks(self) -> bool:
        return bool(self.polygons)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "TemplateConfig":
        data = data or {}
        block = data.get("text_block")
        return cls(
            customizations=[
                Customization(
                    id=c["id"],
                    label=c.get("label"),
                    kind=c.get("kind") or "toggle",
                    options=list(c.get("options") or []),
                )
                for c in data.get("customizations") or []
            ],
            reconstruction_prompt=data.get("reconstruction_prompt"),
            subject_slots=[
                SubjectSlot(id=s["id"], label=s.get("label"), required=bool(s.get("required")))
                for s in data.get("subject_slots") or []
            ],
            text_fields=[
                TextField(
                    key=t["key"],
                    label=t.get("label"),
                    required=bool(t.get("required")),
                    default_value=t.get("default_value"),
                    fill_color=t.get("fill_color"),
                )
                for t in data.get("text_fields") or []
            ],
            polygons=[Polygon.from_dict(p) for p in data.get("polygons") or []],
            text_block=TextBlock.from_dict(block) if block else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subject_slots": [s.to_dict() for s in self.subject_slots],
            "text_fields": [t.to_dict() for t in self.text_fields],
            "polygons": [p.to_dict() for p in self.polygons],
            "text_block": self.text_block.to_dict() if self.text_block else None,
            "customizations": [c.to_dict() for c in self.customizations],
            "reconstruction_prompt": self.reconstruction_prompt,
        }


@dataclass
class Template:
    """A template image plus its configuration."""
    id: str
    name: str
    image_path: Optional[str] = None  # Relative to storage root
    config: TemplateConfig = field(default_factory=TemplateConfig)
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @staticmethod
    def generate_id() -> str:
        return str(uuid.uuid4())


@dataclass
class TextValue:
    """A user-supplied value for one text field."""
    key: str
    value: str


@dataclass
class Generation:
    """
    One generation request against a template.

    Starts as 'running' and always ends as 'succeeded' or 'failed'.
    """
    id: str
    template_id: str
    status: GenerationStatus = GenerationStatus.RUNNING
    prompt_payload: Dict[str, Any] = field(default_factory=dict)
    output_path: Optional[str] = None
    executed_passes: List[str] = field(default_factory=list)
    error: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    @staticmethod
    def generate_id() -> str:
        return str(uuid.uuid4())
