import pytest

from domain.models import LabelKind, Polygon, PolygonLabel, TemplateConfig, normalize_label


@pytest.mark.parametrize(
    "raw,expected",
    [
        ("background", "background"),
        ("  Background ", "background"),
        ("BG", "background"),
        ("background image", "background"),
        ("foreground", "main"),
        ("Subject", "main"),
        ("main", "main"),
        ("TEXT", "text"),
        ("text: Title", "text:title"),
        ("text:", "text"),
        ("", ""),
        (None, ""),
        ("sky", "sky"),
    ],
)
def test_normalize_label(raw, expected):
    assert normalize_label(raw) == expected


@pytest.mark.parametrize("raw", ["BG", "Subject", "text: Line 1", "weird label", "text", "main"])
def test_normalize_label_is_idempotent(raw):
    once = normalize_label(raw)
    assert normalize_label(once) == once


def test_parse_known_labels():
    assert PolygonLabel.parse("bg") == PolygonLabel(LabelKind.BACKGROUND)
    assert PolygonLabel.parse("main") == PolygonLabel(LabelKind.MAIN)
    assert PolygonLabel.parse("text") == PolygonLabel(LabelKind.TEXT)

    keyed = PolygonLabel.parse("text:title")
    assert keyed.kind == LabelKind.TEXT
    assert keyed.key == "title"
    assert keyed.is_text
    assert str(keyed) == "text:title"


def test_parse_unknown_label_is_none():
    assert PolygonLabel.parse("sky") is None
    assert PolygonLabel.parse("") is None


def test_polygon_stores_normalized_label():
    polygon = Polygon(id="p1", label="Foreground")
    assert polygon.label == "main"
    assert polygon.parsed_label == PolygonLabel(LabelKind.MAIN)


def test_config_round_trip_keeps_wire_point_keys():
    config = TemplateConfig.from_dict({
        "polygons": [
            {"id": "p1", "label": "BG", "color": "#00ff00", "points": [
                {"xPct": 0, "yPct": 0}, {"xPct": 50, "yPct": 0}, {"xPct": 50, "yPct": 100},
            ]},
        ],
    })
    polygon = config.polygons[0]
    assert polygon.label == "background"
    assert polygon.is_valid
    assert config.to_dict()["polygons"][0]["points"][1] == {"xPct": 50.0, "yPct": 0.0}
