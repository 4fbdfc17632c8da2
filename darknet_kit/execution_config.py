from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

OUTPUT_FORMATS = ("text", "json")


@dataclass(frozen=True)
class ExecutionConfig:
    input_path: Path
    cfg_path: Path
    model_path: Path
    labels_path: Optional[Path] = None
    output_path: Optional[Path] = None
    objectness_threshold: float = 0.5
    class_threshold: float = 0.5
    iou_threshold: float = 0.45
    # Accepted for compatibility with Darknet configs; only YOLO9000 uses it.
    hierarchical_threshold: float = 0.5
    letterbox: bool = True
    output_format: str = "text"

    def __post_init__(self) -> None:
        for name in ("objectness_threshold", "class_threshold", "iou_threshold", "hierarchical_threshold"):
            value = getattr(self, name)
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"{name} must be in [0, 1]")
        if self.output_format not in OUTPUT_FORMATS:
            raise ValueError(f"output_format must be one of {OUTPUT_FORMATS}")


def _require_path(payload: Dict[str, Any], key: str, base: Path) -> Path:
    path = _optional_path(payload, key, base)
    if path is None:
        raise ValueError(f"Missing required key: {key}")
    return path


def _optional_path(payload: Dict[str, Any], key: str, base: Path) -> Optional[Path]:
    value = payload.get(key)
    if value is None:
        return None
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{key} must be a non-empty string")
    p = Path(value.strip())
    return p if p.is_absolute() else (base / p).resolve()


def _number(payload: Dict[str, Any], key: str, default: float) -> float:
    value = payload.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def load_execution_config(path: Path) -> ExecutionConfig:
    """
    Load the JSON execution config. Relative paths resolve against the config's directory.
    """

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Execution config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid execution config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Execution config must be a JSON object")

    allowed = {
        "input_path",
        "cfg_path",
        "model_path",
        "labels_path",
        "output_path",
        "objectness_threshold",
        "class_threshold",
        "iou_threshold",
        "hierarchical_threshold",
        "letterbox",
        "output_format",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown execution config keys: {unknown}")

    base = path.resolve().parent
    letterbox = payload.get("letterbox", True)
    if not isinstance(letterbox, bool):
        raise ValueError("letterbox must be a boolean")
    output_format = payload.get("output_format", "text")
    if not isinstance(output_format, str):
        raise ValueError("output_format must be a string")

    cfg = ExecutionConfig(
        input_path=_require_path(payload, "input_path", base),
        cfg_path=_require_path(payload, "cfg_path", base),
        model_path=_require_path(payload, "model_path", base),
        labels_path=_optional_path(payload, "labels_path", base),
        output_path=_optional_path(payload, "output_path", base),
        objectness_threshold=_number(payload, "objectness_threshold", 0.5),
        class_threshold=_number(payload, "class_threshold", 0.5),
        iou_threshold=_number(payload, "iou_threshold", 0.45),
        hierarchical_threshold=_number(payload, "hierarchical_threshold", 0.5),
        letterbox=letterbox,
        output_format=output_format,
    )
    if "hierarchical_threshold" in payload:
        logger.warning("hierarchical_threshold is ignored: hierarchical (YOLO9000) models are not supported")
    return cfg
