from __future__ import annotations

import json
from pathlib import Path
from typing import Iterable, Union

from .types import Detection


def format_text(detections: Iterable[Detection]) -> str:
    """
    One line per detection:

        dog	99.12%	x: 0.31	y: 0.62	w: 0.25	h: 0.56
    """

    lines = []
    for d in detections:
        lines.append(f"{d.name}\t{d.probability * 100.0:.2f}%\tx: {d.x}\ty: {d.y}\tw: {d.w}\th: {d.h}\n")
    return "".join(lines)


def format_json(detections: Iterable[Detection]) -> str:
    return json.dumps([d.to_dict() for d in detections], indent=2)


def write_report(path: Union[str, Path], detections: Iterable[Detection], output_format: str = "text") -> Path:
    if output_format == "text":
        payload = format_text(detections)
    elif output_format == "json":
        payload = format_json(detections)
    else:
        raise ValueError(f"Unsupported output format: {output_format!r}")
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(payload, encoding="utf-8")
    return path
