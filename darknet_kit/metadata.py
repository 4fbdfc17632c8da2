from __future__ import annotations

from pathlib import Path
from typing import List, Union


def load_class_names(labels_path: Union[str, Path]) -> List[str]:
    """
    Load class names from a Darknet `.names` file: one label per line, in class id order.

        person
        bicycle
        car
        ...

    Blank lines are skipped; surrounding whitespace is stripped.
    """

    path = Path(labels_path)
    if not path.exists():
        raise FileNotFoundError(f"Labels file not found: {path}")

    names: List[str] = []
    with open(path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line:
                continue
            names.append(line)

    return names
