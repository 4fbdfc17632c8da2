from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional, Tuple


@dataclass(frozen=True)
class Detection:
    """
    One detected object.

    Box is center-x, center-y, width, height, normalized to [0, 1] of the
    frame it was predicted in.
    """

    x: float
    y: float
    w: float
    h: float
    class_id: int
    probability: float
    objectness: float
    label: Optional[str] = None

    @property
    def name(self) -> str:
        return self.label if self.label is not None else str(self.class_id)

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x - self.w / 2, self.y - self.h / 2, self.x + self.w / 2, self.y + self.h / 2

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
