"""
Darknet-style YOLO inference on a NumPy backend.

Builds a network from layer specs (or a Darknet cfg + weights), runs the
forward pass, decodes detection heads and applies per-class NMS. No external
dependencies beyond NumPy; OpenCV is only needed for image preparation and
drawing.
"""

from .errors import ConfigError, DarknetError, ShapeError, TensorIndexError
from .tensor import TensorBuffer
from .types import Detection
from .layers import (
    ConvolutionalSpec,
    DetectionHeadSpec,
    LayerKind,
    LayerSpec,
    MaxPoolSpec,
    RouteSpec,
    ShortcutSpec,
    UpsampleSpec,
    forward,
)
from .network import Network, build_network
from .executor import ForwardExecutor, HeadOutput
from .decode import Candidates, DecodeConfig, DetectionDecoder
from .nms import NMSConfig, class_nms, nms
from .cfg import load_network, network_from_cfg
from .service import InferenceRequest, InferenceService, load_service
from .metadata import load_class_names
from .letterbox import LetterboxInfo, correct_detections, letterbox_size, prepare_image
from .report import format_json, format_text, write_report
from .visualize import draw_detections

__all__ = [
    "ConfigError",
    "DarknetError",
    "ShapeError",
    "TensorIndexError",
    "TensorBuffer",
    "Detection",
    "ConvolutionalSpec",
    "DetectionHeadSpec",
    "LayerKind",
    "LayerSpec",
    "MaxPoolSpec",
    "RouteSpec",
    "ShortcutSpec",
    "UpsampleSpec",
    "forward",
    "Network",
    "build_network",
    "ForwardExecutor",
    "HeadOutput",
    "Candidates",
    "DecodeConfig",
    "DetectionDecoder",
    "NMSConfig",
    "class_nms",
    "nms",
    "load_network",
    "network_from_cfg",
    "InferenceRequest",
    "InferenceService",
    "load_service",
    "load_class_names",
    "LetterboxInfo",
    "correct_detections",
    "letterbox_size",
    "prepare_image",
    "format_json",
    "format_text",
    "write_report",
    "draw_detections",
]
