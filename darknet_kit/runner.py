from __future__ import annotations

import argparse
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import List, Optional, Sequence

from .execution_config import OUTPUT_FORMATS, ExecutionConfig, load_execution_config
from .letterbox import correct_detections, prepare_image
from .report import format_text, write_report
from .service import InferenceRequest, load_service
from .types import Detection
from .visualize import draw_detections


def read_image_rgb(path: Path):
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required to read images. Install with `pip install opencv-python`.") from e

    img = cv2.imread(str(path), cv2.IMREAD_COLOR)
    if img is None:
        raise FileNotFoundError(f"Could not read image at path: {path}")
    return cv2.cvtColor(img, cv2.COLOR_BGR2RGB)


def run_inference(cfg: ExecutionConfig, *, draw_path: Optional[Path] = None) -> List[Detection]:
    """
    Load the network named by `cfg`, run it on the input image and write the
    report to `cfg.output_path` (when set). Boxes are normalized to the source image.
    """

    print("loading network...")
    service = load_service(cfg.cfg_path, cfg.model_path, labels_path=cfg.labels_path)
    net = service.network

    image_rgb = read_image_rgb(cfg.input_path)
    blob, info = prepare_image(image_rgb, (net.input_width, net.input_height), letterbox=cfg.letterbox)

    print("running inference on image...")
    detections = service.infer(
        InferenceRequest(
            image=blob,
            confidence_threshold=cfg.class_threshold,
            iou_threshold=cfg.iou_threshold,
            objectness_threshold=cfg.objectness_threshold,
        )
    )
    detections = correct_detections(detections, info)

    if cfg.output_path is not None:
        print("writing results...")
        write_report(cfg.output_path, detections, cfg.output_format)

    if draw_path is not None:
        import cv2  # type: ignore

        vis = draw_detections(
            cv2.cvtColor(image_rgb, cv2.COLOR_RGB2BGR), detections, show_score=True, num_classes=net.num_classes
        )
        if not cv2.imwrite(str(draw_path), vis):
            raise RuntimeError(f"Failed to write output image: {draw_path}")

    return detections


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run Darknet YOLO inference on one image.")
    parser.add_argument("--config", default=None, help="Path to a JSON execution config.")
    parser.add_argument("--input", default=None, help="Input image (overrides input_path).")
    parser.add_argument("--cfg", default=None, help="Darknet network cfg (overrides cfg_path).")
    parser.add_argument("--weights", default=None, help="Darknet weights file (overrides model_path).")
    parser.add_argument("--labels", default=None, help="Class names file, one per line (overrides labels_path).")
    parser.add_argument("--out", default=None, help="Report output path (overrides output_path).")
    parser.add_argument("--format", choices=OUTPUT_FORMATS, default=None, help="Report format.")
    parser.add_argument("--conf", type=float, default=None, help="Class probability threshold.")
    parser.add_argument("--obj", type=float, default=None, help="Objectness threshold.")
    parser.add_argument("--iou", type=float, default=None, help="IoU threshold for NMS.")
    parser.add_argument("--no-letterbox", action="store_true", help="Stretch the image instead of letterboxing.")
    parser.add_argument("--draw", default=None, help="Optional path to save an image with boxes drawn.")
    parser.add_argument("--log-level", default="WARNING", help="Python logging level (DEBUG, INFO, ...).")
    return parser


def config_from_args(args: argparse.Namespace) -> ExecutionConfig:
    if args.config:
        cfg = load_execution_config(Path(args.config))
    else:
        missing = [flag for flag, value in (("--input", args.input), ("--cfg", args.cfg), ("--weights", args.weights)) if not value]
        if missing:
            raise ValueError(f"Without --config these flags are required: {missing}")
        cfg = ExecutionConfig(input_path=Path(args.input), cfg_path=Path(args.cfg), model_path=Path(args.weights))

    overrides = {}
    for dest, key in (("input", "input_path"), ("cfg", "cfg_path"), ("weights", "model_path"), ("labels", "labels_path"), ("out", "output_path")):
        value = getattr(args, dest)
        if value:
            overrides[key] = Path(value)
    for dest, key in (("conf", "class_threshold"), ("obj", "objectness_threshold"), ("iou", "iou_threshold")):
        value = getattr(args, dest)
        if value is not None:
            overrides[key] = float(value)
    if args.format:
        overrides["output_format"] = args.format
    if args.no_letterbox:
        overrides["letterbox"] = False
    return replace(cfg, **overrides) if overrides else cfg


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(level=str(args.log_level).upper(), format="%(levelname)s %(name)s: %(message)s")

    cfg = config_from_args(args)
    detections = run_inference(cfg, draw_path=Path(args.draw) if args.draw else None)
    if cfg.output_path is None:
        sys.stdout.write(format_text(detections))
    print(f"Detections: {len(detections)}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
