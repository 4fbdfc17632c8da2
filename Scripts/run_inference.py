"""
Run one image through a Darknet network and print (or write) the detections.

    python Scripts/run_inference.py --config execution_config.json
    python Scripts/run_inference.py --input dog.jpg --cfg yolov3-tiny.cfg \
        --weights yolov3-tiny.weights --labels coco.names --draw out.jpg
"""

import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1]))

from darknet_kit.runner import main  # noqa: E402


if __name__ == "__main__":
    raise SystemExit(main())
