"""RENDER_PRINT job handler.

Turns the design document of a paid order item into a print file. The
rasterizer is an external collaborator; this handler validates the design
and writes the print manifest it consumes (canvas size at 300 DPI and the
layer list) to ``PRINT_OUTPUT_DIR``. Reruns overwrite the same file, so
duplicate deliveries are harmless.
"""

import asyncio
import json
from pathlib import Path

import structlog

from storefront.core.errors import JobHandlerFailure
from storefront.jobs.types import utcnow

logger = structlog.get_logger(__name__)

PRINT_DPI = 300
# 6 x 8 inch print at 300 DPI
DEFAULT_WIDTH = 1800
DEFAULT_HEIGHT = 2400


def _load_design(design) -> dict:
    if isinstance(design, str):
        try:
            design = json.loads(design)
        except json.JSONDecodeError as exc:
            raise JobHandlerFailure(f"Design document is not valid JSON: {exc}") from exc
    if not isinstance(design, dict):
        raise JobHandlerFailure("Design document must be a JSON object")
    return design


def build_manifest(order_id: str, order_item_id: str, design: dict) -> dict:
    layers = design.get("objects") or []
    return {
        "order_id": order_id,
        "order_item_id": order_item_id,
        "width": int(design.get("width") or DEFAULT_WIDTH),
        "height": int(design.get("height") or DEFAULT_HEIGHT),
        "dpi": PRINT_DPI,
        "background": design.get("background") or "#FFFFFF",
        "layers": [
            {
                "type": layer.get("type"),
                "left": layer.get("left", 0),
                "top": layer.get("top", 0),
                **({"text": layer["text"]} if "text" in layer else {}),
            }
            for layer in layers
            if isinstance(layer, dict)
        ],
        "generated_at": utcnow().isoformat(),
    }


def _write(path: Path, manifest: dict) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(manifest, indent=2), encoding="utf-8")


async def render_print_file(payload: dict, *, output_dir: str) -> dict:
    order_id = payload.get("order_id")
    order_item_id = payload.get("order_item_id")
    if not order_id or not order_item_id:
        raise JobHandlerFailure("RENDER_PRINT payload requires order_id and order_item_id")
    if payload.get("design") is None:
        raise JobHandlerFailure(f"No design document for order item {order_item_id}")

    design = _load_design(payload["design"])
    manifest = build_manifest(str(order_id), str(order_item_id), design)

    file_name = f"print_{order_id}_{order_item_id}.json"
    path = Path(output_dir) / file_name
    await asyncio.to_thread(_write, path, manifest)

    logger.info(
        "Print file rendered",
        order_id=str(order_id),
        order_item_id=str(order_item_id),
        path=str(path),
        layers=len(manifest["layers"]),
    )
    return {"file_path": str(path), "url": f"/output/prints/{file_name}"}
