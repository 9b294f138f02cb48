"""Final canvas export (images, receipts, manifest and HTML page)."""

from __future__ import annotations

import html
from pathlib import Path
from typing import Any

from ..session.state import FinalSelection
from ..utils import now_utc_iso, read_json, slugify, write_json
from .receipts import build_receipt, write_receipt


CANVAS_MANIFEST = "canvas.json"


def write_final_canvas(finals: FinalSelection, out_dir: Path) -> Path:
    out_dir.mkdir(parents=True, exist_ok=True)
    entries: list[dict[str, Any]] = []
    for title, entry in finals.items():
        stem = slugify(title) or "asset"
        image_path = out_dir / f"{stem}.{entry.artifact.extension}"
        receipt_path = out_dir / f"receipt-{stem}.json"
        image_path.write_bytes(entry.artifact.data)
        metadata = dict(entry.artifact.metadata)
        receipt = build_receipt(
            section_title=title,
            job=metadata.pop("job", None),
            image_path=image_path,
            receipt_path=receipt_path,
            width=entry.width,
            height=entry.height,
            artifact_metadata=metadata,
        )
        write_receipt(receipt_path, receipt)
        entries.append(
            {
                "title": title,
                "width": entry.width,
                "height": entry.height,
                "mime_type": entry.artifact.mime_type,
                "image_path": image_path.name,
                "receipt_path": receipt_path.name,
            }
        )
    manifest_path = out_dir / CANVAS_MANIFEST
    write_json(manifest_path, {"created_at": now_utc_iso(), "entries": entries})
    return manifest_path


def export_html(canvas_dir: Path, out_path: Path) -> Path:
    manifest = read_json(canvas_dir / CANVAS_MANIFEST, {})
    entries = manifest.get("entries", []) if isinstance(manifest, dict) else []

    cards: list[str] = []
    for entry in entries:
        if not isinstance(entry, dict):
            continue
        title = html.escape(str(entry.get("title", "")))
        dims = f"{entry.get('width', '?')}×{entry.get('height', '?')}"
        image_src = html.escape(_relative_src(canvas_dir, out_path, entry.get("image_path")))
        receipt_src = html.escape(_relative_src(canvas_dir, out_path, entry.get("receipt_path")))
        cards.append(
            f"<div class='card'>"
            f"<div class='head'><div class='title'>{title}</div><div class='dims'>{dims}</div></div>"
            f"<div class='thumb'><img src='{image_src}' alt='{title} final'></div>"
            f"<div class='links'><a href='{receipt_src}'>receipt</a></div>"
            f"</div>"
        )

    html_doc = f"""
<!doctype html>
<html>
<head>
  <meta charset='utf-8'>
  <title>Final Canvas</title>
  <style>
    body {{ font-family: Arial, sans-serif; background: #f6f6f6; margin: 0; padding: 20px; }}
    .grid {{ display: grid; grid-template-columns: repeat(auto-fill, minmax(280px, 1fr)); gap: 16px; }}
    .card {{ background: white; border-radius: 10px; overflow: hidden; box-shadow: 0 2px 8px rgba(0,0,0,0.08); padding: 10px; }}
    .head {{ display: flex; justify-content: space-between; margin-bottom: 8px; }}
    .title {{ font-weight: bold; font-size: 14px; color: #222; }}
    .dims {{ font-size: 12px; color: #777; }}
    .thumb img {{ width: 100%; height: auto; object-fit: contain; border-radius: 6px; }}
    .links a {{ font-size: 12px; color: #0066cc; text-decoration: none; }}
  </style>
</head>
<body>
  <h1>Final Canvas</h1>
  <div class='grid'>
    {''.join(cards)}
  </div>
</body>
</html>
"""
    out_path.parent.mkdir(parents=True, exist_ok=True)
    out_path.write_text(html_doc, encoding="utf-8")
    return out_path


def _relative_src(canvas_dir: Path, out_path: Path, name: Any) -> str:
    if not name:
        return ""
    target = canvas_dir / str(name)
    try:
        return target.resolve().relative_to(out_path.parent.resolve()).as_posix()
    except ValueError:
        return target.resolve().as_posix()
