"""
Printable QR sheet for a hunt.

The sheet holds one scan point per hunt step: a starting code (labeled with
a star) that opens the first clue, then one numbered code per clue that
opens the next clue, the last one opening the completion page. Each code is
printed with the clue and hint of the location where it will be placed.
"""

from __future__ import annotations

import base64
import html
import io
from dataclasses import dataclass
from string import Template

import qrcode
from qrcode.constants import ERROR_CORRECT_H

from qrhunt.domain import Hunt
from qrhunt.links import clue_link, completion_link

START_LABEL = "★"
START_TEXT = "Starting QR Code"
MISSING_TEXT = "No clue text"


@dataclass(frozen=True)
class ScanPoint:
    label: str
    url: str
    clue_text: str
    hint_text: str = ""


def build_scan_points(hunt: Hunt, base_url: str) -> list[ScanPoint]:
    clues = hunt.clues
    if not clues:
        return []
    points = [
        ScanPoint(
            label=START_LABEL,
            url=clue_link(base_url, hunt.id, clues[0].id),
            clue_text=START_TEXT,
        )
    ]
    for index, clue in enumerate(clues):
        if index + 1 < len(clues):
            url = clue_link(base_url, hunt.id, clues[index + 1].id)
        else:
            url = completion_link(base_url, hunt.id)
        points.append(
            ScanPoint(
                label=str(index + 1),
                url=url,
                clue_text=clue.text or MISSING_TEXT,
                hint_text=clue.hint or "",
            )
        )
    return points


def qr_png_data_uri(data: str, box_size: int = 4, border: int = 2) -> str:
    qr = qrcode.QRCode(
        error_correction=ERROR_CORRECT_H,
        box_size=box_size,
        border=border,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buffer = io.BytesIO()
    img.save(buffer, format="PNG")
    encoded = base64.b64encode(buffer.getvalue()).decode("ascii")
    return f"data:image/png;base64,{encoded}"


_ITEM_TEMPLATE = Template(
    """
      <div class="qr-item">
        <div class="qr-content">
          <div class="qr-frame">
            <img src="$src" alt="QR Code $label" />
            <div class="qr-overlay">$label</div>
          </div>
          <div class="clue-text">$clue_text</div>
          $hint
        </div>
      </div>"""
)

_PAGE_TEMPLATE = Template(
    """<!DOCTYPE html>
<html>
  <head>
    <meta charset="utf-8" />
    <title>Print QR Codes - $title</title>
    <style>
      @page { size: A4; margin: 15mm; }
      body { margin: 0; padding: 15mm; font-family: Arial, sans-serif; background: white; }
      .hunt-title { text-align: center; font-size: 24px; font-weight: bold; margin-bottom: 30px; color: black; }
      .qr-grid { display: grid; grid-template-columns: repeat(4, 39mm); column-gap: 8mm; row-gap: 12mm; justify-content: center; }
      .qr-item { width: 39mm; text-align: center; page-break-inside: avoid; break-inside: avoid; }
      .qr-frame { position: relative; width: 120px; height: 120px; margin: 0 auto; }
      .qr-frame img { width: 120px; height: 120px; border: 2px solid black; border-radius: 4px; background: white; }
      .qr-overlay { position: absolute; top: 50%; left: 50%; transform: translate(-50%, -50%); background: white; border: 2px solid black; border-radius: 50%; width: 32px; height: 32px; display: flex; align-items: center; justify-content: center; font-size: 16px; font-weight: bold; color: black; }
      .clue-text { font-size: 10px; font-weight: bold; margin: 8px 0 4px 0; color: black; line-height: 1.2; word-wrap: break-word; max-width: 39mm; }
      .hint-text { font-size: 9px; color: #666; margin: 0; line-height: 1.2; word-wrap: break-word; font-style: italic; max-width: 39mm; }
    </style>
  </head>
  <body>
    <div class="hunt-title">$title</div>
    <div class="qr-grid">$items
    </div>
    <script>
      window.onafterprint = function () { window.close(); };
      window.onload = function () { setTimeout(function () { window.print(); }, 100); };
    </script>
  </body>
</html>
"""
)


def render_scan_point(point: ScanPoint) -> str:
    hint = (
        f'<div class="hint-text">Hint: {html.escape(point.hint_text)}</div>'
        if point.hint_text
        else ""
    )
    return _ITEM_TEMPLATE.substitute(
        src=qr_png_data_uri(point.url),
        label=html.escape(point.label),
        clue_text=html.escape(point.clue_text),
        hint=hint,
    )


def render_print_sheet(hunt: Hunt, base_url: str) -> str:
    """Self-contained HTML document for printing a hunt's QR codes on A4."""
    items = "".join(render_scan_point(p) for p in build_scan_points(hunt, base_url))
    return _PAGE_TEMPLATE.substitute(title=html.escape(hunt.title), items=items)
