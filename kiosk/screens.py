"""
Render the kiosk's fallback screens ("stream offline", "no cams configured") and
the status overlay card drawn over a playing stream.
"""

from __future__ import annotations

import platform
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

import numpy as np
from PIL import Image, ImageDraw, ImageFont

from .models import KIND_TO_WIRE, StreamDescriptor

DEFAULT_FALLBACK_DETAIL = "The stream did not become ready."


@dataclass(frozen=True)
class ScreenStyle:
    background: Tuple[int, int, int] = (10, 10, 12)
    background_bottom: Tuple[int, int, int] = (30, 18, 22)
    card: Tuple[int, int, int] = (28, 28, 32)
    border: Tuple[int, int, int] = (60, 60, 66)
    text: Tuple[int, int, int] = (240, 240, 240)
    muted: Tuple[int, int, int] = (160, 160, 168)
    accent: Tuple[int, int, int] = (220, 80, 70)
    card_width_ratio: float = 0.6


DEFAULT_STYLE = ScreenStyle()


def _load_font(size: int) -> ImageFont.ImageFont:
    if platform.system() == "Darwin":
        font_paths = [
            "/System/Library/Fonts/Supplemental/Arial.ttf",
            "/System/Library/Fonts/Helvetica.ttc",
        ]
    else:
        font_paths = [
            "/usr/share/fonts/truetype/dejavu/DejaVuSans.ttf",
            "/usr/share/fonts/truetype/liberation/LiberationSans-Regular.ttf",
            "/usr/share/fonts/TTF/DejaVuSans.ttf",
        ]
    font_paths.append("DejaVuSans.ttf")

    for font_path in font_paths:
        try:
            return ImageFont.truetype(font_path, size)
        except (OSError, IOError):
            continue
    return ImageFont.load_default()


def create_vertical_gradient(
    size: Tuple[int, int], top_rgb: Tuple[int, int, int], bottom_rgb: Tuple[int, int, int]
) -> Image.Image:
    width, height = size
    top = np.array(top_rgb, dtype=np.float32)
    bottom = np.array(bottom_rgb, dtype=np.float32)
    alpha = np.linspace(0.0, 1.0, height, dtype=np.float32)[:, None, None]
    gradient = np.clip(top + (bottom - top) * alpha, 0, 255).astype(np.uint8)
    gradient = np.repeat(gradient, width, axis=1)
    return Image.fromarray(gradient)


def _wrap_lines(
    text: str, draw: ImageDraw.ImageDraw, font: ImageFont.ImageFont, max_width: int
) -> List[str]:
    words = text.split()
    lines: List[str] = []
    current: List[str] = []
    for word in words:
        candidate = " ".join(current + [word])
        if current and draw.textlength(candidate, font=font) > max_width:
            lines.append(" ".join(current))
            current = [word]
        else:
            current.append(word)
    if current:
        lines.append(" ".join(current))
    return lines


def _draw_block(
    draw: ImageDraw.ImageDraw,
    lines: Sequence[Tuple[str, ImageFont.ImageFont, Tuple[int, int, int]]],
    center_x: int,
    top: int,
    max_width: int,
) -> int:
    """Draw centred, wrapped lines starting at ``top``; returns the y below the block."""
    y = top
    for text, font, color in lines:
        bbox = font.getbbox("Ag")
        line_height = bbox[3] - bbox[1]
        for line in _wrap_lines(text, draw, font, max_width) or [""]:
            width = draw.textlength(line, font=font)
            draw.text((center_x - width / 2, y), line, font=font, fill=color)
            y += int(line_height * 1.4)
        y += int(line_height * 0.4)
    return y


def render_offline_screen(
    descriptor: Optional[StreamDescriptor],
    detail: Optional[str],
    seconds_left: Optional[float],
    size: Tuple[int, int] = (1920, 1080),
    style: ScreenStyle = DEFAULT_STYLE,
) -> Image.Image:
    width, height = size
    image = create_vertical_gradient(size, style.background, style.background_bottom)
    draw = ImageDraw.Draw(image)

    scale = height / 1080
    title_font = _load_font(max(18, int(56 * scale)))
    body_font = _load_font(max(12, int(30 * scale)))
    small_font = _load_font(max(10, int(24 * scale)))

    card_width = int(width * style.card_width_ratio)
    left = (width - card_width) // 2
    padding = int(48 * scale)
    text_width = card_width - 2 * padding
    center_x = width // 2

    name = descriptor.name if descriptor else "This stream"
    lines = [
        ("This stream is offline", title_font, style.text),
        (f"{name} couldn't be loaded right now.", body_font, style.muted),
    ]
    if descriptor is not None:
        lines.extend(
            [
                (descriptor.name, body_font, style.text),
                (f"id: {descriptor.id}  |  {KIND_TO_WIRE.get(descriptor.kind, descriptor.kind)}", small_font, style.muted),
                (descriptor.url, small_font, style.muted),
                (f"Details: {detail or DEFAULT_FALLBACK_DETAIL}", small_font, style.text),
            ]
        )
    if seconds_left is not None:
        lines.append(
            (f"Switching to the next cam in {int(round(seconds_left))}s", body_font, style.accent)
        )

    # Measure on a scratch canvas to size the card before drawing it.
    scratch = ImageDraw.Draw(Image.new("RGB", size))
    block_height = _draw_block(scratch, lines, center_x, 0, text_width)
    card_height = block_height + 2 * padding
    top = max(0, (height - card_height) // 2)

    draw.rounded_rectangle(
        (left, top, left + card_width, top + card_height),
        radius=int(24 * scale),
        fill=style.card,
        outline=style.border,
        width=max(1, int(2 * scale)),
    )
    _draw_block(draw, lines, center_x, top + padding, text_width)
    return image


def render_idle_screen(
    size: Tuple[int, int] = (1920, 1080), style: ScreenStyle = DEFAULT_STYLE
) -> Image.Image:
    width, height = size
    image = Image.new("RGB", size, (0, 0, 0))
    draw = ImageDraw.Draw(image)
    scale = height / 1080
    lines = [
        ("No cams configured", _load_font(max(18, int(56 * scale))), style.text),
        ("Use the admin API (POST /api/cams) to add cams.", _load_font(max(12, int(30 * scale))), style.muted),
    ]
    text_width = int(width * style.card_width_ratio)
    scratch = ImageDraw.Draw(Image.new("RGB", size))
    block_height = _draw_block(scratch, lines, width // 2, 0, text_width)
    _draw_block(draw, lines, width // 2, max(0, (height - block_height) // 2), text_width)
    return image


STATUS_BADGES = {"loading": "Loading", "ready": "Playing"}
OVERLAY_MARGIN = 16


def overlay_badge(status: str) -> str:
    return STATUS_BADGES.get(status, "Issue")


def _truncate(text: str, draw: ImageDraw.ImageDraw, font: ImageFont.ImageFont, max_width: int) -> str:
    if draw.textlength(text, font=font) <= max_width:
        return text
    while text and draw.textlength(text + "...", font=font) > max_width:
        text = text[:-1]
    return text.rstrip() + "..."


def render_status_overlay(
    descriptor: Optional[StreamDescriptor],
    status: str,
    detail: Optional[str],
    dwell_seconds: Optional[float],
    display_size: Tuple[int, int] = (1920, 1080),
    style: ScreenStyle = DEFAULT_STYLE,
) -> Image.Image:
    """
    Small status card shown in the bottom-left corner over the playing stream.

    The card carries the stream name, a Loading/Playing/Issue badge, either
    the dwell ("Cycling every 90s") or the failure detail, and the stream's
    attribution when it has one.
    """
    display_width, display_height = display_size
    scale = display_height / 1080
    margin = int(OVERLAY_MARGIN * scale)
    width = max(120, min(int(520 * scale), display_width - 2 * margin))
    padding = max(6, int(14 * scale))
    name_font = _load_font(max(12, int(24 * scale)))
    body_font = _load_font(max(10, int(20 * scale)))
    small_font = _load_font(max(9, int(16 * scale)))

    rows = []
    if status == "failed":
        rows.append((detail or DEFAULT_FALLBACK_DETAIL, body_font, style.text))
    elif dwell_seconds is not None:
        rows.append((f"Cycling every {int(round(dwell_seconds))}s", body_font, style.muted))
    if descriptor is not None and descriptor.attribution:
        rows.append((descriptor.attribution, small_font, style.muted))

    def line_height(font: ImageFont.ImageFont) -> int:
        bbox = font.getbbox("Ag")
        return int((bbox[3] - bbox[1]) * 1.5)

    height = 2 * padding + line_height(name_font) + sum(line_height(font) for _, font, _ in rows)
    image = Image.new("RGB", (width, height), style.card)
    draw = ImageDraw.Draw(image)
    draw.rectangle((0, 0, width - 1, height - 1), outline=style.border, width=max(1, int(2 * scale)))

    badge = overlay_badge(status)
    badge_pad = max(4, int(8 * scale))
    badge_width = int(draw.textlength(badge, font=small_font)) + 2 * badge_pad
    badge_height = line_height(small_font)
    badge_left = width - padding - badge_width
    badge_top = padding + (line_height(name_font) - badge_height) // 2
    draw.rounded_rectangle(
        (badge_left, badge_top, badge_left + badge_width, badge_top + badge_height),
        radius=badge_height // 2,
        fill=style.accent if badge == "Issue" else style.border,
    )
    draw.text((badge_left + badge_pad, badge_top + badge_height // 6), badge, font=small_font, fill=style.text)

    name = descriptor.name if descriptor is not None else "No cams configured"
    name_width = badge_left - 2 * padding
    draw.text((padding, padding), _truncate(name, draw, name_font, name_width), font=name_font, fill=style.text)

    y = padding + line_height(name_font)
    for text, font, color in rows:
        draw.text((padding, y), _truncate(text, draw, font, width - 2 * padding), font=font, fill=color)
        y += line_height(font)
    return image


def overlay_geometry(overlay_size: Tuple[int, int], display_size: Tuple[int, int]) -> str:
    """X11 geometry that pins an overlay of ``overlay_size`` to the bottom-left corner."""
    width, height = overlay_size
    margin = int(OVERLAY_MARGIN * display_size[1] / 1080)
    return f"{width}x{height}+{margin}+{max(0, display_size[1] - height - margin)}"


def save_screen(image: Image.Image, path: Path) -> Path:
    """Write atomically so the image viewer never reads a half-written file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(dir=str(path.parent), suffix=".png", delete=False) as tmp:
        tmp_path = Path(tmp.name)
    image.save(tmp_path, format="PNG")
    tmp_path.replace(path)
    return path
