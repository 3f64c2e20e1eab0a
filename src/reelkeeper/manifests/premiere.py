"""Premiere Pro project builder using Final Cut Pro 7 XML (``xmeml``)."""

from __future__ import annotations

from typing import Dict, List, Optional, Sequence
from urllib.parse import quote
from xml.etree import ElementTree as ET

from reelkeeper.config.models import ManifestSettings
from reelkeeper.organization.models import ProcessedItem

from .models import clip_duration, clip_path, stable_id

XMEML_VERSION = "4"


def _sub(parent: ET.Element, tag: str, text: Optional[object] = None, **attrs: str) -> ET.Element:
    element = ET.SubElement(parent, tag, attrs)
    if text is not None:
        element.text = str(text)
    return element


def _rate(parent: ET.Element, frame_rate: int) -> None:
    rate = _sub(parent, "rate")
    _sub(rate, "timebase", frame_rate)
    _sub(rate, "ntsc", "FALSE")


def _frames(seconds: float, frame_rate: int) -> int:
    return int(round(seconds * frame_rate))


def _path_url(path: str, media_root: Optional[str]) -> str:
    full = f"{media_root.rstrip('/')}/{path}" if media_root else path
    return "file://localhost/" + quote(full.lstrip("/"))


def build_premiere_xml(
    items: Sequence[ProcessedItem],
    settings: ManifestSettings,
    *,
    media_root: Optional[str] = None,
) -> str:
    """Build an ``xmeml`` document with one sequence and optional per-bucket bins.

    Args:
        items: Processed items sorted by capture time.
        settings: Manifest options (name, timeline format, grouping).
        media_root: Absolute folder the clip paths are relative to, if known.

    Returns:
        str: Serialized XML document, UTF-8 declaration included.
    """
    fps = settings.frame_rate
    width, height = settings.resolution.split("x")

    root = ET.Element("xmeml", {"version": XMEML_VERSION})
    project = _sub(root, "project")
    _sub(project, "name", settings.project_name)
    children = _sub(project, "children")

    file_ids: Dict[str, str] = {}
    for item in items:
        file_ids[item.identity] = "file-" + stable_id("file", item.identity)

    if settings.group_by_date:
        groups: Dict[str, List[ProcessedItem]] = {}
        for item in items:
            groups.setdefault(item.bucket_key or item.captured_at.date().isoformat(), []).append(
                item
            )
        for key, members in groups.items():
            bin_element = _sub(children, "bin")
            _sub(bin_element, "name", key)
            bin_children = _sub(bin_element, "children")
            for item in members:
                clip_id = "masterclip-" + stable_id("clip", item.identity)
                clip = _sub(bin_children, "clip", id=clip_id)
                _sub(clip, "name", item.final_name)
                _sub(clip, "duration", _frames(clip_duration(item), fps))
                _rate(clip, fps)

    sequence = _sub(
        children,
        "sequence",
        id="sequence-" + stable_id("sequence", settings.project_name),
    )
    total_frames = sum(_frames(clip_duration(item), fps) for item in items)
    _sub(sequence, "name", f"{settings.project_name}_Timeline")
    _sub(sequence, "duration", total_frames)
    _rate(sequence, fps)

    media = _sub(sequence, "media")
    video = _sub(media, "video")
    video_format = _sub(video, "format")
    characteristics = _sub(video_format, "samplecharacteristics")
    _sub(characteristics, "width", width)
    _sub(characteristics, "height", height)
    _sub(characteristics, "pixelaspectratio", "square")
    track = _sub(video, "track")

    start = 0
    for item in items:
        length = _frames(clip_duration(item), fps)
        clipitem = _sub(track, "clipitem", id="clipitem-" + stable_id("clipitem", item.identity))
        _sub(clipitem, "name", item.final_name)
        _sub(clipitem, "duration", length)
        _rate(clipitem, fps)
        _sub(clipitem, "start", start)
        _sub(clipitem, "end", start + length)
        _sub(clipitem, "in", 0)
        _sub(clipitem, "out", length)
        file_element = _sub(clipitem, "file", id=file_ids[item.identity])
        _sub(file_element, "name", item.final_name)
        _sub(file_element, "pathurl", _path_url(clip_path(item), media_root))
        _sub(file_element, "duration", length)
        _rate(file_element, fps)
        logging_info = _sub(clipitem, "logginginfo")
        _sub(logging_info, "description", f"Captured {item.captured_at.isoformat()}")
        start += length

    ET.indent(root)
    body = ET.tostring(root, encoding="unicode")
    return '<?xml version="1.0" encoding="UTF-8"?>\n<!DOCTYPE xmeml>\n' + body + "\n"


__all__ = ["build_premiere_xml", "XMEML_VERSION"]
