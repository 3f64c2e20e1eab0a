"""CapCut project document builder."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence

from reelkeeper.config.models import ManifestSettings
from reelkeeper.organization.models import ProcessedItem

from .models import clip_duration, clip_path, stable_id

CAPCUT_VERSION = "3.8.0"


def build_capcut_project(
    items: Sequence[ProcessedItem],
    settings: ManifestSettings,
    *,
    generated_at: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Build a CapCut project with clips laid end to end in timeline order.

    Args:
        items: Processed items sorted by capture time.
        settings: Manifest options (name, canvas, grouping).
        generated_at: Creation timestamp recorded in the document.

    Returns:
        Dict[str, Any]: JSON-serializable project document.
    """
    created = (generated_at or datetime.now(timezone.utc)).isoformat()
    width, height = (int(part) for part in settings.resolution.split("x"))
    total_duration = sum(clip_duration(item) for item in items)

    clips: List[Dict[str, Any]] = []
    resources: List[Dict[str, Any]] = []
    start_time = 0.0
    for index, item in enumerate(items):
        duration = clip_duration(item)
        resource_id = stable_id("resource", item.identity)
        fps = item.media_meta.frame_rate or settings.frame_rate
        clips.append(
            {
                "id": stable_id("clip", item.identity),
                "index": index,
                "type": "video",
                "resource_id": resource_id,
                "source": {
                    "file_path": clip_path(item),
                    "name": item.final_name,
                    "duration": duration,
                    "fps": fps,
                },
                "timeline": {
                    "start_time": start_time,
                    "duration": duration,
                    "in_point": 0,
                    "out_point": duration,
                },
                "properties": {
                    "volume": 1.0,
                    "opacity": 1.0,
                    "position": {"x": 0, "y": 0},
                    "scale": 1.0,
                    "rotation": 0,
                },
            }
        )
        resources.append(
            {
                "id": resource_id,
                "type": "video",
                "path": clip_path(item),
                "name": item.final_name,
                "metadata": {
                    "duration": duration,
                    "resolution": item.media_meta.resolution,
                    "fps": fps,
                    "original_date": item.captured_at.isoformat(),
                    "original_name": item.original_name,
                },
            }
        )
        start_time += duration

    project: Dict[str, Any] = {
        "version": CAPCUT_VERSION,
        "platform": "web",
        "project_id": stable_id("project", settings.project_name, *(i.identity for i in items)),
        "created_at": created,
        "project_name": settings.project_name,
        "canvas": {
            "width": width,
            "height": height,
            "fps": settings.frame_rate,
            "duration": total_duration,
        },
        "tracks": [{"id": "video_track_1", "type": "video", "clips": clips}],
        "resources": resources,
        "metadata": {
            "total_clips": len(items),
            "total_duration": total_duration,
            "creation_date": created,
            "organized_by_date": settings.group_by_date,
        },
    }
    if settings.group_by_date and settings.create_subsequences:
        project["subsequences"] = _subsequences(items)
    return project


def _subsequences(items: Sequence[ProcessedItem]) -> List[Dict[str, Any]]:
    groups: Dict[str, List[ProcessedItem]] = {}
    for item in items:
        groups.setdefault(item.bucket_key or item.captured_at.date().isoformat(), []).append(item)
    return [
        {
            "id": f"subseq_{key}",
            "name": f"Media from {key}",
            "clips": [stable_id("clip", item.identity) for item in members],
            "duration": sum(clip_duration(item) for item in members),
        }
        for key, members in groups.items()
    ]


__all__ = ["build_capcut_project", "CAPCUT_VERSION"]
