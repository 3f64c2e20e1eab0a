"""Edit-ready project manifests generated from processed items."""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from reelkeeper.config.models import ManifestSettings
from reelkeeper.organization.models import ProcessedItem
from reelkeeper.organization.naming import sanitize_name

from .capcut import build_capcut_project
from .models import ManifestFile, clip_path, is_chronological, stable_id
from .premiere import build_premiere_xml

LOGGER = logging.getLogger(__name__)


class ManifestGenerator:
    """Write the configured project manifests for a run."""

    def __init__(self, settings: Optional[ManifestSettings] = None) -> None:
        self.settings = settings or ManifestSettings()

    def generate(
        self,
        items: Sequence[ProcessedItem],
        output_dir: Path,
        *,
        media_root: Optional[str] = None,
        generated_at: Optional[datetime] = None,
    ) -> list[ManifestFile]:
        """Generate manifests into ``output_dir``.

        Args:
            items: Processed items in timeline order.
            output_dir: Directory receiving the project files.
            media_root: Absolute folder the clip paths are relative to, if known.
            generated_at: Creation timestamp recorded in the documents.

        Returns:
            list[ManifestFile]: The files written, CapCut first.

        Raises:
            ValueError: If ``items`` is not sorted by capture time.
        """
        if not is_chronological(items):
            raise ValueError("Manifest items must be sorted by capture time")

        output_dir.mkdir(parents=True, exist_ok=True)
        base_name = sanitize_name(self.settings.project_name)
        written: list[ManifestFile] = []

        if self.settings.capcut:
            document = build_capcut_project(items, self.settings, generated_at=generated_at)
            path = output_dir / f"{base_name}.ccp"
            path.write_text(json.dumps(document, indent=2), encoding="utf-8")
            written.append(ManifestFile(kind="capcut", path=path, item_count=len(items)))

        if self.settings.premiere:
            xml = build_premiere_xml(items, self.settings, media_root=media_root)
            path = output_dir / f"{base_name}.xml"
            path.write_text(xml, encoding="utf-8")
            written.append(ManifestFile(kind="premiere", path=path, item_count=len(items)))

        LOGGER.info("Generated %d manifest(s) in %s", len(written), output_dir)
        return written


def export_local(
    items: Sequence[ProcessedItem],
    path: Path,
    *,
    run_id: Optional[str] = None,
) -> ManifestFile:
    """Write processed items to a local JSON document.

    This is the fallback when a commit cannot reach the store: the document
    holds everything needed to perform the placement later.

    Args:
        items: Processed items in timeline order.
        path: Destination file.
        run_id: Identifier of the run that produced the items.

    Returns:
        ManifestFile: Description of the written export.
    """
    payload: Dict[str, Any] = {
        "exported_at": datetime.now(timezone.utc).isoformat(),
        "run_id": run_id,
        "item_count": len(items),
        "items": [
            {
                **item.model_dump(mode="json"),
                "id": stable_id("resource", item.identity),
                "target_path": clip_path(item),
            }
            for item in items
        ],
    }
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    LOGGER.info("Exported %d item(s) to %s", len(items), path)
    return ManifestFile(kind="export", path=path, item_count=len(items))


__all__ = [
    "ManifestGenerator",
    "ManifestFile",
    "build_capcut_project",
    "build_premiere_xml",
    "export_local",
    "stable_id",
]
