"""Completion markers for cacheable stages.

A stage counts as already built only if its output exists AND a marker
written after its last successful run matches it. The marker is removed
before a stage executes, so output left behind by an interrupted run is
never mistaken for a finished build.
"""

import json
import logging
import os
import time
from pathlib import Path
from typing import Any, Optional

from .stage import BuildEnvironment, BuildStage


class StageCache:
    """Reads and writes per-stage completion markers."""

    def __init__(self, state_dir: Path):
        """Initialize the cache.

        Args:
            state_dir: Directory holding the marker files
        """
        self.state_dir = state_dir

    def marker_path(self, stage: BuildStage) -> Path:
        return self.state_dir / f"{stage.name}.json"

    def _read_marker(self, stage: BuildStage) -> Optional[dict[str, Any]]:
        marker = self.marker_path(stage)
        if not marker.exists():
            return None
        try:
            with open(marker, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logging.warning(f"Ignoring unreadable stage marker {marker}: {e}")
            return None
        return data if isinstance(data, dict) else None

    def is_fresh(self, stage: BuildStage, build_env: BuildEnvironment) -> bool:
        """Check whether the stage output is complete and built with this toolchain."""
        if not stage.output.is_file():
            return False
        data = self._read_marker(stage)
        if data is None:
            logging.debug(f"{stage.name}: output exists but has no completion marker")
            return False
        if data.get("prefix") != build_env.cross_prefix:
            logging.info(
                f"{stage.name}: cached output was built with '{data.get('prefix')}', rebuilding"
            )
            return False
        if data.get("output") != str(stage.output) or data.get("size") != stage.output.stat().st_size:
            logging.debug(f"{stage.name}: output changed since it was recorded")
            return False
        return True

    def invalidate(self, stage: BuildStage) -> None:
        self.marker_path(stage).unlink(missing_ok=True)

    def record(self, stage: BuildStage, build_env: BuildEnvironment) -> None:
        """Write the completion marker atomically."""
        self.state_dir.mkdir(parents=True, exist_ok=True)
        marker = self.marker_path(stage)
        data = {
            "stage": stage.name,
            "prefix": build_env.cross_prefix,
            "output": str(stage.output),
            "size": stage.output.stat().st_size,
            "completed_at": time.time(),
        }
        temp = marker.with_suffix(".json.tmp")
        with open(temp, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2)
        os.replace(temp, marker)
