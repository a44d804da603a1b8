"""JSON exporter for thread history."""

from __future__ import annotations

import json
from pathlib import Path

from homebase_context.exporters.base import Exporter, ThreadHistory


class JsonExporter(Exporter):
    """Export thread history to JSON format."""

    @property
    def extension(self) -> str:
        """Return json extension."""
        return "json"

    def export(self, history: ThreadHistory, output_path: Path) -> int:
        """Export history to JSON file.

        Args:
            history: Thread history to export.
            output_path: Path to output JSON file.

        Returns:
            Number of records exported.
        """
        output = self.history_to_dict(history)
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(output, f, indent=2, ensure_ascii=False)
        return output["count"]
