"""YAML exporter for thread history."""

from __future__ import annotations

from pathlib import Path

import yaml

from homebase_context.exporters.base import Exporter, ThreadHistory


class YamlExporter(Exporter):
    """Export thread history to YAML format."""

    @property
    def extension(self) -> str:
        """Return yaml extension."""
        return "yaml"

    def export(self, history: ThreadHistory, output_path: Path) -> int:
        """Export history to YAML file.

        Args:
            history: Thread history to export.
            output_path: Path to output YAML file.

        Returns:
            Number of records exported.
        """
        output = self.history_to_dict(history)
        with open(output_path, "w", encoding="utf-8") as f:
            yaml.safe_dump(output, f, allow_unicode=True, sort_keys=False)
        return output["count"]
