"""Thread history exporters for JSON and YAML formats."""

from homebase_context.exporters.base import Exporter, ThreadHistory
from homebase_context.exporters.json_exporter import JsonExporter
from homebase_context.exporters.yaml_exporter import YamlExporter

EXPORTERS: dict[str, type[Exporter]] = {
    "json": JsonExporter,
    "yaml": YamlExporter,
}

__all__ = [
    "EXPORTERS",
    "Exporter",
    "JsonExporter",
    "ThreadHistory",
    "YamlExporter",
]
