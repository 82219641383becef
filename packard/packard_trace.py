"""
Observers for the parse/evaluation trace.

The parser and evaluator report each step to an injected observer through a
single side-effect-only method. Nothing an observer does can change the
outcome of a run; the file writer in particular treats its destination as
best effort.
"""
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import pystache
import yaml

DEFAULT_TEMPLATES = Path(__file__).parent / "grammar" / "trace.yaml"


class Observer:
    """No-op observer. Subclasses override `record`."""

    def record(self, event: str, fields: Dict[str, Any]) -> None:
        pass

    def close(self) -> None:
        pass


class TraceRecorder(Observer):
    """Keeps every record in memory, in arrival order."""

    def __init__(self):
        self.records: List[Tuple[str, Dict[str, Any]]] = []

    def record(self, event: str, fields: Dict[str, Any]) -> None:
        self.records.append((event, dict(fields)))

    def events(self, name: Optional[str] = None) -> List[Dict[str, Any]]:
        """Fields of every record, optionally only those of one event."""
        return [f for e, f in self.records if name is None or e == name]


class TraceWriter(Observer):
    """Appends one rendered line per record to a text file.

    The file is opened lazily in append mode. The first OSError is kept in
    `self.error` and every later record is dropped.
    """

    def __init__(self, path: str, templates_path: Optional[str] = None):
        self.path = Path(path)
        tpath = Path(templates_path) if templates_path else DEFAULT_TEMPLATES
        with tpath.open(encoding="utf-8") as f:
            self.templates: Dict[str, str] = yaml.safe_load(f) or {}
        self.renderer = pystache.Renderer(escape=lambda u: u)
        self.error: Optional[OSError] = None
        self._handle = None

    def render(self, event: str, fields: Dict[str, Any]) -> str:
        template = self.templates.get(event)
        if template is None:
            template = self.templates.get("default", "{{event}} {{fields}}")
        context = {"event": event, "fields": fields}
        context.update(fields)
        return self.renderer.render(template, context)

    def record(self, event: str, fields: Dict[str, Any]) -> None:
        if self.error is not None:
            return
        line = self.render(event, fields)
        try:
            if self._handle is None:
                self._handle = self.path.open("a", encoding="utf-8")
            self._handle.write(line + "\n")
            self._handle.flush()
        except OSError as e:
            self.error = e
            self.close()

    def close(self) -> None:
        if self._handle is not None:
            try:
                self._handle.close()
            except OSError as e:
                if self.error is None:
                    self.error = e
            self._handle = None


NULL_OBSERVER = Observer()
