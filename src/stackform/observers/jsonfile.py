from __future__ import annotations
import json
from pathlib import Path
from .interface import Observer
from .events import BaseEvent
from ..utils.serialize import to_jsonable


class JsonFileObserver(Observer):
    """One JSON object per line; a run's events share the file named after its run id."""

    def __init__(self, path: str | Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def notify(self, event: BaseEvent) -> None:
        record = {"type": type(event).__name__, **to_jsonable(event.dict())}
        with self.path.open("a", encoding="utf-8") as f:
            f.write(json.dumps(record, default=str) + "\n")
