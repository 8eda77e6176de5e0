from pathlib import Path
import json
import time


class Logger:
    """Append-only JSON-lines trace file (one object per query / build)."""

    def __init__(self, path: Path):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)

    def write(self, obj: dict):
        record = {"ts": round(time.time(), 3), **obj}
        with open(self.path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, ensure_ascii=False, default=str) + "\n")
