from __future__ import annotations

import hashlib
import json
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional

_SAFE_KEY_RE = re.compile(r"^[A-Za-z0-9_-]{1,128}$")


class JsonDirectory:
    """One JSON document per key under a directory; writes replace the file atomically."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def path_for(self, key: str) -> Path:
        if _SAFE_KEY_RE.match(key):
            name = key
        else:
            name = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.root / f"{name}.json"

    def read(self, key: str) -> Optional[Dict[str, Any]]:
        path = self.path_for(key)
        if not path.exists():
            return None
        with path.open(encoding="utf-8") as f:
            return json.load(f)

    def write(self, key: str, document: Dict[str, Any]) -> Path:
        self.root.mkdir(parents=True, exist_ok=True)
        path = self.path_for(key)
        tmp_path = path.with_suffix(f".{os.getpid()}.tmp")
        tmp_path.write_text(json.dumps(document, default=str), encoding="utf-8")
        os.replace(tmp_path, path)
        return path
