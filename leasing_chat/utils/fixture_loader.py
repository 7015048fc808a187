from __future__ import annotations

import json
from pathlib import Path
from typing import Any, Dict, Optional, Union

import logging

from leasing_chat.models.crm import OperatorConfig

logger = logging.getLogger(__name__)

_FIXTURE_DIR = Path(__file__).resolve().parent.parent.parent / "fixtures"


def load_json(path: Union[str, Path]) -> Dict[str, Any]:
    file_path = Path(path)
    if not file_path.is_absolute() and not file_path.exists():
        file_path = _FIXTURE_DIR / file_path
    with file_path.open(encoding="utf-8") as f:
        return json.load(f)


def load_operator_config(path: Optional[Union[str, Path]] = None) -> OperatorConfig:
    """Operator settings and knowledge base; built-in defaults when the fixture is absent."""
    source = Path(path) if path else _FIXTURE_DIR / "operator.json"
    try:
        data = load_json(source)
    except FileNotFoundError:
        if path:
            raise
        logger.warning("fixture_loader.operator_missing path=%s using defaults", source)
        return OperatorConfig()
    return OperatorConfig.model_validate(data)
