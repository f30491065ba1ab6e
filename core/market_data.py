"""Market data collaborator backed by a YAML/JSON snapshot file."""

import logging
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import yaml

logger = logging.getLogger(__name__)


class SnapshotMarketData:
    """Re-reads ``snapshot_file`` on every ``collect`` so it can be edited between cycles."""

    def __init__(self, snapshot_file: str):
        self.snapshot_file = Path(snapshot_file)

    def collect(self, symbols: Optional[Sequence[str]] = None) -> Dict[str, Any]:
        with open(self.snapshot_file, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"{self.snapshot_file}: snapshot must be a mapping")
        if symbols:
            wanted = {s.upper() for s in symbols}
            data["symbols"] = {k: v for k, v in (data.get("symbols") or {}).items() if k.upper() in wanted}
        logger.debug(f"Loaded market snapshot with {len(data.get('symbols') or {})} symbol(s)")
        return data
