from __future__ import annotations

import hashlib
import logging
import pickle
import time
from pathlib import Path
from typing import Any, Optional

from .config import CACHE_DIR
from .state import ChartView, ViewStatus

logger = logging.getLogger(__name__)


def _load_pickle(path: Path) -> Any:
    if not path.exists():
        return None
    try:
        with open(path, "rb") as fh:
            return pickle.load(fh)
    except (pickle.UnpicklingError, EOFError, AttributeError) as exc:
        logger.warning("Ignoring unreadable cache file %s: %s", path, exc)
        return None


def _save_pickle(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "wb") as fh:
        pickle.dump(data, fh)


class ViewCache:
    """Last good chart view per subject, kept on disk between restarts."""

    def __init__(self, cache_dir: Path = CACHE_DIR) -> None:
        self.cache_dir = Path(cache_dir)

    def _path(self, subject_id: str) -> Path:
        digest = hashlib.sha1(subject_id.encode("utf-8")).hexdigest()[:16]
        return self.cache_dir / f"timeline_{digest}.pkl"

    def load(self, subject_id: str) -> Optional[ChartView]:
        cached = _load_pickle(self._path(subject_id))
        if not cached:
            return None
        view = cached.get("view")
        return view if isinstance(view, ChartView) else None

    def save(self, subject_id: str, view: ChartView) -> None:
        if view.status not in (ViewStatus.READY, ViewStatus.EMPTY):
            return
        _save_pickle(self._path(subject_id), {"view": view, "cached_at": time.time()})


__all__ = ["ViewCache"]
