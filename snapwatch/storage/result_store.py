"""Result store — persists the target list and the latest result per target."""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

from snapwatch.models.snapshot import ComparisonResult, LatestResults, TargetList, utc_now_iso
from snapwatch.url_utils import is_supported_url
from snapwatch.utils.files import write_json_atomic

logger = logging.getLogger(__name__)

TARGETS_FILE = "targets.json"
RESULTS_FILE = "results.json"


def _load_model(path: Path, model: type[BaseModel]) -> Optional[BaseModel]:
    if not path.exists():
        return None
    try:
        with open(path) as f:
            data = json.load(f)
        return model.model_validate(data)
    except (OSError, ValueError, ValidationError) as e:
        logger.warning("Failed to load %s: %s. Starting empty.", path, e)
        return None


class ResultStore:
    """Owns ``targets.json`` and ``results.json`` under ``storage_dir``.

    Both documents are read once on construction. Every mutating call
    flushes the affected document before returning, so what is on disk always
    matches what callers have been told.
    """

    def __init__(self, storage_dir: Path):
        self.storage_dir = Path(storage_dir)
        self.targets_path = self.storage_dir / TARGETS_FILE
        self.results_path = self.storage_dir / RESULTS_FILE
        self._targets: TargetList = _load_model(self.targets_path, TargetList) or TargetList()
        self._results: LatestResults = _load_model(self.results_path, LatestResults) or LatestResults()

    # ------------------------------------------------------------------
    # Target list
    # ------------------------------------------------------------------

    def list_targets(self) -> list[str]:
        return list(self._targets.urls)

    def add_target(self, url: str) -> bool:
        """Register ``url``. Returns False for blanks and already registered URLs."""
        url = url.strip()
        if not url:
            return False
        if not is_supported_url(url):
            raise ValueError(f"Unsupported URL (expected http or https): {url}")
        if url in self._targets.urls:
            return False
        self._targets.urls.append(url)
        self._flush_targets()
        logger.info("Added target %s", url)
        return True

    def delete_target(self, url: str) -> bool:
        """Forget ``url`` and its latest result. Snapshot files are left alone."""
        known = url in self._targets.urls or url in self._results.results
        if url in self._targets.urls:
            self._targets.urls = [u for u in self._targets.urls if u != url]
            self._flush_targets()
        if self._results.results.pop(url, None) is not None:
            self._flush_results()
        if known:
            logger.info("Deleted target %s", url)
        return known

    # ------------------------------------------------------------------
    # Latest results
    # ------------------------------------------------------------------

    def latest_results(self) -> dict[str, ComparisonResult]:
        return dict(self._results.results)

    def latest_result(self, url: str) -> Optional[ComparisonResult]:
        return self._results.results.get(url)

    def record_result(self, result: ComparisonResult) -> None:
        """Replace the cached result for ``result.url``."""
        self._results.results[result.url] = result
        self._flush_results()

    # ------------------------------------------------------------------

    def _flush_targets(self) -> None:
        self._targets.last_updated = utc_now_iso()
        write_json_atomic(self.targets_path, self._targets.model_dump(mode="json"))
        logger.debug("Saved target list to %s", self.targets_path)

    def _flush_results(self) -> None:
        self._results.last_updated = utc_now_iso()
        write_json_atomic(self.results_path, self._results.model_dump(mode="json"))
        logger.debug("Saved latest results to %s", self.results_path)
