"""
EVIDENCE STORE - Durable JSON log of every engaged session

Keeps per-session snapshots, a master de-duplicated intelligence record
and a running count of scam sessions, so nothing is lost on restart.
"""

import os
import copy
import json
import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict

from .errors import PersistenceError
from .intelligence_extractor import IntelligenceRecord
from .models import ExtractedIntelligence

logger = logging.getLogger(__name__)


def _empty_cache() -> Dict:
    return {
        "sessions": {},
        "masterIntel": ExtractedIntelligence().model_dump(),
        "totalScamsDetected": 0,
    }


class EvidenceStore:

    def __init__(self, path: str):
        self.path = path
        self.cache: Dict = _empty_cache()
        # One writer at a time: cache mutation and file replace happen together
        self._lock = asyncio.Lock()
        self._load()

    def _load(self):
        """Load the vault from disk. A missing or corrupt file starts fresh."""
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                self.cache = {**_empty_cache(), **json.load(f)}
            logger.info(f"Evidence store initialized from {self.path}")
        except FileNotFoundError:
            logger.info("Evidence file not found, starting fresh")
        except (OSError, ValueError, TypeError) as e:
            logger.error(f"Failed to load evidence store, starting fresh: {e}")

    async def persist(self, session) -> None:
        """Record the session snapshot and fold its intel into the master record"""
        snapshot = session.to_dict()
        snapshot["lastUpdated"] = datetime.now(timezone.utc).isoformat()

        async with self._lock:
            self.cache["sessions"][session.session_id] = snapshot

            master = IntelligenceRecord.from_model(
                ExtractedIntelligence(**self.cache.get("masterIntel", {}))
            )
            self.cache["masterIntel"] = master.merge(
                session.extracted_intelligence
            ).to_model().model_dump()

            self.cache["totalScamsDetected"] = sum(
                1 for s in self.cache["sessions"].values() if s.get("scamDetected")
            )

            await asyncio.to_thread(self._write, copy.deepcopy(self.cache))

    def _write(self, data: Dict):
        try:
            directory = os.path.dirname(self.path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            tmp_path = f"{self.path}.tmp"
            with open(tmp_path, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False)
            os.replace(tmp_path, self.path)
        except OSError as e:
            raise PersistenceError(f"Failed to save evidence: {e}") from e
        logger.debug("Evidence saved to disk")

    def get_evidence(self) -> Dict:
        return copy.deepcopy(self.cache)
