"""
Result cache for computed recommendations.

File-based and content-addressed: identical requests against the same provider
and rule set map to the same key. Read and write problems are logged and
treated as a miss; the cache never fails an analysis.
"""

import hashlib
import json
import logging
import os
from datetime import datetime, timezone
from typing import List, Optional

from pydantic import ValidationError as PydanticValidationError

from .models import AnalysisRequest, Recommendation

logger = logging.getLogger(__name__)


class ResultCache:
    """Stores Recommendations as JSON files under a cache directory."""

    def __init__(self, cache_dir: str):
        self.cache_dir = cache_dir
        logger.info(f"ResultCache initialized. Cache directory: {self.cache_dir}")

    @staticmethod
    def key(
        request: AnalysisRequest,
        provider_name: str,
        rules_enabled: bool,
        rule_files: Optional[List[str]] = None,
    ) -> str:
        """
        Deterministic key over the canonical request inputs.

        Rule file order does not matter. Parts are JSON-encoded so that no
        separator inside a prompt or game name can make two requests collide.
        """
        image_digest = hashlib.sha256(request.image.data).hexdigest()
        key_parts = [
            image_digest,
            request.prompt,
            request.game_name,
            provider_name,
            rules_enabled,
            sorted(rule_files or []),
        ]
        return hashlib.sha256(json.dumps(key_parts, ensure_ascii=False).encode("utf-8")).hexdigest()

    def _get_cache_file_path(self, cache_key: str, rules_enabled: bool) -> str:
        suffix = "ruleaugmented" if rules_enabled else "baseline"
        return os.path.join(self.cache_dir, f"{cache_key}_{suffix}.json")

    def get(self, cache_key: str, rules_enabled: bool = False) -> Optional[Recommendation]:
        """Return the cached Recommendation, or None on a miss or unreadable entry."""
        cache_file = self._get_cache_file_path(cache_key, rules_enabled)

        if not os.path.exists(cache_file):
            logger.debug(f"Cache miss for key: {cache_key}")
            return None

        try:
            with open(cache_file, 'r', encoding='utf-8') as f:
                cache_data = json.load(f)
            recommendation = Recommendation.model_validate(cache_data["data"])
        except (OSError, json.JSONDecodeError, KeyError, TypeError, PydanticValidationError) as e:
            logger.error(f"Error reading cache file {cache_file} (key: {cache_key}): {e}")
            return None

        logger.info(f"Cache hit for key: {cache_key}")
        return recommendation

    def put(self, cache_key: str, recommendation: Recommendation, rules_enabled: bool = False) -> bool:
        """
        Write a Recommendation to the cache.

        Returns:
            True if cached successfully, False otherwise
        """
        cache_file = self._get_cache_file_path(cache_key, rules_enabled)
        cache_payload = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "data": recommendation.model_dump(mode="json"),
        }

        try:
            os.makedirs(self.cache_dir, exist_ok=True)
            with open(cache_file, 'w', encoding='utf-8') as f:
                json.dump(cache_payload, f, ensure_ascii=False, indent=2)
        except (OSError, TypeError) as e:
            logger.error(f"Error writing cache file {cache_file} (key: {cache_key}): {e}")
            return False

        logger.info(f"Cached recommendation with key: {cache_key} to file: {cache_file}")
        return True

    def clear(self) -> int:
        """Remove all cache entries. Returns the number of files removed."""
        if not os.path.isdir(self.cache_dir):
            return 0

        removed_count = 0
        for filename in os.listdir(self.cache_dir):
            if filename.endswith(("_ruleaugmented.json", "_baseline.json")):
                try:
                    os.remove(os.path.join(self.cache_dir, filename))
                    removed_count += 1
                except OSError as e:
                    logger.error(f"Error removing cache file {filename}: {e}")

        logger.info(f"Removed {removed_count} cache files from {self.cache_dir}")
        return removed_count
