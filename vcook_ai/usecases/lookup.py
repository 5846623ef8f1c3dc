# lookup.py
"""Dictionary -> Translation Cache -> AI lookup with auto-promotion.

Flow for one ingredient name:

1. Normalize ("Thịt Ba Chỉ" -> "thit-ba-chi").
2. Dictionary point-get. A hit answers immediately, without side effects.
3. Translation Cache point-get. A hit increments usage_count atomically; the
   call whose increment returns exactly the promotion threshold promotes the
   entry to the Dictionary before answering.
4. Miss everywhere: translate with the model (may reject the input) and
   estimate nutrition.
5. Insert into the Translation Cache behind four duplicate guards:
   normalization, pre-insert checks (both tiers plus the reverse-key index),
   a conditional write, and adoption of the winner when the write loses.
6. Answer with translation, normalized key and provenance.

Promotion is two steps (conditional Dictionary insert, then Translation
Cache delete) without a transaction. If a worker dies between the steps the
stale cache row is unreachable, because the Dictionary is always read first,
and its ttl eventually reclaims it.
"""
import logging
import time
from datetime import timedelta
from typing import Dict, Iterable, List, Optional

from vcook_ai.config import StoreConfig, store_config
from vcook_ai.errors import DuplicateRace, InvalidIngredient
from vcook_ai.metrics import DUPLICATE_RACES, LOOKUP_COUNTER, LOOKUP_TIME, PROMOTIONS
from vcook_ai.schemas.ingredient import (CacheEntry, LookupResult, NutritionPer100,
                                         ParsedTranslation, Provenance, RejectedInput, Tier)
from vcook_ai.store import IngredientStore
from vcook_ai.usecases.nutrition_estimator import NutritionEstimator
from vcook_ai.usecases.translator import IngredientTranslator
from vcook_ai.utils.normalizer import english_key, normalize

logger = logging.getLogger(__name__)


class LookupOrchestrator:
    """Resolves ingredient names through the two cache tiers and the AI fallback"""

    def __init__(self, store: IngredientStore, translator: IngredientTranslator,
                 estimator: NutritionEstimator, custom_config: Optional[StoreConfig] = None):
        """
        Args:
            store: Store adapter holding both tiers
            translator: AI fallback translator
            estimator: AI nutrition estimator for new entries
            custom_config: Optional store configuration (ttl, promotion threshold)
        """
        self.store = store
        self.translator = translator
        self.estimator = estimator
        self.config = custom_config or store_config
        self.promotion_threshold = self.config.promotion_threshold
        self.cache_ttl = timedelta(days=self.config.cache_ttl_days)

    def lookup(self, source_text: str) -> LookupResult:
        """
        Resolve one ingredient name

        Raises:
            InvalidIngredient: If the text is empty or not a food ingredient
            StoreUnavailable: If the store fails
            TranslationServiceFailure: If the AI fallback is needed and fails
        """
        start_time = time.time()
        source_text, key = self._normalize(source_text)

        result = self._from_dictionary(source_text, key) or self._resolve_after_dictionary(source_text, key)
        self._record(result, start_time)
        return result

    def lookup_many(self, source_texts: Iterable[str]) -> List[LookupResult]:
        """
        Resolve several names, fetching all Dictionary hits in one batch

        Names that fail are not skipped: the first error is raised, so callers
        that tolerate partial failure should call lookup() per name.
        """
        source_texts = list(source_texts)
        dictionary_hits = self.prefetch_dictionary(source_texts)
        return [self.resolve(text, dictionary_hits) for text in source_texts]

    def prefetch_dictionary(self, source_texts: Iterable[str]) -> Dict[str, CacheEntry]:
        """Batch-read the Dictionary entries for names whose keys are non-empty"""
        keys = [normalize(text) for text in source_texts]
        return self.store.batch_get(Tier.DICTIONARY, [k for k in keys if k])

    def resolve(self, source_text: str, dictionary_hits: Optional[Dict[str, CacheEntry]] = None) -> LookupResult:
        """lookup() that can reuse a prefetched Dictionary batch"""
        if dictionary_hits is None:
            return self.lookup(source_text)

        start_time = time.time()
        source_text, key = self._normalize(source_text)
        entry = dictionary_hits.get(key)
        if entry is not None:
            result = self._respond(source_text, entry, Provenance.DICTIONARY)
        else:
            result = self._resolve_after_dictionary(source_text, key)
        self._record(result, start_time)
        return result

    def _normalize(self, source_text: str):
        source_text = (source_text or "").strip()
        key = normalize(source_text)
        if not key:
            raise InvalidIngredient(source_text, "empty after normalization")
        logger.debug(f"Ingredient normalized: '{source_text}' -> {key}")
        return source_text, key

    def _record(self, result: LookupResult, start_time: float) -> None:
        LOOKUP_COUNTER.labels(provenance=result.provenance.value).inc()
        LOOKUP_TIME.labels(provenance=result.provenance.value).observe(time.time() - start_time)

    def _resolve_after_dictionary(self, source_text: str, key: str) -> LookupResult:
        return self._from_cache(source_text, key) or self._from_ai(source_text, key)

    def _from_dictionary(self, source_text: str, key: str) -> Optional[LookupResult]:
        entry = self.store.get(Tier.DICTIONARY, key)
        if entry is None:
            return None
        logger.info(f"Dictionary hit: '{source_text}' -> {entry.translation.specific}")
        return self._respond(source_text, entry, Provenance.DICTIONARY)

    def _from_cache(self, source_text: str, key: str) -> Optional[LookupResult]:
        entry = self.store.get(Tier.TRANSLATION_CACHE, key)
        if entry is None:
            return None

        updated = self.store.increment_usage(Tier.TRANSLATION_CACHE, key)
        if updated is None:
            # Promoted or reclaimed since the read; the read copy is still a valid answer
            dictionary_entry = self.store.get(Tier.DICTIONARY, key)
            if dictionary_entry is not None:
                return self._respond(source_text, dictionary_entry, Provenance.DICTIONARY)
            return self._respond(source_text, entry, Provenance.CACHE)

        logger.info(f"Translation Cache hit: '{source_text}' -> {updated.translation.specific} "
                    f"(usage {updated.usage_count})")

        # Only the increment that lands exactly on the threshold promotes
        if updated.usage_count == self.promotion_threshold:
            promoted = self.promote(updated)
            return self._respond(source_text, promoted, Provenance.DICTIONARY)

        return self._respond(source_text, updated, Provenance.CACHE)

    def promote(self, entry: CacheEntry) -> CacheEntry:
        """
        Move a Translation Cache entry into the Dictionary

        Idempotent: if the Dictionary already holds the key the insert is
        treated as done and the cache row is still deleted.
        """
        logger.info(f"Ingredient reached promotion threshold: {entry.normalized_key} "
                    f"(usage {entry.usage_count})")
        promoted = entry.model_copy(update={
            "tier": Tier.DICTIONARY,
            "expires_at": None,
            "promoted_at": self.store.clock(),
            "added_by": "PROMOTED",
        })

        try:
            self.store.put_if_absent(promoted)
            PROMOTIONS.inc()
            logger.info(f"Ingredient promoted to Dictionary: {entry.normalized_key}")
        except DuplicateRace:
            logger.warning(f"Dictionary already holds {entry.normalized_key}, finishing promotion")
            promoted = self.store.get(Tier.DICTIONARY, entry.normalized_key) or promoted

        self.store.delete(Tier.TRANSLATION_CACHE, entry.normalized_key)
        return promoted

    def _from_ai(self, source_text: str, key: str) -> LookupResult:
        logger.info(f"Cache miss - using AI translation for '{source_text}' ({key})")
        outcome = self.translator.translate(source_text)
        if isinstance(outcome, RejectedInput):
            raise InvalidIngredient(source_text, outcome.reason)

        nutrition = self.estimator.estimate_nutrition(outcome.specific)
        return self._insert(source_text, key, outcome, nutrition)

    def _insert(self, source_text: str, key: str, candidate: ParsedTranslation,
                nutrition: NutritionPer100) -> LookupResult:
        reverse_key = english_key(candidate.specific)

        # Pre-insert checks: another worker may have finished while the model was thinking
        existing = (self.store.get(Tier.DICTIONARY, key)
                    or self.store.get(Tier.TRANSLATION_CACHE, key))
        reason = "normalized_key"
        if existing is None:
            existing = self.store.query_by_reverse_key(reverse_key)
            reason = "reverse_key"
        if existing is not None:
            return self._adopt(source_text, key, existing, reason)

        now = self.store.clock()
        entry = CacheEntry(
            tier=Tier.TRANSLATION_CACHE,
            source_text=source_text,
            normalized_key=key,
            translation=candidate.to_translation(),
            reverse_key=reverse_key,
            nutrition_per_100=nutrition,
            usage_count=1,
            created_at=now,
            last_used_at=now,
            expires_at=now + self.cache_ttl,
        )

        try:
            self.store.put_if_absent(entry)
        except DuplicateRace:
            logger.warning(f"Race condition detected during Translation Cache insert of {key}")
            winner = (self.store.get(Tier.TRANSLATION_CACHE, key)
                      or self.store.get(Tier.DICTIONARY, key))
            if winner is not None:
                return self._adopt(source_text, key, winner, "race")
            logger.warning(f"Winning entry for {key} vanished, answering with own translation")
            return self._respond(source_text, entry, Provenance.AI)

        logger.info(f"New ingredient added to Translation Cache: '{source_text}' -> "
                    f"{entry.translation.specific}, expires {entry.expires_at.isoformat()}")
        return self._respond(source_text, entry, Provenance.AI)

    def _adopt(self, source_text: str, key: str, existing: CacheEntry, reason: str) -> LookupResult:
        DUPLICATE_RACES.labels(reason=reason).inc()
        logger.warning(f"Duplicate detected ({reason}) for '{source_text}', adopting "
                       f"{existing.tier.value} entry {existing.normalized_key}")
        # A different spelling keeps its own key; only the translation is shared
        return self._respond(source_text, existing, Provenance.for_tier(existing.tier), key=key)

    def _respond(self, source_text: str, entry: CacheEntry, provenance: Provenance,
                 key: Optional[str] = None) -> LookupResult:
        return LookupResult(
            source_text=source_text,
            normalized_key=key or entry.normalized_key,
            translation=entry.translation,
            provenance=provenance,
            nutrition_per_100=entry.nutrition_per_100,
        )
