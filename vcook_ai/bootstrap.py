# bootstrap.py
"""Load curated ingredients straight into the Dictionary tier.

    python -m vcook_ai.bootstrap seed.json

The file holds a JSON list of records such as
{"vietnamese": "Thịt gà", "specific": "chicken", "general": "chicken",
 "category": "meat", "nutrition": {"calories": 239, "protein": 27, ...}}.
"""
import json
import logging
import sys
from typing import Any, Dict, Iterable, Optional

from pydantic import BaseModel, Field, ValidationError, model_validator

from vcook_ai.errors import DuplicateRace
from vcook_ai.schemas.ingredient import CacheEntry, NutritionPer100, Tier, Translation
from vcook_ai.store import Clock, DynamoIngredientStore, IngredientStore
from vcook_ai.usecases.translator import coerce_category
from vcook_ai.utils.normalizer import english_key, normalize

logger = logging.getLogger(__name__)


class SeedRecord(BaseModel):
    source_text: str = Field(..., min_length=1)
    specific: str = Field(..., min_length=1)
    general: Optional[str] = None
    category: Optional[str] = None
    nutrition: Optional[NutritionPer100] = None

    @model_validator(mode='before')
    @classmethod
    def accept_aliases(cls, data):
        if isinstance(data, dict) and "source_text" not in data:
            data = dict(data)
            data["source_text"] = data.get("vietnamese") or data.get("sourceText") or data.get("source")
            data.setdefault("specific", data.get("english"))
        return data


def _to_entry(record: SeedRecord, now) -> CacheEntry:
    specific = english_key(record.specific)
    return CacheEntry(
        tier=Tier.DICTIONARY,
        source_text=record.source_text.strip(),
        normalized_key=normalize(record.source_text),
        translation=Translation(
            specific=specific,
            general=english_key(record.general or "") or specific,
            category=coerce_category(record.category),
        ),
        reverse_key=specific,
        nutrition_per_100=record.nutrition,
        nutrition_source="CURATED",
        usage_count=0,
        added_by="SEED",
        created_at=now,
        last_used_at=now,
    )


def seed_dictionary(store: IngredientStore, records: Iterable[Dict[str, Any]],
                    clock: Optional[Clock] = None) -> Dict[str, int]:
    """
    Insert curated records into the Dictionary

    Records whose normalized key or English name is already in the Dictionary
    are skipped. A Translation Cache copy of a seeded key is deleted, since the
    Dictionary entry shadows it.

    Returns:
        Counts of added, skipped and invalid records
    """
    clock = clock or store.clock
    counts = {"added": 0, "skipped": 0, "invalid": 0}

    for raw in records:
        try:
            entry = _to_entry(SeedRecord.model_validate(raw), clock())
        except (ValidationError, ValueError) as e:
            logger.warning(f"Invalid seed record {raw!r}: {str(e)}")
            counts["invalid"] += 1
            continue

        if store.get(Tier.DICTIONARY, entry.normalized_key) is not None:
            logger.info(f"Dictionary already holds {entry.normalized_key}, skipping")
            counts["skipped"] += 1
            continue

        existing = store.query_by_reverse_key(entry.reverse_key)
        if existing is not None and existing.tier == Tier.DICTIONARY:
            logger.info(f"Dictionary already translates to {entry.reverse_key} "
                        f"({existing.normalized_key}), skipping {entry.normalized_key}")
            counts["skipped"] += 1
            continue

        try:
            store.put_if_absent(entry)
        except DuplicateRace:
            logger.warning(f"Concurrent insert of {entry.normalized_key}, skipping")
            counts["skipped"] += 1
            continue

        store.delete(Tier.TRANSLATION_CACHE, entry.normalized_key)
        counts["added"] += 1

    logger.info(f"Dictionary seed finished: {counts}")
    return counts


def main(argv=None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) != 1:
        print("usage: python -m vcook_ai.bootstrap <seed.json>", file=sys.stderr)
        return 2

    with open(argv[0], encoding="utf-8") as f:
        records = json.load(f)

    counts = seed_dictionary(DynamoIngredientStore(), records)
    print(f"Seeded Dictionary: {counts['added']} added, {counts['skipped']} skipped, "
          f"{counts['invalid']} invalid")
    return 0


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    sys.exit(main())
