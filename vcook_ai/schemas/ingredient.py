import math
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator


class Tier(str, Enum):
    DICTIONARY = "DICTIONARY"
    TRANSLATION_CACHE = "TRANSLATION_CACHE"


class Provenance(str, Enum):
    DICTIONARY = "dictionary"
    CACHE = "cache"
    AI = "ai"

    @classmethod
    def for_tier(cls, tier: Tier) -> "Provenance":
        return cls.DICTIONARY if tier == Tier.DICTIONARY else cls.CACHE


class Category(str, Enum):
    MEAT = "meat"
    EGGS = "eggs"
    SEAFOOD = "seafood"
    VEGETABLES = "vegetables"
    CONDIMENTS = "condiments"
    OILS = "oils"
    GRAINS = "grains"
    FRUITS = "fruits"
    DAIRY = "dairy"
    HERBS = "herbs"
    LEGUMES = "legumes"
    NUTS = "nuts"
    AROMATICS = "aromatics"


class Translation(BaseModel):
    specific: str
    general: str
    category: Category

    def to_json(self) -> dict:
        return {
            "specific": self.specific,
            "general": self.general,
            "category": self.category.value,
        }


class NutritionPer100(BaseModel):
    """Nutrition per 100 g (or 100 ml) of an ingredient"""
    calories: float = Field(0.0, ge=0)
    protein: float = Field(0.0, ge=0)
    carbs: float = Field(0.0, ge=0)
    fat: float = Field(0.0, ge=0)
    fiber: float = Field(0.0, ge=0)

    @field_validator('calories', 'protein', 'carbs', 'fat', 'fiber')
    @classmethod
    def one_decimal(cls, v):
        # Stored at the precision totals are reported in, so scaling stays linear
        if not math.isfinite(v):
            raise ValueError("Nutrient amounts must be finite")
        return float(Decimal(str(v)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP))

    @classmethod
    def zero(cls) -> "NutritionPer100":
        return cls()

    def to_json(self) -> dict:
        return self.model_dump()


class CacheEntry(BaseModel):
    """One ingredient row, in either the Dictionary or the Translation Cache tier"""
    tier: Tier
    source_text: str
    normalized_key: str = Field(..., min_length=1)
    translation: Translation
    reverse_key: str = Field(..., min_length=1)
    nutrition_per_100: Optional[NutritionPer100] = None
    nutrition_source: str = "AI"
    usage_count: int = Field(1, ge=0)
    added_by: str = "AI"
    created_at: datetime
    last_used_at: datetime
    expires_at: Optional[datetime] = None
    promoted_at: Optional[datetime] = None

    @field_validator('expires_at')
    @classmethod
    def dictionary_entries_never_expire(cls, v, info):
        if v is not None and info.data.get('tier') == Tier.DICTIONARY:
            raise ValueError("Dictionary entries are permanent and cannot carry expires_at")
        return v

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now


class ParsedTranslation(BaseModel):
    """Model output that passed schema checks"""
    kind: Literal["parsed"] = "parsed"
    specific: str = Field(..., min_length=1)
    general: str = Field(..., min_length=1)
    category: Category

    def to_translation(self) -> Translation:
        return Translation(specific=self.specific, general=self.general, category=self.category)


class RejectedInput(BaseModel):
    """Input refused locally or judged non-food by the model"""
    kind: Literal["rejected"] = "rejected"
    source_text: str
    reason: str


TranslationOutcome = Union[ParsedTranslation, RejectedInput]


class LookupResult(BaseModel):
    found: bool = True
    source_text: str
    normalized_key: str
    translation: Translation
    provenance: Provenance
    nutrition_per_100: Optional[NutritionPer100] = None

    @property
    def category(self) -> Category:
        return self.translation.category

    def to_json(self) -> dict:
        """Convert to the camelCase shape returned by the lookup endpoint"""
        return {
            "found": self.found,
            "translation": self.translation.to_json(),
            "category": self.category.value,
            "normalizedKey": self.normalized_key,
            "provenance": self.provenance.value,
        }
