from typing import Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from .ingredient import LookupResult, Provenance

NUTRIENT_FIELDS = ("calories", "protein", "carbs", "fat", "fiber")


class IngredientLine(BaseModel):
    """One recipe line; built per aggregation request and never persisted"""
    raw_text: str = Field(..., min_length=1)
    quantity_text: str = ""
    resolved: Optional[LookupResult] = None
    grams_equivalent: Optional[float] = None

    @field_validator('raw_text')
    @classmethod
    def strip_raw_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Ingredient name must not be blank")
        return v


class NutritionTotals(BaseModel):
    calories: float = 0.0
    protein: float = 0.0
    carbs: float = 0.0
    fat: float = 0.0
    fiber: float = 0.0

    def to_json(self) -> Dict[str, float]:
        return self.model_dump()


class IngredientBreakdown(BaseModel):
    ingredient: str
    normalized_key: str
    english: str
    amount: str
    grams: float
    calories: float
    protein: float
    carbs: float
    fat: float
    fiber: float
    source: Provenance

    def to_json(self) -> dict:
        return {
            "ingredient": self.ingredient,
            "normalizedKey": self.normalized_key,
            "english": self.english,
            "amount": self.amount,
            "grams": self.grams,
            "calories": self.calories,
            "protein": self.protein,
            "carbs": self.carbs,
            "fat": self.fat,
            "fiber": self.fiber,
            "source": self.source.value,
        }


class ProvenanceCounts(BaseModel):
    dictionary: int = 0
    cache: int = 0
    ai: int = 0

    def add(self, provenance: Provenance) -> None:
        setattr(self, provenance.value, getattr(self, provenance.value) + 1)


class NutritionResult(BaseModel):
    per_recipe: NutritionTotals
    per_serving: Optional[NutritionTotals] = None
    breakdown: List[IngredientBreakdown] = Field(default_factory=list)
    missing: List[str] = Field(default_factory=list)
    provenance_counts: ProvenanceCounts = Field(default_factory=ProvenanceCounts)

    def to_json(self) -> dict:
        """Convert to the camelCase shape returned by the nutrition endpoint"""
        result = {
            "perRecipe": self.per_recipe.to_json(),
            "breakdown": [item.to_json() for item in self.breakdown],
            "provenanceCounts": self.provenance_counts.model_dump(),
        }
        if self.per_serving is not None:
            result["perServing"] = self.per_serving.to_json()
        if self.missing:
            result["missingIngredients"] = list(self.missing)
        return result


class LookupPayload(BaseModel):
    source_text: str = Field(..., min_length=1)

    @model_validator(mode='before')
    @classmethod
    def accept_aliases(cls, data):
        # POST bodies use sourceText; older clients send {"ingredient": "..."}
        if isinstance(data, dict) and "source_text" not in data:
            data = dict(data)
            data["source_text"] = data.get("sourceText") or data.get("ingredient") or data.get("vietnamese")
        return data

    @field_validator('source_text')
    @classmethod
    def strip_source_text(cls, v):
        v = v.strip()
        if not v:
            raise ValueError("Ingredient name is required")
        return v


class NutritionPayload(BaseModel):
    ingredients: List[IngredientLine] = Field(..., min_length=1)
    servings: Optional[float] = None

    @field_validator('ingredients', mode='before')
    @classmethod
    def coerce_ingredient_inputs(cls, v):
        if not isinstance(v, list):
            raise ValueError("Ingredients must be a list")
        return [_coerce_ingredient(item) for item in v]


def _coerce_ingredient(item: Union[str, dict, IngredientLine]) -> Union[dict, IngredientLine]:
    """Accept the ingredient shapes produced by the recipe editor and AI suggestions"""
    if isinstance(item, IngredientLine):
        return item
    if isinstance(item, str):
        return {"raw_text": item, "quantity_text": ""}
    if not isinstance(item, dict):
        raise ValueError(f"Unsupported ingredient format: {item!r}")

    raw_text = (item.get("raw_text") or item.get("sourceText") or item.get("vietnamese")
                or item.get("vietnameseName") or item.get("name") or "")
    quantity_text = next((item[k] for k in ("quantity_text", "quantityText", "amount")
                          if item.get(k) not in (None, "")), None)
    if quantity_text is None and item.get("quantity") is not None:
        unit = item.get("unit")
        quantity_text = f"{item['quantity']} {unit}" if unit else str(item["quantity"])
    # {"amount": 500} means 500 grams, same as "500"
    return {"raw_text": raw_text, "quantity_text": "" if quantity_text is None else str(quantity_text)}
