import logging
import math
from typing import Any, Dict, Optional

from vcook_ai.client import BedrockClient, BedrockClientError
from vcook_ai.prompts import ESTIMATE_NUTRITION
from vcook_ai.schemas.ingredient import NutritionPer100
from vcook_ai.schemas.nutrition import NUTRIENT_FIELDS
from vcook_ai.usecases.base import UseCase, extract_json
from vcook_ai.utils.ingredient_fallback import IngredientFallback

logger = logging.getLogger(__name__)


def _as_amount(value: Any) -> float:
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(amount) or amount < 0:
        return 0.0
    return amount


class NutritionEstimator(UseCase):
    """Best-effort per-100g nutrition estimate for a newly learned ingredient"""

    def __init__(self, client: Optional[BedrockClient] = None):
        super().__init__(ESTIMATE_NUTRITION, client=client)
        self.fallback_parser = IngredientFallback()

    def estimate_nutrition(self, specific: str) -> NutritionPer100:
        """
        Estimate nutrition per 100g

        Never raises: any failure yields an all-zero record so the new
        ingredient can still be cached and summed.
        """
        try:
            text = self.complete(self.prompt_for({"ingredient": specific}))
        except BedrockClientError as e:
            logger.error(f"AI nutrition lookup failed for {specific}: {str(e)}")
            return NutritionPer100.zero()

        data = extract_json(text)
        if data is None:
            data = self.fallback_parser.parse_llm_response(text)
            if not data:
                logger.error(f"No nutrition figures in AI reply for {specific}: {text!r}")
                return NutritionPer100.zero()
            logger.warning(f"Used regex fallback to read nutrition for {specific}")

        nutrition = NutritionPer100(**{field: _as_amount(data.get(field)) for field in NUTRIENT_FIELDS})
        logger.info(f"AI nutrition data retrieved for {specific}: {nutrition.to_json()}")
        return nutrition

    def run(self, data: Dict[str, Any]) -> NutritionPer100:
        return self.estimate_nutrition(data["ingredient"])
