# translator.py
import logging
from typing import Any, Dict, Optional

from pydantic import ValidationError

from vcook_ai.client import BedrockClient, BedrockClientError, BedrockTimeoutError
from vcook_ai.errors import TranslationServiceFailure, TranslationTimeout
from vcook_ai.metrics import INVALID_INGREDIENTS
from vcook_ai.prompts import CATEGORY_LIST, STRICT_JSON_REMINDER, TRANSLATE_INGREDIENT
from vcook_ai.schemas.ingredient import Category, ParsedTranslation, RejectedInput, TranslationOutcome
from vcook_ai.usecases.base import UseCase, extract_json
from vcook_ai.utils.normalizer import english_key
from vcook_ai.utils.validations import food_input_rejection

logger = logging.getLogger(__name__)

DEFAULT_CATEGORY = Category.CONDIMENTS

# Synonyms the model tends to answer with, mapped onto the 13 allowed categories
CATEGORY_SYNONYMS = {
    'ingredient': Category.CONDIMENTS,
    'other': Category.CONDIMENTS,
    'spice': Category.CONDIMENTS,
    'spices': Category.CONDIMENTS,
    'seasoning': Category.CONDIMENTS,
    'seasonings': Category.CONDIMENTS,
    'sauce': Category.CONDIMENTS,
    'sauces': Category.CONDIMENTS,
    'condiment': Category.CONDIMENTS,
    'sugar': Category.CONDIMENTS,
    'unknown': Category.CONDIMENTS,
    'poultry': Category.MEAT,
    'beef': Category.MEAT,
    'pork': Category.MEAT,
    'chicken': Category.MEAT,
    'lamb': Category.MEAT,
    'offal': Category.MEAT,
    'protein': Category.MEAT,
    'fish': Category.SEAFOOD,
    'shellfish': Category.SEAFOOD,
    'shrimp': Category.SEAFOOD,
    'mushroom': Category.VEGETABLES,
    'mushrooms': Category.VEGETABLES,
    'fungi': Category.VEGETABLES,
    'vegetable': Category.VEGETABLES,
    'produce': Category.VEGETABLES,
    'fruit': Category.FRUITS,
    'grain': Category.GRAINS,
    'noodle': Category.GRAINS,
    'noodles': Category.GRAINS,
    'rice': Category.GRAINS,
    'bread': Category.GRAINS,
    'pasta': Category.GRAINS,
    'flour': Category.GRAINS,
    'herb': Category.HERBS,
    'aromatic': Category.AROMATICS,
    'oil': Category.OILS,
    'fat': Category.OILS,
    'fats': Category.OILS,
    'nut': Category.NUTS,
    'seed': Category.NUTS,
    'seeds': Category.NUTS,
    'bean': Category.LEGUMES,
    'beans': Category.LEGUMES,
    'legume': Category.LEGUMES,
    'tofu': Category.LEGUMES,
    'egg': Category.EGGS,
    'milk': Category.DAIRY,
    'cheese': Category.DAIRY,
    'butter': Category.DAIRY,
    'cream': Category.DAIRY,
}


def coerce_category(value: Any) -> Category:
    """Map whatever the model returned onto one of the allowed categories"""
    raw = str(value or "unknown").strip().lower()
    try:
        return Category(raw)
    except ValueError:
        pass

    category = CATEGORY_SYNONYMS.get(raw, DEFAULT_CATEGORY)
    logger.warning(f"Invalid category from AI '{value}', mapped to '{category.value}'")
    return category


class MalformedModelOutput(Exception):
    """The model's reply could not be turned into a translation"""
    pass


class IngredientTranslator(UseCase):
    """Translates a Vietnamese ingredient name with the completion model"""

    def __init__(self, client: Optional[BedrockClient] = None, repair_attempts: int = 1):
        super().__init__(TRANSLATE_INGREDIENT, client=client)
        self.repair_attempts = repair_attempts
        logger.debug(f"Initialized IngredientTranslator with {repair_attempts} repair attempt(s)")

    def translate(self, source_text: str) -> TranslationOutcome:
        """
        Translate an ingredient name

        Args:
            source_text: Ingredient name as typed by the user

        Returns:
            ParsedTranslation, or RejectedInput when the text is not a food item
            or the model output stays malformed after repair

        Raises:
            TranslationServiceFailure: If the model call itself fails or times out
        """
        reason = food_input_rejection(source_text)
        if reason:
            logger.warning(f"Invalid food input rejected locally: '{source_text}' ({reason})")
            INVALID_INGREDIENTS.labels(stage="local").inc()
            return RejectedInput(source_text=source_text, reason=reason)

        prompt = self.prompt_for({"source_text": source_text, "categories": CATEGORY_LIST})

        for attempt in range(self.repair_attempts + 1):
            text = self._call_model(prompt if attempt == 0 else prompt + STRICT_JSON_REMINDER)
            try:
                outcome = self.parse_response(source_text, text)
            except MalformedModelOutput as e:
                logger.warning(f"Malformed translation for '{source_text}' (attempt {attempt + 1}): {str(e)}")
                continue

            if isinstance(outcome, RejectedInput):
                INVALID_INGREDIENTS.labels(stage="model").inc()
            else:
                logger.info(f"AI translation completed: '{source_text}' -> {outcome.specific} ({outcome.category.value})")
            return outcome

        INVALID_INGREDIENTS.labels(stage="malformed").inc()
        return RejectedInput(source_text=source_text, reason="not recognised as a food ingredient")

    def _call_model(self, prompt: str) -> str:
        try:
            return self.complete(prompt)
        except BedrockTimeoutError as e:
            raise TranslationTimeout(f"Translation timed out: {str(e)}") from e
        except BedrockClientError as e:
            raise TranslationServiceFailure(f"Failed to translate ingredient with AI: {str(e)}") from e

    def parse_response(self, source_text: str, text: str) -> TranslationOutcome:
        """
        Validate the model's reply field by field

        Raises:
            MalformedModelOutput: If no usable translation can be extracted
        """
        parsed = extract_json(text)
        if parsed is None:
            raise MalformedModelOutput("no JSON object in model output")

        if str(parsed.get("error", "")).upper() == "NOT_FOOD":
            logger.warning(f"AI rejected input as non-food: '{source_text}'")
            return RejectedInput(source_text=source_text, reason="not a food ingredient")

        specific = self._clean_name(parsed.get("specific") or parsed.get("english"))
        general = self._clean_name(parsed.get("general")) or specific
        if not specific:
            raise MalformedModelOutput(f"missing 'specific' in {parsed}")

        try:
            return ParsedTranslation(
                specific=specific,
                general=general,
                category=coerce_category(parsed.get("category")),
            )
        except ValidationError as e:
            raise MalformedModelOutput(str(e)) from e

    @staticmethod
    def _clean_name(value: Any) -> str:
        if not isinstance(value, str):
            return ""
        return english_key(value)

    def run(self, data: Dict[str, Any]) -> TranslationOutcome:
        return self.translate(data["source_text"])
