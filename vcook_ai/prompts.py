import string
from dataclasses import dataclass
from typing import Any

from .schemas.ingredient import Category

@dataclass(frozen=True)
class PromptTemplate:
    """Data class for storing prompt templates"""
    name: str
    use_case: str
    template_text: str
    max_tokens: int
    temperature: float = 0.1

    def render(self, **values: Any) -> str:
        return string.Template(self.template_text).safe_substitute(
            {k: str(v) for k, v in values.items()}
        )


CATEGORY_LIST = ", ".join(c.value for c in Category)

TRANSLATE_INGREDIENT = PromptTemplate(
    name="translate_ingredient",
    use_case="translator",
    max_tokens=150,
    template_text=(
        "You are a culinary translator specialising in Vietnamese cooking: regional ingredient "
        "names, offal and special cuts, herbs and local produce.\n\n"
        "Translate this Vietnamese ingredient into English.\n\n"
        "Ingredient: \"${source_text}\"\n\n"
        "Rules:\n"
        "1. If the text is not a food ingredient (random text, a person's name, something inedible), "
        "reply exactly {\"error\": \"NOT_FOOD\"}.\n"
        "2. \"category\" must be one of: ${categories}.\n"
        "3. \"specific\" is the precise English name, \"general\" is the broader family.\n"
        "4. Use lowercase words joined by hyphens, e.g. \"pork-belly\", never \"Pork Belly\".\n\n"
        "Examples:\n"
        "- \"thịt ba chỉ\" -> {\"specific\": \"pork-belly\", \"general\": \"pork\", \"category\": \"meat\"}\n"
        "- \"mề gà\" -> {\"specific\": \"chicken-gizzard\", \"general\": \"chicken-offal\", \"category\": \"meat\"}\n"
        "- \"hành lá\" -> {\"specific\": \"scallion\", \"general\": \"onion\", \"category\": \"aromatics\"}\n"
        "- \"nước mắm\" -> {\"specific\": \"fish-sauce\", \"general\": \"fish-sauce\", \"category\": \"condiments\"}\n"
        "- \"đậu hũ\" -> {\"specific\": \"tofu\", \"general\": \"soybean\", \"category\": \"legumes\"}\n\n"
        "Respond ONLY with a JSON object: {\"specific\": \"...\", \"general\": \"...\", \"category\": \"...\"}"
    ),
)

STRICT_JSON_REMINDER = (
    "\n\nYour previous answer could not be parsed. Reply with the JSON object only, "
    "no prose and no code fences."
)

ESTIMATE_NUTRITION = PromptTemplate(
    name="estimate_nutrition",
    use_case="nutrition_estimator",
    max_tokens=100,
    template_text=(
        "You are a nutrition expert. Provide estimated nutrition per 100g for: \"${ingredient}\"\n\n"
        "Use USDA FoodData Central values as reference. Return ONLY a JSON object with numbers, "
        "no explanation:\n"
        "{\"calories\": <number>, \"protein\": <number>, \"carbs\": <number>, \"fat\": <number>, \"fiber\": <number>}"
    ),
)
