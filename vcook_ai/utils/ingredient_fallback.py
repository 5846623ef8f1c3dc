# ingredient_fallback.py
import re
from typing import Dict

class IngredientFallback:
    """Reads nutrient figures out of a model reply that is not valid JSON"""

    NUTRIENT_PATTERNS = {
        'calories': r'calories|energy|kcal',
        'protein': r'proteins?',
        'carbs': r'carbs?|carbohydrates?',
        'fat': r'fats?|lipids',
        'fiber': r'fib(?:er|re)|dietary fiber',
    }

    def parse_llm_response(self, text: str) -> Dict[str, float]:
        """Extract nutrients from unstructured LLM response"""
        nutrients = {}
        text = text.lower()

        for nutrient, pattern in self.NUTRIENT_PATTERNS.items():
            if matches := re.search(rf"\b(?:{pattern})\b\"?\s*[:=]?\s*(-?\d+(?:\.\d+)?)", text):
                nutrients[nutrient] = float(matches.group(1))

        return nutrients
