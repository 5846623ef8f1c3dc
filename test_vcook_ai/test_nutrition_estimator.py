import pytest
from pydantic import ValidationError

from vcook_ai.client import BedrockClientError
from vcook_ai.schemas.ingredient import NutritionPer100
from vcook_ai.usecases.nutrition_estimator import NutritionEstimator
from vcook_ai.utils.ingredient_fallback import IngredientFallback


class TestNutritionEstimator:
    def test_json_reply(self, fake_completion_client):
        client = fake_completion_client(rules=[
            (fake_completion_client.nutrition_marker("tofu"),
             '{"calories": 76, "protein": 8.1, "carbs": 1.9, "fat": 4.8, "fiber": 0.3}'),
        ])

        nutrition = NutritionEstimator(client=client).estimate_nutrition("tofu")

        assert nutrition == NutritionPer100(calories=76, protein=8.1, carbs=1.9, fat=4.8, fiber=0.3)

    def test_prose_reply_uses_regex_fallback(self, fake_completion_client):
        client = fake_completion_client(default="Tofu (per 100g): calories 76, protein: 8.1 g, carbohydrates 1.9 g, fat 4.8 g.")

        nutrition = NutritionEstimator(client=client).estimate_nutrition("tofu")

        assert nutrition.calories == 76
        assert nutrition.protein == 8.1
        assert nutrition.carbs == 1.9
        assert nutrition.fat == 4.8
        assert nutrition.fiber == 0

    def test_negative_and_garbage_values_clamped(self, fake_completion_client):
        client = fake_completion_client(default='{"calories": -20, "protein": "lots", "carbs": null, "fat": "3.5"}')

        nutrition = NutritionEstimator(client=client).estimate_nutrition("tofu")

        assert nutrition == NutritionPer100(calories=0, protein=0, carbs=0, fat=3.5, fiber=0)

    def test_non_finite_values_clamped(self, fake_completion_client):
        client = fake_completion_client(default='{"calories": 1e400, "protein": 12.345, "fat": "inf", "carbs": "-inf"}')

        nutrition = NutritionEstimator(client=client).estimate_nutrition("tofu")

        assert nutrition == NutritionPer100(calories=0, protein=12.3, carbs=0, fat=0, fiber=0)

    def test_unusable_reply_gives_zeros(self, fake_completion_client):
        client = fake_completion_client(default="I don't know.")
        assert NutritionEstimator(client=client).estimate_nutrition("tofu") == NutritionPer100.zero()

    def test_model_failure_gives_zeros(self, fake_completion_client):
        client = fake_completion_client(rules=[("tofu", BedrockClientError("ThrottlingException"))])
        assert NutritionEstimator(client=client).estimate_nutrition("tofu") == NutritionPer100.zero()

    def test_run(self, fake_completion_client):
        client = fake_completion_client(default='{"calories": 10}')
        assert NutritionEstimator(client=client).run({"ingredient": "water-spinach"}).calories == 10


class TestIngredientFallback:
    @pytest.mark.parametrize("text,expected", [
        ("Calories: 165, Protein: 31g, Fat: 3.6g", {"calories": 165, "protein": 31, "fat": 3.6}),
        ('"energy": 52, "fibre": 2.4', {"calories": 52, "fiber": 2.4}),
        ("no figures here", {}),
    ])
    def test_parse_llm_response(self, text, expected):
        assert IngredientFallback().parse_llm_response(text) == expected


class TestNutritionPer100:
    def test_rounds_half_up_to_one_decimal(self):
        nutrition = NutritionPer100(calories=52.25, protein=0.05, carbs=13.95, fat=0.04, fiber=2.4)
        assert nutrition.model_dump() == {"calories": 52.3, "protein": 0.1, "carbs": 14.0, "fat": 0.0, "fiber": 2.4}

    @pytest.mark.parametrize("value", [float("inf"), float("nan"), -1])
    def test_rejects_unusable_amounts(self, value):
        with pytest.raises(ValidationError):
            NutritionPer100(calories=value)
