from vcook_ai.schemas.nutrition import LookupPayload, NutritionPayload

USECASE_SCHEMAS = {
    "lookup_ingredient": LookupPayload,
    "calculate_nutrition": NutritionPayload
}
