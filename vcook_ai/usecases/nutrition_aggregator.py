import logging
from decimal import ROUND_HALF_UP, Decimal
from typing import Dict, List, Optional, Sequence

from vcook_ai.errors import InvalidIngredient, TranslationServiceFailure
from vcook_ai.metrics import AGGREGATED_LINES, MISSING_LINES
from vcook_ai.schemas.nutrition import (NUTRIENT_FIELDS, IngredientBreakdown, IngredientLine,
                                        NutritionResult, NutritionTotals, ProvenanceCounts)
from vcook_ai.usecases.lookup import LookupOrchestrator
from vcook_ai.utils.ingredient_parser import convert_to_grams, parse_quantity

logger = logging.getLogger(__name__)

ONE_DECIMAL = Decimal("0.1")
HUNDRED = Decimal(100)


def round_one(value: Decimal) -> Decimal:
    """Round half away from zero to one decimal place"""
    return value.quantize(ONE_DECIMAL, rounding=ROUND_HALF_UP)


def _decimal(value: float) -> Decimal:
    return Decimal(str(value))


def _totals(values: Dict[str, Decimal]) -> NutritionTotals:
    return NutritionTotals(**{field: float(round_one(values[field])) for field in NUTRIENT_FIELDS})


class NutritionAggregator:
    """Sums per-100g nutrition over the lines of a recipe"""

    def __init__(self, orchestrator: LookupOrchestrator):
        self.orchestrator = orchestrator

    def aggregate(self, lines: Sequence[IngredientLine], servings: Optional[float] = None) -> NutritionResult:
        """
        Calculate recipe nutrition

        A line that cannot be resolved, or whose entry has no nutrition data,
        is reported in ``missing`` and left out of the totals. Store failures
        are not absorbed: they abort the whole calculation.

        Args:
            lines: Recipe lines with free-form quantities
            servings: Optional number of servings; per-serving totals are
                only produced when it is greater than zero

        Returns:
            NutritionResult with totals, breakdown and provenance counts
        """
        logger.info(f"Calculating nutrition for {len(lines)} ingredient(s), servings={servings}")
        dictionary_hits = self.orchestrator.prefetch_dictionary(line.raw_text for line in lines)

        totals = {field: Decimal(0) for field in NUTRIENT_FIELDS}
        breakdown: List[IngredientBreakdown] = []
        missing: List[str] = []
        counts = ProvenanceCounts()

        for line in lines:
            item = self._process_line(line, dictionary_hits)
            if item is None:
                missing.append(line.raw_text)
                MISSING_LINES.inc()
                continue

            breakdown.append(item)
            counts.add(item.source)
            AGGREGATED_LINES.labels(provenance=item.source.value).inc()
            for field in NUTRIENT_FIELDS:
                totals[field] += _decimal(getattr(item, field))

        per_recipe = _totals(totals)
        per_serving = None
        if servings is not None and servings > 0:
            divisor = _decimal(servings)
            per_serving = _totals({field: _decimal(getattr(per_recipe, field)) / divisor
                                   for field in NUTRIENT_FIELDS})

        if missing:
            logger.warning(f"Nutrition data missing for {len(missing)} ingredient(s): {missing}")
        logger.info(f"Nutrition calculated: {per_recipe.calories} kcal, provenance {counts.model_dump()}")

        return NutritionResult(
            per_recipe=per_recipe,
            per_serving=per_serving,
            breakdown=breakdown,
            missing=missing,
            provenance_counts=counts,
        )

    def _process_line(self, line: IngredientLine, dictionary_hits) -> Optional[IngredientBreakdown]:
        try:
            resolved = self.orchestrator.resolve(line.raw_text, dictionary_hits)
        except InvalidIngredient as e:
            logger.warning(f"Skipping invalid ingredient '{line.raw_text}': {str(e)}")
            return None
        except TranslationServiceFailure as e:
            logger.error(f"Could not resolve ingredient '{line.raw_text}': {str(e)}")
            return None

        line.resolved = resolved
        if resolved.nutrition_per_100 is None:
            logger.warning(f"No nutrition data for '{line.raw_text}' ({resolved.normalized_key})")
            return None

        value, unit = parse_quantity(line.quantity_text)
        grams = convert_to_grams(value, unit, resolved.translation.specific)
        line.grams_equivalent = grams
        multiplier = _decimal(grams) / HUNDRED

        per_100 = resolved.nutrition_per_100
        # per-100 values are rounded first so 200g is exactly twice 100g
        scaled = {field: float(round_one(round_one(_decimal(getattr(per_100, field))) * multiplier))
                  for field in NUTRIENT_FIELDS}
        logger.debug(f"'{line.raw_text}': {line.quantity_text or 'default'} -> {grams}g")

        return IngredientBreakdown(
            ingredient=line.raw_text,
            normalized_key=resolved.normalized_key,
            english=resolved.translation.specific,
            amount=line.quantity_text or f"{value:g}{unit}",
            grams=grams,
            source=resolved.provenance,
            **scaled,
        )
