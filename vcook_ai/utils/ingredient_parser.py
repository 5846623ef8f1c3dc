# ingredient_parser.py
import re
import unicodedata
from typing import Optional, Tuple
import logging

from vcook_ai.utils.normalizer import VIETNAMESE_ACCENTS

logger = logging.getLogger(__name__)

DEFAULT_VALUE = 100.0
DEFAULT_UNIT = 'g'

# Grams per unit. Volumes assume water density; household units are typical portions.
UNIT_TO_GRAMS = {
    # weight
    'g': 1,
    'gr': 1,
    'gram': 1,
    'grams': 1,
    'gam': 1,
    'mg': 0.001,
    'kg': 1000,
    'kilogram': 1000,
    'ký': 1000,
    'kí': 1000,
    'lạng': 100,
    'cân': 600,
    'oz': 28.35,
    'ounce': 28.35,
    'lb': 453.6,
    'pound': 453.6,
    # volume
    'ml': 1,
    'milliliter': 1,
    'l': 1000,
    'liter': 1000,
    'litre': 1000,
    'lít': 1000,
    # spoons and cups
    'tablespoon': 15,
    'tbsp': 15,
    'thìa': 15,
    'thìa canh': 15,
    'muỗng': 15,
    'muỗng canh': 15,
    'muỗng súp': 15,
    'mc': 15,
    'teaspoon': 5,
    'tsp': 5,
    'thìa cà phê': 5,
    'muỗng cà phê': 5,
    'muỗng cà': 5,
    'cup': 240,
    'cốc': 240,
    'chén': 200,
    'ly': 200,
    'bát': 300,
    'tô': 400,
    # pieces
    'piece': 100,
    'pc': 100,
    'pcs': 100,
    'cái': 100,
    'miếng': 80,
    'khoanh': 60,
    'slice': 30,
    'lát': 30,
    'thanh': 50,
    'xiên': 80,
    'con': 150,
    'viên': 15,
    # produce
    'củ': 100,
    'cây': 20,
    'stalk': 20,
    'nhánh': 10,
    'lá': 2,
    'leaf': 2,
    'bó': 50,
    'bunch': 50,
    'nắm': 30,
    'handful': 30,
    'mớ': 100,
    'trái': 50,
    'quả': 50,
    'múi': 30,
    'tép': 5,
    'clove': 5,
    # packaged and pinches
    'gói': 80,
    'vắt': 100,
    'phần': 200,
    'hạt': 1,
    'nhúm': 2,
    'pinch': 2,
    'chút': 1,
}

# Ingredient-specific overrides, keyed by the English specific name
INGREDIENT_UNIT_CONVERSIONS = {
    'chicken-egg': {'piece': 50, 'quả': 50, 'trái': 50, 'egg': 50},
    'egg': {'piece': 50, 'quả': 50, 'trái': 50, 'egg': 50},
    'duck-egg': {'piece': 70, 'quả': 70, 'trái': 70},
    'quail-egg': {'piece': 10, 'quả': 10, 'trái': 10},
    'garlic': {'củ': 30, 'clove': 5, 'tép': 5, 'piece': 30},
    'shallot': {'củ': 15, 'piece': 15},
    'onion': {'củ': 80, 'piece': 80},
    'ginger': {'củ': 50, 'lát': 3, 'slice': 3},
    'scallion': {'cây': 10, 'stalk': 10, 'nhánh': 10},
    'lemongrass': {'cây': 25, 'stalk': 25},
    'chili': {'trái': 5, 'quả': 5, 'piece': 5},
    'lime': {'trái': 60, 'quả': 60, 'piece': 60},
    'tomato': {'trái': 120, 'quả': 120, 'piece': 120},
    'tofu': {'miếng': 100, 'bìa': 200, 'piece': 100},
    'rice': {'cup': 185, 'chén': 150, 'bát': 150},
    'cooked-rice': {'chén': 150, 'bát': 150, 'cup': 160},
    'all-purpose-flour': {'cup': 125, 'tablespoon': 8},
    'flour': {'cup': 125, 'tablespoon': 8},
    'sugar': {'cup': 200, 'tablespoon': 12.5, 'teaspoon': 4},
    'salt': {'tablespoon': 18, 'teaspoon': 6},
    'fish-sauce': {'tablespoon': 18, 'teaspoon': 6},
    'vegetable-oil': {'tablespoon': 13.6, 'teaspoon': 4.5, 'cup': 218},
    'butter': {'tablespoon': 14, 'cup': 227},
    'honey': {'tablespoon': 21, 'cup': 340},
    'shrimp': {'con': 15, 'piece': 15},
}

QUANTITY_PATTERN = re.compile(
    r'(?P<whole>\d+(?:[.,]\d+)?)'
    r'(?:\s+(?P<mixed_num>\d+)\s*/\s*(?P<mixed_den>\d+)'           # 1 1/2
    r'|\s*/\s*(?P<den>\d+)'                                        # 1/2
    r'|\s*(?:-|~|to|đến)\s*(?P<high>\d+(?:[.,]\d+)?))?'            # 2-3, 2 to 3
    r'\s*(?P<unit>[^\W\d_][^\d]*)?'
)


def _number(text: str) -> float:
    # "1,000" is a thousands separator, "1,5" a decimal comma
    if re.fullmatch(r'\d+,\d{3}', text):
        text = text.replace(',', '')
    return float(text.replace(',', '.'))


def parse_quantity(qty_str: Optional[str]) -> Tuple[float, str]:
    """
    Split a free-form amount into (value, unit)

    "500g" -> (500.0, "g"), "2 cups" -> (2.0, "cups"), "1/2 cup" -> (0.5, "cup"),
    "1 1/2 cups" -> (1.5, "cups"), "2-3 quả" -> (2.5, "quả"),
    "2 muỗng canh" -> (2.0, "muỗng canh"). Unparsable text gives (100.0, "g").
    """
    if not qty_str or not qty_str.strip():
        return DEFAULT_VALUE, DEFAULT_UNIT

    match = QUANTITY_PATTERN.search(qty_str.lower())
    if not match:
        logger.warning(f"Couldn't parse quantity: {qty_str}")
        return DEFAULT_VALUE, DEFAULT_UNIT

    value = _number(match.group('whole'))
    if match.group('mixed_den') and float(match.group('mixed_den')):
        value += float(match.group('mixed_num')) / float(match.group('mixed_den'))
    elif match.group('den') and float(match.group('den')):
        value = value / float(match.group('den'))
    elif match.group('high'):
        # A range is taken at its midpoint
        value = (value + _number(match.group('high'))) / 2

    unit = ' '.join((match.group('unit') or '').split()) or DEFAULT_UNIT
    return value, unit


def _fold(unit: str) -> str:
    """Lowercase and drop Vietnamese tone marks, so "muong canh" matches "muỗng canh"."""
    unit = unicodedata.normalize("NFC", unit).lower().translate(VIETNAMESE_ACCENTS)
    return ' '.join(unit.split())


def _fold_keys(table: dict) -> dict:
    return {_fold(unit): grams for unit, grams in table.items()}


FOLDED_UNIT_TO_GRAMS = _fold_keys(UNIT_TO_GRAMS)
FOLDED_INGREDIENT_UNIT_CONVERSIONS = {
    ingredient: _fold_keys(units) for ingredient, units in INGREDIENT_UNIT_CONVERSIONS.items()
}


def _candidates(unit: str):
    yield unit
    if unit.endswith('es'):
        yield unit[:-2]
    if unit.endswith('s'):
        yield unit[:-1]
    first_word = unit.split(' ')[0]
    if first_word != unit:
        yield first_word
        if first_word.endswith('s'):
            yield first_word[:-1]


def _lookup(folded_table: dict, unit: str) -> Optional[float]:
    for candidate in _candidates(_fold(unit)):
        if candidate in folded_table:
            return folded_table[candidate]
    return None


def convert_to_grams(value: float, unit: str, english_ingredient: Optional[str] = None) -> float:
    """
    Convert an amount to grams

    The ingredient-specific table wins over the generic one; an unknown unit
    is taken to be grams already. Units match with or without tone marks.
    """
    if english_ingredient and english_ingredient in FOLDED_INGREDIENT_UNIT_CONVERSIONS:
        grams_per_unit = _lookup(FOLDED_INGREDIENT_UNIT_CONVERSIONS[english_ingredient], unit)
        if grams_per_unit is not None:
            return value * grams_per_unit

    grams_per_unit = _lookup(FOLDED_UNIT_TO_GRAMS, unit)
    if grams_per_unit is not None:
        return value * grams_per_unit

    logger.debug(f"Unknown unit '{unit}', treating {value} as grams")
    return value
