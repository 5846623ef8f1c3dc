# handlers.py
"""API-Gateway style entry points for ingredient lookup and nutrition calculation."""
import base64
import json
import logging
import os
import time
from functools import lru_cache
from typing import Any, Dict, Optional
from urllib.parse import unquote

from vcook_ai.client import BedrockClient
from vcook_ai.errors import VcookError
from vcook_ai.store import DynamoIngredientStore
from vcook_ai.usecases.lookup import LookupOrchestrator
from vcook_ai.usecases.nutrition_aggregator import NutritionAggregator
from vcook_ai.usecases.nutrition_estimator import NutritionEstimator
from vcook_ai.usecases.translator import IngredientTranslator
from vcook_ai.utils.validations import PayloadError, generate_request_id, validate_payload

# Configure logging
logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))
logger = logging.getLogger(__name__)

LOOKUP_CACHE_CONTROL = "public, max-age=86400"


class Engine:
    """Wired lookup and nutrition services sharing one store and one model client"""

    def __init__(self, orchestrator: LookupOrchestrator, aggregator: Optional[NutritionAggregator] = None):
        self.orchestrator = orchestrator
        self.aggregator = aggregator or NutritionAggregator(orchestrator)


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Build the default engine once per process so connections are reused across invocations"""
    client = BedrockClient()
    orchestrator = LookupOrchestrator(
        store=DynamoIngredientStore(),
        translator=IngredientTranslator(client=client),
        estimator=NutritionEstimator(client=client),
    )
    return Engine(orchestrator)


def _correlation_id(event: Dict[str, Any]) -> str:
    headers = {k.lower(): v for k, v in (event.get("headers") or {}).items()}
    return headers.get("x-correlation-id") or generate_request_id()


def _response(status_code: int, body: Dict[str, Any], correlation_id: str,
              cache_control: Optional[str] = None) -> Dict[str, Any]:
    headers = {
        "Content-Type": "application/json",
        "X-Correlation-Id": correlation_id,
    }
    if cache_control:
        headers["Cache-Control"] = cache_control
    return {
        "statusCode": status_code,
        "headers": headers,
        "body": json.dumps(body, ensure_ascii=False),
    }


def _error(status_code: int, code: str, message: str, correlation_id: str,
           retryable: bool = False) -> Dict[str, Any]:
    return _response(status_code, {
        "error": {
            "code": code,
            "message": message,
            "retryable": retryable,
            "correlationId": correlation_id,
        }
    }, correlation_id)


def _error_from(error: VcookError, correlation_id: str) -> Dict[str, Any]:
    return _error(error.status_code, error.code, str(error), correlation_id, error.retryable)


def _json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    body = event.get("body")
    if not body:
        raise PayloadError("Request body is required")
    if event.get("isBase64Encoded"):
        body = base64.b64decode(body).decode("utf-8")
    try:
        return json.loads(body)
    except json.JSONDecodeError as e:
        raise PayloadError(f"Request body is not valid JSON: {str(e)}") from e


def _lookup_payload(event: Dict[str, Any]) -> Dict[str, Any]:
    if (event.get("httpMethod") or "POST").upper() == "GET":
        ingredient = (event.get("pathParameters") or {}).get("ingredient")
        if not ingredient and "/dictionary/" in (event.get("path") or ""):
            ingredient = event["path"].split("/dictionary/", 1)[1]
        if not ingredient:
            raise PayloadError("Ingredient path parameter is required")
        # "Th%E1%BB%8Bt%20g%C3%A0" -> "Thịt gà"
        return {"source_text": unquote(ingredient)}
    return _json_body(event)


def lookup_handler(event: Dict[str, Any], context: Any = None, engine: Optional[Engine] = None) -> Dict[str, Any]:
    """
    Translate one ingredient name

    GET /dictionary/{ingredient} or POST {"sourceText": "..."}
    """
    start_time = time.time()
    correlation_id = _correlation_id(event)
    logger.info(f"[{correlation_id}] Lookup handler invoked: {event.get('httpMethod')} {event.get('path')}")

    try:
        request = validate_payload("lookup_ingredient", _lookup_payload(event))
        result = (engine or get_engine()).orchestrator.lookup(request.source_text)
    except PayloadError as e:
        logger.warning(f"[{correlation_id}] Invalid lookup request: {str(e)}")
        return _error(400, "INVALID_REQUEST", str(e), correlation_id)
    except VcookError as e:
        log = logger.warning if e.status_code < 500 else logger.error
        log(f"[{correlation_id}] Lookup failed: {str(e)}")
        return _error_from(e, correlation_id)
    except Exception as e:
        logger.exception(f"[{correlation_id}] Ingredient lookup handler failed: {str(e)}")
        return _error(500, "INTERNAL_ERROR", "Failed to process ingredient lookup request", correlation_id)

    logger.info(f"[{correlation_id}] Lookup completed: {result.normalized_key} via "
                f"{result.provenance.value} in {time.time() - start_time:.3f}s")
    return _response(200, result.to_json(), correlation_id, cache_control=LOOKUP_CACHE_CONTROL)


def nutrition_handler(event: Dict[str, Any], context: Any = None, engine: Optional[Engine] = None) -> Dict[str, Any]:
    """
    Calculate recipe nutrition

    POST {"ingredients": [{"sourceText": "...", "quantityText": "500g"}], "servings": 2}
    """
    start_time = time.time()
    correlation_id = _correlation_id(event)
    logger.info(f"[{correlation_id}] Nutrition handler invoked")

    try:
        request = validate_payload("calculate_nutrition", _json_body(event))
        result = (engine or get_engine()).aggregator.aggregate(request.ingredients, request.servings)
    except PayloadError as e:
        logger.warning(f"[{correlation_id}] Invalid nutrition request: {str(e)}")
        return _error(400, "INVALID_REQUEST", str(e), correlation_id)
    except VcookError as e:
        logger.error(f"[{correlation_id}] Nutrition calculation failed: {str(e)}")
        return _error_from(e, correlation_id)
    except Exception as e:
        logger.exception(f"[{correlation_id}] Nutrition handler failed: {str(e)}")
        return _error(500, "INTERNAL_ERROR", "Failed to calculate nutrition", correlation_id)

    logger.info(f"[{correlation_id}] Nutrition calculated for {len(request.ingredients)} ingredient(s) "
                f"in {time.time() - start_time:.3f}s")
    return _response(200, result.to_json(), correlation_id)
