# vcook_ai/errors.py
"""Error taxonomy shared by the lookup and nutrition pipelines.

Only InvalidIngredient, StoreUnavailable and TranslationServiceFailure ever
reach a caller. DuplicateRace is raised by the store on a lost conditional
write and is always resolved inside the package.
"""
from typing import Optional


class VcookError(Exception):
    """Base exception for ingredient lookup errors"""
    code = "INTERNAL_ERROR"
    status_code = 500
    retryable = False


class InvalidIngredient(VcookError):
    """Input is not a food ingredient (local heuristics or model verdict)"""
    code = "INVALID_INGREDIENT"
    status_code = 400

    def __init__(self, source_text: str, reason: str = "not a valid food ingredient"):
        self.source_text = source_text
        self.reason = reason
        super().__init__(f'Invalid ingredient: "{source_text}" is {reason}')


class StoreUnavailable(VcookError):
    """The key-value store failed; the whole lookup may be retried"""
    code = "STORE_UNAVAILABLE"
    status_code = 503
    retryable = True


class TranslationServiceFailure(VcookError):
    """The completion service errored; distinct from a permanent rejection"""
    code = "TRANSLATION_SERVICE_UNAVAILABLE"
    status_code = 503
    retryable = True


class TranslationTimeout(TranslationServiceFailure):
    """The completion service did not answer within the configured timeout"""
    code = "TRANSLATION_SERVICE_TIMEOUT"
    status_code = 504


class DuplicateRace(VcookError):
    """A conditional insert lost against an entry that already exists"""
    code = "DUPLICATE_RACE"

    def __init__(self, tier: str, key: str, message: Optional[str] = None):
        self.tier = tier
        self.key = key
        super().__init__(message or f"{tier} already holds INGREDIENT#{key}")
