import json
import os
import threading
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest

from vcook_ai.client import BedrockClient
from vcook_ai.config import ModelConfig, ModelProvider, StoreConfig
from vcook_ai.schemas.ingredient import CacheEntry, NutritionPer100, Tier, Translation
from vcook_ai.store import MemoryIngredientStore
from vcook_ai.usecases.lookup import LookupOrchestrator
from vcook_ai.usecases.nutrition_aggregator import NutritionAggregator
from vcook_ai.usecases.nutrition_estimator import NutritionEstimator
from vcook_ai.usecases.translator import IngredientTranslator

PORK_BELLY_REPLY = '{"specific": "pork-belly", "general": "pork", "category": "meat"}'
PORK_BELLY_NUTRITION = '{"calories": 518, "protein": 9.3, "carbs": 0, "fat": 53, "fiber": 0}'


class FakeClock:
    """Controllable time source shared by the store and the tests"""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)


class FakeCompletionClient:
    """
    Stands in for BedrockClient.

    Replies are chosen by the first rule whose marker occurs in the prompt;
    every prompt is recorded.
    """

    def __init__(self, rules=None, default='{"error": "NOT_FOOD"}'):
        self.rules = list(rules or [])
        self.default = default
        self.prompts = []
        self._lock = threading.Lock()

    def invoke(self, prompt, max_tokens=None, temperature=None):
        with self._lock:
            self.prompts.append(prompt)
        for marker, reply in self.rules:
            if marker in prompt:
                if isinstance(reply, Exception):
                    raise reply
                return {"text": reply}
        return {"text": self.default}

    @staticmethod
    def translation_marker(source_text):
        return f'Ingredient: "{source_text}"'

    @staticmethod
    def nutrition_marker(specific):
        return f'for: "{specific}"'

    def calls_containing(self, marker):
        return sum(1 for p in self.prompts if marker in p)

    def close(self):
        pass


def _make_entry(key, specific, tier=Tier.DICTIONARY, usage_count=1, nutrition=None,
                now=None, expires_at=None, category="meat", general=None):
    now = now or datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)
    return CacheEntry(
        tier=tier,
        source_text=key.replace("-", " "),
        normalized_key=key,
        translation=Translation(specific=specific, general=general or specific, category=category),
        reverse_key=specific,
        nutrition_per_100=nutrition,
        usage_count=usage_count,
        created_at=now,
        last_used_at=now,
        expires_at=expires_at,
    )


@pytest.fixture
def mock_bedrock_client():
    """Returns a mocked BedrockClient instance."""
    client = MagicMock(spec=BedrockClient)
    return client


@pytest.fixture
def test_config():
    """Returns a test configuration."""
    with patch.dict(os.environ, {}, clear=True):
        test_config = ModelConfig()
    test_config.model_provider = ModelProvider.CLAUDE
    test_config.model_id = "anthropic.claude-3-haiku-20240307-v1:0"
    test_config.region = "us-east-1"
    test_config.max_attempts = 2
    return test_config


@pytest.fixture
def test_store_config():
    with patch.dict(os.environ, {}, clear=True):
        return StoreConfig()


@pytest.fixture
def claude3_response():
    """Returns a sample Claude 3 messages response."""
    return {
        "content": [{"type": "text", "text": PORK_BELLY_REPLY}],
        "stop_reason": "end_turn"
    }


@pytest.fixture
def aws_credentials():
    """Mocked AWS Credentials for testing."""
    with patch.dict(os.environ, {
        "AWS_ACCESS_KEY_ID": "testing",
        "AWS_SECRET_ACCESS_KEY": "testing",
        "AWS_SECURITY_TOKEN": "testing",
        "AWS_SESSION_TOKEN": "testing",
        "AWS_DEFAULT_REGION": "us-east-1",
    }):
        yield


@pytest.fixture
def boto3_bedrock_client(aws_credentials):
    """Mocked boto3 bedrock client."""
    with patch("boto3.client") as mock_client:
        client = MagicMock()
        mock_client.return_value = client
        yield client


@pytest.fixture
def make_bedrock_response():
    """Builds an invoke_model response around a JSON body."""
    def _make(body, status_code=200):
        stream = MagicMock()
        stream.read.return_value = json.dumps(body).encode("utf-8")
        return {"body": stream, "ResponseMetadata": {"HTTPStatusCode": status_code}}
    return _make


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_store(clock):
    return MemoryIngredientStore(clock=clock)


@pytest.fixture
def completion_client():
    return FakeCompletionClient(rules=[
        (FakeCompletionClient.nutrition_marker("pork-belly"), PORK_BELLY_NUTRITION),
        (FakeCompletionClient.translation_marker("Thịt Ba Chỉ"), PORK_BELLY_REPLY),
        (FakeCompletionClient.translation_marker("thit ba chi"), PORK_BELLY_REPLY),
    ])


@pytest.fixture
def fake_completion_client():
    """Factory for completion clients with custom reply rules."""
    return FakeCompletionClient


@pytest.fixture
def make_entry():
    """Factory for store entries."""
    return _make_entry


@pytest.fixture
def orchestrator(memory_store, completion_client, test_store_config):
    return LookupOrchestrator(
        store=memory_store,
        translator=IngredientTranslator(client=completion_client),
        estimator=NutritionEstimator(client=completion_client),
        custom_config=test_store_config,
    )


@pytest.fixture
def aggregator(orchestrator):
    return NutritionAggregator(orchestrator)


@pytest.fixture
def chicken_breast(memory_store):
    """Dictionary entry for chicken breast with USDA values per 100g."""
    entry = _make_entry(
        "chicken-breast", "chicken-breast", general="chicken",
        nutrition=NutritionPer100(calories=165, protein=31, carbs=0, fat=3.6, fiber=0),
    )
    memory_store.put_if_absent(entry)
    return entry
