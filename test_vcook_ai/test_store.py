import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from botocore.exceptions import ClientError, EndpointConnectionError

from vcook_ai.errors import DuplicateRace, StoreUnavailable
from vcook_ai.schemas.ingredient import NutritionPer100, Tier
from vcook_ai.store import DynamoIngredientStore, entry_to_item, item_to_entry, sort_key


def _client_error(code, operation="PutItem"):
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class TestMemoryIngredientStore:
    def test_put_and_get(self, memory_store, make_entry):
        entry = make_entry("thit-ga", "chicken")
        memory_store.put_if_absent(entry)

        assert memory_store.get(Tier.DICTIONARY, "thit-ga") == entry
        assert memory_store.get(Tier.TRANSLATION_CACHE, "thit-ga") is None

    def test_put_if_absent_rejects_live_key(self, memory_store, make_entry):
        memory_store.put_if_absent(make_entry("thit-ga", "chicken"))

        with pytest.raises(DuplicateRace) as exc_info:
            memory_store.put_if_absent(make_entry("thit-ga", "hen"))
        assert exc_info.value.key == "thit-ga"
        assert memory_store.get(Tier.DICTIONARY, "thit-ga").translation.specific == "chicken"

    def test_returned_entries_are_copies(self, memory_store, make_entry):
        memory_store.put_if_absent(make_entry("thit-ga", "chicken"))
        memory_store.get(Tier.DICTIONARY, "thit-ga").usage_count = 500

        assert memory_store.get(Tier.DICTIONARY, "thit-ga").usage_count == 1

    def test_expired_cache_entry_is_absent_and_replaceable(self, memory_store, make_entry, clock):
        memory_store.put_if_absent(make_entry(
            "rau-muong", "water-spinach", tier=Tier.TRANSLATION_CACHE,
            expires_at=clock() + timedelta(days=1),
        ))
        clock.advance(days=2)

        assert memory_store.get(Tier.TRANSLATION_CACHE, "rau-muong") is None
        assert memory_store.query_by_reverse_key("water-spinach") is None
        assert memory_store.increment_usage(Tier.TRANSLATION_CACHE, "rau-muong") is None

        memory_store.put_if_absent(make_entry(
            "rau-muong", "morning-glory", tier=Tier.TRANSLATION_CACHE,
            now=clock(), expires_at=clock() + timedelta(days=365),
        ))
        assert memory_store.get(Tier.TRANSLATION_CACHE, "rau-muong").translation.specific == "morning-glory"

    def test_increment_usage(self, memory_store, make_entry, clock):
        memory_store.put_if_absent(make_entry(
            "hanh-la", "scallion", tier=Tier.TRANSLATION_CACHE,
            expires_at=clock() + timedelta(days=365),
        ))
        clock.advance(minutes=5)

        updated = memory_store.increment_usage(Tier.TRANSLATION_CACHE, "hanh-la")
        assert updated.usage_count == 2
        assert updated.last_used_at == clock()

    def test_increment_missing_entry(self, memory_store):
        assert memory_store.increment_usage(Tier.TRANSLATION_CACHE, "khong-co") is None

    def test_concurrent_increments_are_atomic(self, memory_store, make_entry, clock):
        memory_store.put_if_absent(make_entry(
            "hanh-la", "scallion", tier=Tier.TRANSLATION_CACHE,
            expires_at=clock() + timedelta(days=365),
        ))
        seen = []
        lock = threading.Lock()

        def worker():
            for _ in range(50):
                count = memory_store.increment_usage(Tier.TRANSLATION_CACHE, "hanh-la").usage_count
                with lock:
                    seen.append(count)

        threads = [threading.Thread(target=worker) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(seen) == list(range(2, 202))

    def test_query_by_reverse_key_prefers_dictionary(self, memory_store, make_entry, clock):
        memory_store.put_if_absent(make_entry(
            "heo-quay", "roast-pork", tier=Tier.TRANSLATION_CACHE,
            expires_at=clock() + timedelta(days=365),
        ))
        assert memory_store.query_by_reverse_key("roast-pork").tier == Tier.TRANSLATION_CACHE

        memory_store.put_if_absent(make_entry("thit-heo-quay", "roast-pork"))
        found = memory_store.query_by_reverse_key("roast-pork")
        assert found.tier == Tier.DICTIONARY
        assert found.normalized_key == "thit-heo-quay"

        assert memory_store.query_by_reverse_key("beef") is None

    def test_delete(self, memory_store, make_entry):
        memory_store.put_if_absent(make_entry("thit-ga", "chicken"))
        memory_store.delete(Tier.DICTIONARY, "thit-ga")
        memory_store.delete(Tier.DICTIONARY, "thit-ga")

        assert memory_store.get(Tier.DICTIONARY, "thit-ga") is None

    def test_batch_get(self, memory_store, make_entry):
        memory_store.put_if_absent(make_entry("thit-ga", "chicken"))
        memory_store.put_if_absent(make_entry("thit-bo", "beef"))

        found = memory_store.batch_get(Tier.DICTIONARY, ["thit-ga", "thit-bo", "thit-ga", "ca-loc"])
        assert set(found) == {"thit-ga", "thit-bo"}

    def test_purge_and_count(self, memory_store, make_entry, clock):
        memory_store.put_if_absent(make_entry("thit-ga", "chicken"))
        memory_store.put_if_absent(make_entry(
            "hanh-la", "scallion", tier=Tier.TRANSLATION_CACHE,
            expires_at=clock() + timedelta(hours=1),
        ))
        assert memory_store.count() == 2

        clock.advance(hours=2)
        assert memory_store.count(Tier.TRANSLATION_CACHE) == 0
        assert memory_store.purge_expired() == 1
        assert memory_store.count(Tier.DICTIONARY) == 1


class TestItemLayout:
    def test_cache_entry_round_trip(self, make_entry, clock):
        entry = make_entry(
            "thit-ba-chi", "pork-belly", tier=Tier.TRANSLATION_CACHE, usage_count=7,
            nutrition=NutritionPer100(calories=518, protein=9.3, fat=53),
            expires_at=clock() + timedelta(days=365), general="pork",
        )

        item = entry_to_item(entry)
        assert item["PK"] == "TRANSLATION_CACHE"
        assert item["SK"] == "INGREDIENT#thit-ba-chi"
        assert item["GSI5PK"] == "pork-belly"
        assert item["GSI5SK"] == "TRANSLATION_CACHE"
        assert item["ttl"] == int((clock() + timedelta(days=365)).timestamp())
        assert item["addedAt"] == int(clock().timestamp() * 1000)
        assert item["nutrition"]["per100g"]["protein"] == Decimal("9.3")
        assert item["target"] == {"specific": "pork-belly", "general": "pork", "category": "meat"}

        # boto3 hands numbers back as Decimal
        item["usageCount"] = Decimal(7)
        item["addedAt"] = Decimal(item["addedAt"])
        assert item_to_entry(item) == entry

    def test_dictionary_item_has_no_ttl(self, make_entry):
        item = entry_to_item(make_entry("thit-ga", "chicken"))
        assert "ttl" not in item
        assert "nutrition" not in item
        assert item["PK"] == "DICTIONARY"


class TestDynamoIngredientStore:
    @pytest.fixture
    def table(self):
        table = MagicMock()
        table.name = "EveryoneCook"
        return table

    @pytest.fixture
    def store(self, aws_credentials, table, test_store_config, clock):
        with patch("boto3.resource") as mock_resource:
            store = DynamoIngredientStore(table=table, custom_config=test_store_config, clock=clock)
        store.resource = mock_resource.return_value
        return store

    def test_get_uses_consistent_read(self, store, table, make_entry):
        table.get_item.return_value = {"Item": entry_to_item(make_entry("thit-ga", "chicken"))}

        entry = store.get(Tier.DICTIONARY, "thit-ga")

        assert entry.translation.specific == "chicken"
        table.get_item.assert_called_once_with(
            Key={"PK": "DICTIONARY", "SK": sort_key("thit-ga")}, ConsistentRead=True
        )

    def test_get_missing(self, store, table):
        table.get_item.return_value = {}
        assert store.get(Tier.DICTIONARY, "thit-ga") is None

    def test_get_ignores_expired_item(self, store, table, make_entry, clock):
        table.get_item.return_value = {"Item": entry_to_item(make_entry(
            "hanh-la", "scallion", tier=Tier.TRANSLATION_CACHE, expires_at=clock() - timedelta(seconds=1),
        ))}
        assert store.get(Tier.TRANSLATION_CACHE, "hanh-la") is None

    def test_get_failure_is_store_unavailable(self, store, table):
        table.get_item.side_effect = EndpointConnectionError(endpoint_url="https://dynamodb")
        with pytest.raises(StoreUnavailable):
            store.get(Tier.DICTIONARY, "thit-ga")

    def test_put_if_absent_condition(self, store, table, make_entry, clock):
        store.put_if_absent(make_entry("thit-ga", "chicken"))
        kwargs = table.put_item.call_args.kwargs
        assert kwargs["ConditionExpression"] == "attribute_not_exists(SK)"
        assert "ExpressionAttributeValues" not in kwargs

        store.put_if_absent(make_entry(
            "hanh-la", "scallion", tier=Tier.TRANSLATION_CACHE, expires_at=clock() + timedelta(days=1),
        ))
        kwargs = table.put_item.call_args.kwargs
        assert kwargs["ConditionExpression"] == "attribute_not_exists(SK) OR #ttl <= :now"
        assert kwargs["ExpressionAttributeValues"] == {":now": int(clock().timestamp())}

    def test_put_conditional_failure_is_duplicate_race(self, store, table, make_entry):
        table.put_item.side_effect = _client_error("ConditionalCheckFailedException")
        with pytest.raises(DuplicateRace):
            store.put_if_absent(make_entry("thit-ga", "chicken"))

    def test_put_other_failure_is_store_unavailable(self, store, table, make_entry):
        table.put_item.side_effect = _client_error("ProvisionedThroughputExceededException")
        with pytest.raises(StoreUnavailable) as exc_info:
            store.put_if_absent(make_entry("thit-ga", "chicken"))
        assert exc_info.value.retryable

    def test_increment_usage(self, store, table, make_entry, clock):
        entry = make_entry("hanh-la", "scallion", tier=Tier.TRANSLATION_CACHE,
                           usage_count=42, expires_at=clock() + timedelta(days=1))
        table.update_item.return_value = {"Attributes": entry_to_item(entry)}

        updated = store.increment_usage(Tier.TRANSLATION_CACHE, "hanh-la")

        assert updated.usage_count == 42
        kwargs = table.update_item.call_args.kwargs
        assert kwargs["UpdateExpression"] == "ADD usageCount :inc SET lastUsed = :used"
        assert kwargs["ConditionExpression"] == "attribute_exists(SK) AND #ttl > :now"
        assert kwargs["ReturnValues"] == "ALL_NEW"

    def test_increment_vanished_entry(self, store, table):
        table.update_item.side_effect = _client_error("ConditionalCheckFailedException", "UpdateItem")
        assert store.increment_usage(Tier.TRANSLATION_CACHE, "hanh-la") is None

    def test_query_by_reverse_key(self, store, table, make_entry, clock):
        table.query.return_value = {"Items": [
            entry_to_item(make_entry("heo-quay", "roast-pork", tier=Tier.TRANSLATION_CACHE,
                                     expires_at=clock() + timedelta(days=1))),
            entry_to_item(make_entry("thit-heo-quay", "roast-pork")),
        ]}

        found = store.query_by_reverse_key("roast-pork")

        assert found.tier == Tier.DICTIONARY
        assert table.query.call_args.kwargs["IndexName"] == "GSI5"

    def test_batch_get_retries_unprocessed_keys(self, store, make_entry):
        first = entry_to_item(make_entry("thit-ga", "chicken"))
        second = entry_to_item(make_entry("thit-bo", "beef"))
        unprocessed = {"EveryoneCook": {"Keys": [{"PK": "DICTIONARY", "SK": sort_key("thit-bo")}]}}
        store.resource.batch_get_item.side_effect = [
            {"Responses": {"EveryoneCook": [first]}, "UnprocessedKeys": unprocessed},
            {"Responses": {"EveryoneCook": [second]}, "UnprocessedKeys": {}},
        ]

        found = store.batch_get(Tier.DICTIONARY, ["thit-ga", "thit-bo", "ca-loc"])

        assert set(found) == {"thit-ga", "thit-bo"}
        assert store.resource.batch_get_item.call_count == 2
        assert store.resource.batch_get_item.call_args_list[1].kwargs["RequestItems"] == unprocessed

    def test_batch_get_chunks_requests(self, store):
        store.resource.batch_get_item.return_value = {"Responses": {"EveryoneCook": []}}

        store.batch_get(Tier.DICTIONARY, [f"key-{i}" for i in range(250)])

        sizes = [len(c.kwargs["RequestItems"]["EveryoneCook"]["Keys"])
                 for c in store.resource.batch_get_item.call_args_list]
        assert sizes == [100, 100, 50]
