# store.py
"""Store adapter over the single-table key-value store.

Both tiers live in one table:

    PK = DICTIONARY | TRANSLATION_CACHE
    SK = INGREDIENT#{normalized_key}
    GSI5PK = reverse key (English name), GSI5SK = tier

Translation Cache rows carry a ``ttl`` attribute (epoch seconds) and are
reclaimed by the store after it passes. Reclamation is lazy, so rows whose
ttl has passed are treated as absent by every read and may be overwritten by
a fresh insert.

All mutation goes through a conditional put or an atomic ADD; there is no
unprotected read-modify-write anywhere in this module.
"""
import logging
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import boto3
from boto3.dynamodb.conditions import Key
from botocore.exceptions import BotoCoreError, ClientError

from .config import StoreConfig, store_config
from .errors import DuplicateRace, StoreUnavailable
from .metrics import STORE_ERRORS
from .schemas.ingredient import CacheEntry, NutritionPer100, Tier, Translation

logger = logging.getLogger(__name__)

KEY_PREFIX = "INGREDIENT#"
BATCH_GET_LIMIT = 100
BATCH_GET_MAX_ROUNDS = 5

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def sort_key(normalized_key: str) -> str:
    return f"{KEY_PREFIX}{normalized_key}"


class IngredientStore(ABC):
    """Point operations on the two cache tiers plus the reverse-key index"""

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now

    @abstractmethod
    def get(self, tier: Tier, key: str) -> Optional[CacheEntry]:
        """Return the live entry for key in tier, or None"""
        pass

    @abstractmethod
    def put_if_absent(self, entry: CacheEntry) -> None:
        """
        Insert entry into entry.tier unless a live entry already holds its key

        Raises:
            DuplicateRace: If the key is already taken
        """
        pass

    @abstractmethod
    def increment_usage(self, tier: Tier, key: str) -> Optional[CacheEntry]:
        """Atomically add one to usage_count; None if the entry no longer exists"""
        pass

    @abstractmethod
    def delete(self, tier: Tier, key: str) -> None:
        pass

    @abstractmethod
    def query_by_reverse_key(self, reverse_key: str) -> Optional[CacheEntry]:
        """
        Find a live entry in either tier whose reverse key matches.

        The returned entry's tier tells the caller where it was found; a
        Dictionary match is preferred over a Translation Cache match.
        """
        pass

    def batch_get(self, tier: Tier, keys: Iterable[str]) -> Dict[str, CacheEntry]:
        """Look up many keys of one tier; missing keys are absent from the result"""
        found = {}
        for key in dict.fromkeys(keys):
            entry = self.get(tier, key)
            if entry is not None:
                found[key] = entry
        return found

    def _is_live(self, entry: Optional[CacheEntry]) -> bool:
        return entry is not None and not entry.is_expired(self.clock())


class MemoryIngredientStore(IngredientStore):
    """Thread-safe in-process store with the same semantics as the DynamoDB table"""

    def __init__(self, clock: Optional[Clock] = None):
        super().__init__(clock)
        self._entries: Dict[Tuple[Tier, str], CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, tier: Tier, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get((tier, key))
            return entry.model_copy(deep=True) if self._is_live(entry) else None

    def put_if_absent(self, entry: CacheEntry) -> None:
        with self._lock:
            if self._is_live(self._entries.get((entry.tier, entry.normalized_key))):
                raise DuplicateRace(entry.tier.value, entry.normalized_key)
            self._entries[(entry.tier, entry.normalized_key)] = entry.model_copy(deep=True)

    def increment_usage(self, tier: Tier, key: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get((tier, key))
            if not self._is_live(entry):
                return None
            entry.usage_count += 1
            entry.last_used_at = self.clock()
            return entry.model_copy(deep=True)

    def delete(self, tier: Tier, key: str) -> None:
        with self._lock:
            self._entries.pop((tier, key), None)

    def query_by_reverse_key(self, reverse_key: str) -> Optional[CacheEntry]:
        with self._lock:
            matches = [e for e in self._entries.values()
                       if e.reverse_key == reverse_key and self._is_live(e)]
        matches.sort(key=lambda e: e.tier != Tier.DICTIONARY)
        return matches[0].model_copy(deep=True) if matches else None

    def purge_expired(self) -> int:
        """Drop expired rows the way the table's TTL sweeper would"""
        with self._lock:
            expired = [k for k, e in self._entries.items() if not self._is_live(e)]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def count(self, tier: Optional[Tier] = None) -> int:
        with self._lock:
            return sum(1 for (t, _), e in self._entries.items()
                       if (tier is None or t == tier) and self._is_live(e))


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_millis(value: Any) -> datetime:
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def _to_dynamo(value: Any) -> Any:
    if isinstance(value, float):
        return Decimal(str(value))
    if isinstance(value, dict):
        return {k: _to_dynamo(v) for k, v in value.items()}
    return value


def _from_dynamo(value: Any) -> Any:
    if isinstance(value, Decimal):
        return int(value) if value == value.to_integral_value() else float(value)
    if isinstance(value, dict):
        return {k: _from_dynamo(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_from_dynamo(v) for v in value]
    return value


def entry_to_item(entry: CacheEntry) -> Dict[str, Any]:
    """Serialize an entry into the table's item layout"""
    item = {
        "PK": entry.tier.value,
        "SK": sort_key(entry.normalized_key),
        "source": entry.source_text,
        "sourceNormalized": entry.normalized_key,
        "englishNormalized": entry.reverse_key,
        "target": entry.translation.to_json(),
        "addedBy": entry.added_by,
        "addedAt": _to_millis(entry.created_at),
        "lastUsed": _to_millis(entry.last_used_at),
        "usageCount": entry.usage_count,
        "GSI5PK": entry.reverse_key,
        "GSI5SK": entry.tier.value,
    }
    if entry.nutrition_per_100 is not None:
        item["nutrition"] = _to_dynamo({
            "per100g": {k: float(v) for k, v in entry.nutrition_per_100.to_json().items()},
            "dataSource": entry.nutrition_source,
        })
    if entry.expires_at is not None:
        item["ttl"] = int(entry.expires_at.timestamp())
    if entry.promoted_at is not None:
        item["promotedAt"] = _to_millis(entry.promoted_at)
    return item


def item_to_entry(item: Dict[str, Any]) -> CacheEntry:
    """Deserialize a table item; numbers come back from boto3 as Decimal"""
    item = _from_dynamo(item)
    nutrition = item.get("nutrition") or {}
    added_at = item.get("addedAt") or item.get("createdAt") or 0
    return CacheEntry(
        tier=Tier(item["PK"]),
        source_text=item.get("source", ""),
        normalized_key=item.get("sourceNormalized") or item["SK"][len(KEY_PREFIX):],
        translation=Translation(**item["target"]),
        reverse_key=item.get("GSI5PK") or item.get("englishNormalized"),
        nutrition_per_100=NutritionPer100(**nutrition["per100g"]) if nutrition.get("per100g") else None,
        nutrition_source=nutrition.get("dataSource", "AI"),
        usage_count=item.get("usageCount", 0),
        added_by=item.get("addedBy", "AI"),
        created_at=_from_millis(added_at),
        last_used_at=_from_millis(item.get("lastUsed") or item.get("lastUsedAt") or added_at),
        expires_at=datetime.fromtimestamp(int(item["ttl"]), tz=timezone.utc) if item.get("ttl") else None,
        promoted_at=_from_millis(item["promotedAt"]) if item.get("promotedAt") else None,
    )


def _is_conditional_failure(error: ClientError) -> bool:
    return error.response.get("Error", {}).get("Code") == "ConditionalCheckFailedException"


class DynamoIngredientStore(IngredientStore):
    """Store adapter backed by the DynamoDB single table"""

    def __init__(self, table=None, custom_config: Optional[StoreConfig] = None,
                 clock: Optional[Clock] = None):
        """
        Args:
            table: Optional boto3 Table resource; created from config when omitted
            custom_config: Optional store configuration to override defaults
            clock: Optional time source, used for ttl checks
        """
        super().__init__(clock)
        self.config = custom_config or store_config
        # boto3 resources pool their HTTP connections for the lifetime of the process
        self.resource = boto3.resource("dynamodb", region_name=self.config.region)
        self.table = table if table is not None else self.resource.Table(self.config.table_name)
        logger.info(f"Initialized DynamoIngredientStore on table {self.config.table_name}")

    def _key(self, tier: Tier, key: str) -> Dict[str, str]:
        return {"PK": tier.value, "SK": sort_key(key)}

    def _fail(self, operation: str, error: Exception, **context) -> StoreUnavailable:
        STORE_ERRORS.labels(operation=operation).inc()
        logger.error(f"DynamoDB {operation} failed {context}: {str(error)}")
        return StoreUnavailable(f"Store operation {operation} failed: {str(error)}")

    def get(self, tier: Tier, key: str) -> Optional[CacheEntry]:
        try:
            result = self.table.get_item(Key=self._key(tier, key), ConsistentRead=True)
        except (ClientError, BotoCoreError) as e:
            raise self._fail("get", e, tier=tier.value, key=key)

        item = result.get("Item")
        if not item:
            return None
        entry = item_to_entry(item)
        return entry if self._is_live(entry) else None

    def put_if_absent(self, entry: CacheEntry) -> None:
        condition = "attribute_not_exists(SK)"
        kwargs: Dict[str, Any] = {}
        if entry.tier == Tier.TRANSLATION_CACHE:
            # An expired row that the sweeper has not removed yet may be replaced
            condition += " OR #ttl <= :now"
            kwargs["ExpressionAttributeNames"] = {"#ttl": "ttl"}
            kwargs["ExpressionAttributeValues"] = {":now": int(self.clock().timestamp())}

        try:
            self.table.put_item(Item=entry_to_item(entry), ConditionExpression=condition, **kwargs)
        except ClientError as e:
            if _is_conditional_failure(e):
                raise DuplicateRace(entry.tier.value, entry.normalized_key)
            raise self._fail("put", e, tier=entry.tier.value, key=entry.normalized_key)
        except BotoCoreError as e:
            raise self._fail("put", e, tier=entry.tier.value, key=entry.normalized_key)

    def increment_usage(self, tier: Tier, key: str) -> Optional[CacheEntry]:
        now = self.clock()
        condition = "attribute_exists(SK)"
        names: Dict[str, str] = {}
        values: Dict[str, Any] = {":inc": 1, ":used": _to_millis(now)}
        if tier == Tier.TRANSLATION_CACHE:
            condition += " AND #ttl > :now"
            names["#ttl"] = "ttl"
            values[":now"] = int(now.timestamp())

        kwargs: Dict[str, Any] = {"ExpressionAttributeNames": names} if names else {}
        try:
            result = self.table.update_item(
                Key=self._key(tier, key),
                UpdateExpression="ADD usageCount :inc SET lastUsed = :used",
                ConditionExpression=condition,
                ExpressionAttributeValues=values,
                ReturnValues="ALL_NEW",
                **kwargs,
            )
        except ClientError as e:
            if _is_conditional_failure(e):
                logger.info(f"Usage increment skipped, {tier.value} entry {key} no longer exists")
                return None
            raise self._fail("increment", e, tier=tier.value, key=key)
        except BotoCoreError as e:
            raise self._fail("increment", e, tier=tier.value, key=key)

        return item_to_entry(result["Attributes"])

    def delete(self, tier: Tier, key: str) -> None:
        try:
            self.table.delete_item(Key=self._key(tier, key))
        except (ClientError, BotoCoreError) as e:
            raise self._fail("delete", e, tier=tier.value, key=key)

    def query_by_reverse_key(self, reverse_key: str) -> Optional[CacheEntry]:
        try:
            result = self.table.query(
                IndexName=self.config.reverse_index_name,
                KeyConditionExpression=Key("GSI5PK").eq(reverse_key),
            )
        except (ClientError, BotoCoreError) as e:
            raise self._fail("query_reverse", e, reverse_key=reverse_key)

        entries = [item_to_entry(item) for item in result.get("Items", [])]
        live = [e for e in entries if self._is_live(e)]
        live.sort(key=lambda e: e.tier != Tier.DICTIONARY)
        return live[0] if live else None

    def batch_get(self, tier: Tier, keys: Iterable[str]) -> Dict[str, CacheEntry]:
        unique = list(dict.fromkeys(keys))
        found: Dict[str, CacheEntry] = {}

        for start in range(0, len(unique), BATCH_GET_LIMIT):
            request = {self.table.name: {"Keys": [self._key(tier, k) for k in unique[start:start + BATCH_GET_LIMIT]]}}
            for _ in range(BATCH_GET_MAX_ROUNDS):
                try:
                    result = self.resource.batch_get_item(RequestItems=request)
                except (ClientError, BotoCoreError) as e:
                    raise self._fail("batch_get", e, tier=tier.value, count=len(unique))

                for item in result.get("Responses", {}).get(self.table.name, []):
                    entry = item_to_entry(item)
                    if self._is_live(entry):
                        found[entry.normalized_key] = entry

                request = result.get("UnprocessedKeys") or {}
                if not request:
                    break
            else:
                logger.warning(f"Batch get left unprocessed keys after {BATCH_GET_MAX_ROUNDS} rounds")

        return found
