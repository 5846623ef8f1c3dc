from prometheus_client import CollectorRegistry, Counter, Histogram, Gauge

# Create a module-level registry
registry = CollectorRegistry()

# Completion service
REQUEST_COUNTER = Counter('bedrock_requests_total', 'Total number of requests to Bedrock API', ['model', 'status'], registry=registry)
RESPONSE_TIME = Histogram('bedrock_response_time_seconds', 'Response time for Bedrock API calls', ['model'], registry=registry)
TOKEN_COUNTER = Counter('bedrock_tokens_total', 'Total tokens consumed', ['model', 'type'], registry=registry)
ACTIVE_REQUESTS = Gauge('bedrock_active_requests', 'Number of active requests', registry=registry)

# Lookup orchestrator
LOOKUP_COUNTER = Counter('ingredient_lookups_total', 'Ingredient lookups by answering tier', ['provenance'], registry=registry)
INVALID_INGREDIENTS = Counter('ingredient_invalid_total', 'Lookups rejected as not a food ingredient', ['stage'], registry=registry)
PROMOTIONS = Counter('ingredient_promotions_total', 'Translation Cache entries promoted to Dictionary', registry=registry)
DUPLICATE_RACES = Counter('ingredient_duplicate_races_total', 'Inserts abandoned in favour of an existing entry', ['reason'], registry=registry)
LOOKUP_TIME = Histogram('ingredient_lookup_seconds', 'End-to-end ingredient lookup latency', ['provenance'], registry=registry)

# Store adapter
STORE_ERRORS = Counter('ingredient_store_errors_total', 'Failed key-value store operations', ['operation'], registry=registry)

# Nutrition aggregator
AGGREGATED_LINES = Counter('nutrition_lines_total', 'Recipe lines included in nutrition totals', ['provenance'], registry=registry)
MISSING_LINES = Counter('nutrition_missing_lines_total', 'Recipe lines left out of nutrition totals', registry=registry)
