# --- Embedding ---

# OpenAI embedding models: model -> dimension
EMBEDDING_MODELS: dict[str, int] = {
    "text-embedding-3-large": 3072,
    "text-embedding-3-small": 1536,
    "text-embedding-ada-002": 1536,
}
DEFAULT_EMBEDDING_MODEL = "text-embedding-3-large"

EMBEDDING_MAX_BATCH = 50
EMBEDDING_MAX_CHARS = 5000
EMBEDDING_CACHE_TTL = 3600  # seconds
EMBEDDING_TIMEOUT = 10.0  # seconds
TEXT_HASH_CHARS = 16

RATE_LIMIT_RETRY_AFTER = 60  # seconds, surfaced on provider 429s


# --- Vector index ---

VECTOR_UPSERT_BATCH = 100
VECTOR_SEARCH_LIMIT = 100
VECTOR_DISTANCE = "Cosine"
DEFAULT_COLLECTION = "centers"


# --- Semantic search ---

SEMANTIC_TOP_K = 20
SEMANTIC_THRESHOLD = 0.2
MAX_MATCHED_KEYWORDS = 5
EXPANSION_SYNONYMS_PER_TERM = 2


# --- Hybrid recommendation ---

DEFAULT_EMBEDDING_WEIGHT = 0.3
DEFAULT_RULE_WEIGHT = 0.7
WEIGHT_SUM_TOLERANCE = 0.001

DEFAULT_LIMIT = 10
MAX_LIMIT = 50
DEFAULT_MAX_DISTANCE = 10.0  # km
CANDIDATE_OVERFETCH_FACTOR = 2

# Semantic similarity above which an extra "specialised in ..." reason is added
STRONG_MATCH_THRESHOLD = 0.7
STRONG_MATCH_KEYWORDS = 2

RESULT_CACHE_TTL = 600  # seconds
RESULT_CACHE_PREFIX = "recommendation:hybrid:"
EMBEDDING_CACHE_PREFIX = "embedding:"

ALGORITHM_HYBRID = "hybrid_v1"
ALGORITHM_FALLBACK = "rule_based_fallback"


# --- Center indexing ---

INDEX_GROUP_SIZE = 10
INDEX_GROUP_PAUSE = 1.0  # seconds between groups
INDEX_MIN_TEXT_CHARS = 10


# --- Rate limiter presets ---
# Embedding provider: ~100 requests/minute
LLM_MIN_TIME = 0.6
LLM_MAX_CONCURRENT = 5
LLM_RESERVOIR = 100
LLM_REFRESH_INTERVAL = 60.0
LLM_HIGH_WATER = 50

# Vector index: ~100 requests/second on a single local node
VECTOR_MIN_TIME = 0.01
VECTOR_MAX_CONCURRENT = 10
VECTOR_RESERVOIR = 1000
VECTOR_REFRESH_INTERVAL = 10.0
VECTOR_HIGH_WATER = 100
