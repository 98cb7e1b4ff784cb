# empath/core/config.py configuration
import os

# Network
wait_timeout = 30  # seconds, upper bound for a single HTTP request
max_retries = 1
cool_down_time = 1.0  # base delay between retries
temperature = 0.7
top_p = 0.9
max_tokens = 1000
debug_request = False  # print outgoing LLM payloads

# Pipeline timing, in seconds unless noted
PIPELINE_CONFIG = {
    "settle_window_s": 1.0,        # quiet period before a burst of snapshots counts as one
    "min_input_chars": 3,          # trimmed input shorter than this never reaches a lane
    "min_reflection_chars": 10,    # reflection service is not called below this
    "reflection_buffer_s": 1.0,    # reflection lane analyzes only the latest snapshot per window
    "decision_timeout_s": 20.0,
    "reflection_timeout_s": 8.0,
    "safety_timeout_s": 30.0,      # shared cutoff, reset by every qualifying snapshot
    "decision_history_size": 20,
    "reflection_history_size": 5,
    "memory_write_retries": 1,
    "min_contact_gap_ms": 120000,  # no autonomous message this soon after the last chat message
}

# Decision clamping
DECISION_CONFIG = {
    "min_timing_ms": 500,
    "max_timing_ms": 10000,
    "default_timing_ms": 2000,
    "default_confidence": 0.5,
    "fallback_confidence": 0.1,
}

# Snapshot assembly
STATE_CONFIG = {
    "emotional_history_size": 10,
    "silence_periods_size": 5,
    "long_pause_ms": 1000,
    "hesitation_ms": 500,
    "topic_overlap_threshold": 0.3,
    "silence_threshold_ms": 5000,  # idle gap recorded as a silence period
    "locale_weekdays": ["monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday"],
}

# Vector memory
MEMORY_CONFIG = {
    "max_entries": 2000,
    "index_window": 0.003,          # tolerance around the query's distance to each pivot
    "index_width": 17,              # fixed width of an encoded index field
    "exact_search_below": 256,      # stores smaller than this are scanned exactly
    "default_min_similarity": 0.3,
    "context_min_similarity": 0.4,
    "context_min_age_s": 3600,
    "context_window_messages": 6,
    "storage_key": "empath_vector_db",
    "index_vectors_key": "empath_vector_index_vectors",
    "persist_dir": os.environ.get("EMPATH_DATA_DIR", os.path.join(os.getcwd(), "data", "memory_store")),
}

# Fixed seed texts for the five reference vectors
INDEX_SEED_TEXTS = [
    "Hi, how are you feeling today?",
    "I feel a bit stressed and need to talk.",
    "Thanks for the help, that was really useful.",
    "Can you explain how this works?",
    "I am happy and satisfied with the result.",
]

VECTORIZATION_CONFIG = {
    "default_model": os.environ.get("EMPATH_EMBEDDING_MODEL", "openai"),
    "cache_size": 1000,
    "models": {
        "openai": {
            "type": "openai",
            "model_name": "text-embedding-3-small",
            "base_url": os.environ.get("EMPATH_API_BASE_URL", "https://api.openai.com/v1"),
            "api_key": os.environ.get("EMPATH_API_KEY", ""),
            "dimensions": 384,
            "timeout": 10.0,
        },
        "minilm": {
            "type": "sentence_transformer",
            "model_name": "sentence-transformers/all-MiniLM-L6-v2",
            "device": None,  # cuda when available, else cpu
            "dimensions": 384,
            "batch_size": 32,
        },
        "hashing": {
            "type": "hashing",
            "model_name": "hashing-384",
            "dimensions": 384,
        },
    },
}

LLM_CONFIG = {
    "base_url": os.environ.get("EMPATH_API_BASE_URL", "https://api.openai.com/v1"),
    "api_key": os.environ.get("EMPATH_API_KEY", ""),
    "decision_model": os.environ.get("EMPATH_DECISION_MODEL", "gpt-4o-mini"),
    "reflection_model": os.environ.get("EMPATH_REFLECTION_MODEL", "gpt-4o-mini"),
    "proactive_model": os.environ.get("EMPATH_PROACTIVE_MODEL", "gpt-4o-mini"),
}
