"""
Application configuration (env, settings, constants).

Responsibility: Centralize config loading, environment variables, and app-wide
constants. Keeps the rest of the app decoupled from how config is sourced.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_str(name: str, default: str = "") -> str:
    return (os.getenv(name, default) or "").strip() or default


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _env_bool(name: str, default: bool = False) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


LOG_LEVEL: str = _env_str("LOG_LEVEL", "INFO").upper()

# Include the per-iteration loop trace in results (and API responses)
DEBUG_TRACE: bool = _env_bool("DEBUG_TRACE")

# --- Language models ---

OPENAI_API_KEY: str = _env_str("OPENAI_API_KEY")
ANTHROPIC_API_KEY: str = _env_str("ANTHROPIC_API_KEY")
HF_API_KEY: str = _env_str("HF_API_KEY")

REASONING_MODEL: str = _env_str("REASONING_MODEL", "gpt-4o-mini")
SYNTHESIS_MODEL: str = _env_str("SYNTHESIS_MODEL", "gpt-4o")

# Default model per provider, used when a call falls back to that provider
OPENAI_DEFAULT_MODEL: str = _env_str("OPENAI_LLM_MODEL", "gpt-4o-mini")
ANTHROPIC_DEFAULT_MODEL: str = _env_str("ANTHROPIC_LLM_MODEL", "claude-3-5-haiku-latest")
# Router chat completions require a chat model.
HF_LLM_MODEL: str = _env_str("HF_LLM_MODEL", "meta-llama/Llama-3.2-3B-Instruct")
HF_CHAT_URL: str = "https://router.huggingface.co/v1/chat/completions"

REASONING_TEMPERATURE: float = 0.1
REASONING_MAX_TOKENS: int = 300
SYNTHESIS_TEMPERATURE: float = 0.2
SYNTHESIS_MAX_TOKENS: int = 1200
# Question analysis returns JSON (and possibly a full direct answer); never starve it
ANALYSIS_MIN_TOKENS: int = 256

# --- Search providers (enabled when the key is present; order = priority) ---

TAVILY_API_KEY: str = _env_str("TAVILY_API_KEY")
BING_API_KEY: str = _env_str("BING_API_KEY")
SERPAPI_API_KEY: str = _env_str("SERPAPI_API_KEY")
# Keyless DuckDuckGo search (ddgs); last in line, opt-in
DDGS_SEARCH_ENABLED: bool = _env_bool("DDGS_SEARCH_ENABLED")

TAVILY_SEARCH_URL: str = "https://api.tavily.com/search"
BING_SEARCH_URL: str = "https://api.bing.microsoft.com/v7.0/search"
SERPAPI_SEARCH_URL: str = "https://serpapi.com/search"

# --- Fetch ---

MICROLINK_API_KEY: str = _env_str("MICROLINK_API_KEY")
MICROLINK_URL: str = "https://api.microlink.io"
MICROLINK_PRO_URL: str = "https://pro.microlink.io"
FETCH_USER_AGENT: str = "Mozilla/5.0 (compatible; ResearchOrchestrator/1.0)"
FETCH_MAX_CHARS: int = 15000
FETCH_MAX_BYTES: int = 8_000_000

# --- Rerank ---

COHERE_API_KEY: str = _env_str("COHERE_API_KEY")
JINA_API_KEY: str = _env_str("JINA_API_KEY")
COHERE_RERANK_URL: str = "https://api.cohere.ai/v1/rerank"
COHERE_RERANK_MODEL: str = "rerank-english-v3.0"
JINA_RERANK_URL: str = "https://api.jina.ai/v1/rerank"
JINA_RERANK_MODEL: str = "jina-reranker-v2-base-multilingual"
HF_RERANK_MODEL: str = "BAAI/bge-reranker-base"
# Use router (api-inference.huggingface.co returns 410 Gone)
HF_RERANK_URL: str = f"https://router.huggingface.co/hf-inference/models/{HF_RERANK_MODEL}"

# API timeouts (seconds); every call is further bounded by the remaining budget
LLM_API_TIMEOUT: float = 60.0
SEARCH_API_TIMEOUT: float = 15.0
FETCH_TIMEOUT: float = 15.0
RERANK_API_TIMEOUT: float = 20.0

# --- Budget defaults ---

BUDGET_TIME_MS: int = _env_int("BUDGET_TIME_MS", 25000)
BUDGET_SEARCHES: int = _env_int("BUDGET_SEARCHES", 4)
BUDGET_FETCHES: int = _env_int("BUDGET_FETCHES", 12)
BUDGET_TOKENS: int = _env_int("BUDGET_TOKENS", 24000)

# MINIMAL_SEARCH questions run the loop with a capped budget
MINIMAL_SEARCH_MAX_SEARCHES: int = 2
MINIMAL_SEARCH_MAX_FETCHES: int = 1

# --- ReAct loop ---

MAX_ITERATIONS: int = 10
MAX_SAME_ACTION: int = 8
STAGNATION_LIMIT: int = 3
SEARCH_HISTORY_LIMIT: int = 10
DEFAULT_SEARCH_K: int = 12
DEFAULT_RERANK_TOP_N: int = 10
CONSOLIDATE_TOP_N: int = 10
FALLBACK_SEARCH_PASSAGE_THRESHOLD: int = 6

# Early termination thresholds (fractions of the time budget / facet coverage)
HARD_TIME_FRACTION: float = 0.85
SOFT_TIME_FRACTION: float = 0.80
SOFT_COVERAGE_RATIO: float = 0.60
MIN_DOMAIN_DIVERSITY: int = 2
DEAD_END_PASSAGES: int = 15

# Freshness
FRESHNESS_DAYS: int = 30
FRESHNESS_BOOST_K: int = 8

# Query decomposition
QUERY_OVERLAP_LIMIT: float = 0.70
MAX_QUERY_CLAUSES: int = 2
MAX_DECOMPOSED_QUERIES: int = 6

# Chunking (approximate tokens; 1 token ~ 4 chars)
CHUNK_TOKENS: int = 900
CHUNK_OVERLAP_TOKENS: int = 120
MAX_CHUNKS_PER_FETCH: int = 8

# Search result shaping
SEARCH_RETAIN_TOP: int = 35
PER_DOMAIN_CAP: int = 3
DIVERSITY_MIN_RESULTS: int = 20
DIVERSITY_MAX_RESULTS: int = 25
MAX_QUERY_VARIANTS: int = 5
SEARCH_FANOUT_WORKERS: int = 4

# Synthesis
SYNTHESIS_PASSAGES: int = 10
MAX_CITATIONS: int = 4

# --- Cache ---

CACHE_BACKEND: str = _env_str("CACHE_BACKEND", "sqlite").lower()
CACHE_DB_PATH: str = _env_str("CACHE_DB_PATH", "data/research_cache.db")
SEARCH_CACHE_TTL: int = 24 * 3600
PAGE_CACHE_TTL: int = 7 * 24 * 3600
ANSWER_CACHE_DAILY_TTL: int = 24 * 3600
ANSWER_CACHE_EVERGREEN_TTL: int = 30 * 24 * 3600

# --- API auth ---

# Comma separated "label:key" pairs; a bare key gets the label "client-<n>"
API_KEYS: str = _env_str("API_KEYS")
AUTH_DISABLED: bool = _env_bool("AUTH_DISABLED")
