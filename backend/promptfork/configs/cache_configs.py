import os

#####
# Logging
#####
LOG_LEVEL = os.environ.get("LOG_LEVEL") or "info"

#####
# Prompt Caching
#####
# Set to "false" to send every request uncached, regardless of provider support
ENABLE_PROMPT_CACHING = (
    os.environ.get("ENABLE_PROMPT_CACHING", "true").lower() != "false"
)

# Providers with automatic caching report an unbounded breakpoint count. Planning code
# needs a finite number, so unbounded limits are replaced with this ceiling.
PROMPT_CACHE_MAX_PRACTICAL_BREAKPOINTS = int(
    os.environ.get("PROMPT_CACHE_MAX_PRACTICAL_BREAKPOINTS") or 10
)

#####
# Cache Warmup
#####
# Prompt sent with the cached prefix purely to populate the provider cache
WARMUP_PROMPT = (
    os.environ.get("WARMUP_PROMPT")
    or 'Respond with exactly one word: "ready". Do not include any other text.'
)
WARMUP_MAX_TOKENS = int(os.environ.get("WARMUP_MAX_TOKENS") or 10)
# Rough token count of WARMUP_PROMPT, used for pre-flight cost estimates
WARMUP_OVERHEAD_TOKENS = int(os.environ.get("WARMUP_OVERHEAD_TOKENS") or 20)

#####
# Model Catalog
#####
MODEL_CATALOG_TTL_SECONDS = int(os.environ.get("MODEL_CATALOG_TTL_SECONDS") or 300)
MODEL_CATALOG_REQUEST_TIMEOUT = float(
    os.environ.get("MODEL_CATALOG_REQUEST_TIMEOUT") or 10
)
