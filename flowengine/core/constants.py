"""Core constants: cache key prefixes and shared literal values."""

# Cache key prefixes
CACHE_PREFIX_FLOW_USE = "flow_use"

# Delimiter for composite keys
CACHE_KEY_SEP = ":"

# Message added to a successful transition result
TRANSITION_EXECUTED_MESSAGE = "transition executed successfully"

# Transition slugs: lowercase words joined by single hyphens
SLUG_PATTERN = r"^[a-z0-9]+(?:-[a-z0-9]+)*$"

# Rank given to the first preferred flow id; later ids get one less each
PREFER_ID_BASE_RANK = 1000
