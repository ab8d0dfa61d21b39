"""Application-wide constants."""

DEFAULT_ORGANIZATION_ID = "default_org"
DEFAULT_SOURCE_TYPE = "general"

# Rough token estimate when the chunker does not report one (1 token ~ 4 chars)
CHARS_PER_TOKEN = 4

# Characters of chunk text returned in preview listings
PREVIEW_SNIPPET_CHARS = 200

# Upper bound of sessions/records handled by one sweep run
SESSION_SWEEP_LIMIT = 100
PURGE_SWEEP_LIMIT = 50

HOT_CHUNKS_DEFAULT_LIMIT = 20
