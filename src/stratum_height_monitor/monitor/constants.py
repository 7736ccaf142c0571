"""Shared constants for the monitor module."""

# Largest line accepted from a pool (bytes); notify lines carry whole coinbase halves
MAX_LINE_SIZE = 1024 * 1024

# Timeout for closing a pool socket (seconds)
DISCONNECT_TIMEOUT = 5.0

# Maximum length for background task exception messages
MAX_BACKGROUND_ERROR_LENGTH = 500

# Maximum length of a raw line echoed into debug logs
MAX_LOGGED_LINE_LENGTH = 300
