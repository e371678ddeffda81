ONE_MEBIBYTE = 1024 * 1024

CHUNK_SIZE = 64 * 1024
HASH_CHUNK_SIZE = ONE_MEBIBYTE

TICKS_PER_SECOND = 1_000_000_000
TICKS_PER_MILLISECOND = 1_000_000

DEFAULT_WINDOW_MILLISECONDS = 300
DEFAULT_HISTORY_SIZE = 6

MIN_CONCURRENCY = 1
MAX_CONCURRENCY = 8
DEFAULT_CONCURRENCY = 4

PROGRESS_POLL_INTERVAL_SECONDS = 0.1
EVENTS_QUEUE_SIZE = 1000
