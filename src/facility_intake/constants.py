"""
Project-wide constants for the facility intake pipeline
"""  # noqa: D200, D212, D415

# ==============================================================================
# Segmentation and Extraction
# ==============================================================================

MAX_CHUNK_SIZE = 100_000  # UTF-8 bytes per extraction request
CHUNK_CONCURRENCY = 3  # chunk requests in flight per batch
TEXT_MAX_TOKENS = 16_384
IMAGE_MAX_TOKENS = 8_000
DEFAULT_SHEET_NAME = "Sheet 1"
MIN_SUBSTANTIVE_TEXT = 100  # below this a document yields no placeholder facility

# Defaults applied while normalizing model payloads
DEFAULT_LINE_ITEM_CONFIDENCE = 0.7
PLACEHOLDER_FACILITY_CONFIDENCE = 0.3
CONFIDENCE_UPLIFT = 0.1

# ==============================================================================
# Confidence Thresholds
# ==============================================================================

# These come from separate decision points and are kept distinct on purpose.
LOW_CONFIDENCE_THRESHOLD = 0.70  # below: raise a low-confidence clarification
SUGGEST_THRESHOLD = 0.75  # below: value is shown with alternatives
AUTO_ACCEPT_THRESHOLD = 0.90  # at or above: accepted without review

# ==============================================================================
# Clarification
# ==============================================================================

CONFLICT_TOLERANCE = 0.05  # relative difference tolerated between sources
HIGH_PRIORITY_THRESHOLD = 8  # priority at or above blocks a run until continued
OCCUPANCY_VALID_RANGE = (0.50, 1.00)
OCCUPANCY_BENCHMARK = (0.70, 0.95, 0.82)  # low, high, median

PRIORITY_CONFLICT = 8
PRIORITY_LOW_CONFIDENCE = 7
PRIORITY_OUT_OF_RANGE = 7
PRIORITY_MISSING = 5

# ==============================================================================
# Router
# ==============================================================================

RATE_LIMIT_WINDOW = 60.0  # seconds
CIRCUIT_FAILURE_THRESHOLD = 5
CIRCUIT_FAILURE_WINDOW = 60.0  # seconds
CIRCUIT_OPEN_SECONDS = 30.0

# ==============================================================================
# Streaming
# ==============================================================================

EVENT_QUEUE_SIZE = 1_000
EVENT_HISTORY_SIZE = 100
HEARTBEAT_SECONDS = 15.0

# ==============================================================================
# Runs
# ==============================================================================

MAX_FINISHED_RUNS = 200  # oldest finished runs beyond this are forgotten
