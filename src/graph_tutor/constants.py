"""Centralized constants for graph-tutor.

Edge vocabulary, concept kinds, and tuning knobs used across modules.
"""

# --- Edge vocabulary ---

PREREQUISITE_OF = "PREREQUISITE_OF"

EDGE_TYPES = (
    PREREQUISITE_OF,
    "PART_OF",
    "USED_IN",
    "CONTRASTS_WITH",
    "ADDRESSES_FAILURE_MODE",
    "INTRODUCED_BY",
    "POPULARIZED_BY",
    "CONFUSED_WITH",
)

# --- Concept kinds ---

CONCEPT_KINDS = (
    "Domain",
    "Concept",
    "Method",
    "Architecture",
    "Pattern",
    "Threat",
    "Control",
    "Metric",
    "Benchmark",
    "Protocol",
    "Standard",
    "Regulation",
    "Tool",
    "System",
    "Artifact",
    "Question",
)
DEFAULT_CONCEPT_KIND = "Concept"

# --- Graph lens ---

LENS_DEFAULT_RADIUS = 1
LENS_WARNING_CYCLE = "cycle_detected"

# --- Patch applier ---

HUNK_SEARCH_WINDOW = 40  # lines either side of the declared offset

# --- Duplicate detection ---

DUPLICATE_THRESHOLD = 0.78
DUPLICATE_MAX_RESULTS = 10
DUPLICATE_STOP_WORDS = frozenset({"ai", "llm", "genai", "model", "models"})
DUPLICATE_LEVENSHTEIN_WEIGHT = 0.45
DUPLICATE_BIGRAM_WEIGHT = 0.35
DUPLICATE_TOKEN_WEIGHT = 0.2
DUPLICATE_CONTAINMENT_BONUS = 0.1
DUPLICATE_SAME_MODULE_BONUS = 0.05
DUPLICATE_SAME_KIND_BONUS = 0.02

# --- Context packs ---

CONTEXT_PACK_RADII = ("1-hop", "2-hop", "prereq-path")
QUIZ_REVIEW_TYPES = ("CLOZE", "ORDERING_STEPS", "COMPARE_CONTRAST")

# --- Storage ---

DB_FILENAME = "graph_tutor.db"
LOG_FILENAME = "graph-tutor.log"
SETTINGS_FILENAME = "settings.json"
SQLITE_BUSY_TIMEOUT_MS = 30000
ALIAS_CHAIN_LIMIT = 32
