"""
Configuration for Loto Cover - v1.0
"""
import os
import logging
from math import comb

# ============================================================================
# ENVIRONMENT DETECTION
# ============================================================================
IS_CLOUD = os.getenv("LOTO_COVER_CLOUD", "").strip().lower() in ("1", "true", "yes")


def _env_int(name, default):
    """Read an optional integer ceiling from the environment"""
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    if raw.strip().lower() == "none":
        return None
    return int(raw)


# ============================================================================
# LOTTERY CONFIGURATION - LOTO (FDJ) 5/49 + CHANCE 1-10
# ============================================================================
MIN_NUMBER = 1
MAX_NUMBER = 49
NUMBERS_PER_DRAW = 5
NUMBER_RANGE = (MIN_NUMBER, MAX_NUMBER)
CHANCE_MIN = 1
CHANCE_MAX = 10
CHANCE_RANGE = (CHANCE_MIN, CHANCE_MAX)

GAME_NAME = "Loto"
GAME_COUNTRY = "France"

TOTAL_COMBINATIONS = comb(MAX_NUMBER, NUMBERS_PER_DRAW)  # 1,906,884

# ============================================================================
# GRID PRICES (EUR) - multiple grid of size k = C(k, 5) simple grids
# ============================================================================
DEFAULT_GRID_COSTS = {
    5: 2.20,
    7: 46.20,
    8: 123.20,
    9: 277.20,
    10: 554.40
}
SIMPLE_GRID_SIZE = 5
MAX_GRID_SIZE = 10

# ============================================================================
# PRIZE RANKS (EUR)
# rank: (main matches, chance matched, guaranteed gain, average gain)
# ============================================================================
RANK_TABLE = {
    1: (5, True, 2_000_000, 5_701_258),
    2: (5, False, None, 102_634),
    3: (4, True, 1_000, 1_086),
    4: (4, False, 500, 1_086),
    5: (3, True, 50, 50),
    6: (3, False, 20, 20),
    7: (2, True, 20, 20),
    8: (2, False, 5, 5),
    9: (1, True, 5, 5),
    10: (0, True, 2.20, 2.20),
}

# ============================================================================
# GUARANTEE DEFAULTS
# ============================================================================
DEFAULT_MATCH_THRESHOLD = 3
DEFAULT_DRAW_SIZE = NUMBERS_PER_DRAW

# ============================================================================
# SAFETY CEILINGS
# ============================================================================
MAX_POOL_SIZE = _env_int("LOTO_COVER_MAX_POOL_SIZE", 20)
MAX_UNIVERSE_SIZE = _env_int("LOTO_COVER_MAX_UNIVERSE_SIZE", 20_000)
# Every size 5..10 from a pool of 20 is 571,710 grids
MAX_CANDIDATES = _env_int("LOTO_COVER_MAX_CANDIDATES", 600_000)
MAX_SIMPLE_CANDIDATES = _env_int("LOTO_COVER_MAX_SIMPLE_CANDIDATES", None)
MAX_GRIDS = _env_int("LOTO_COVER_MAX_GRIDS", 200)
MAX_EXHAUSTIVE_DRAWS = _env_int("LOTO_COVER_MAX_EXHAUSTIVE_DRAWS", 100_000)
MAX_COUNTEREXAMPLES = _env_int("LOTO_COVER_MAX_COUNTEREXAMPLES", 100)
DEFAULT_SAMPLE_COUNT = _env_int("LOTO_COVER_SAMPLE_COUNT", 10_000)
VALIDATION_BATCH_SIZE = 4096
CANDIDATE_BATCH_SIZE = 8192
CANCEL_CHECK_INTERVAL = 1024

# ============================================================================
# LOGGING
# ============================================================================
LOG_LEVEL = logging.DEBUG if not IS_CLOUD else logging.INFO
if os.getenv("LOTO_COVER_LOG_LEVEL"):
    LOG_LEVEL = getattr(logging, os.getenv("LOTO_COVER_LOG_LEVEL").upper(), LOG_LEVEL)
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

logging.basicConfig(
    level=LOG_LEVEL,
    format=LOG_FORMAT,
    handlers=[logging.StreamHandler()]
)

logger = logging.getLogger("loto_cover")

logger.debug(f"Environment: Cloud={IS_CLOUD}")
logger.debug(f"Number range: {NUMBER_RANGE}, chance range: {CHANCE_RANGE}")
logger.debug(f"Total combinations: {TOTAL_COMBINATIONS:,}")
logger.debug(f"Ceilings: pool={MAX_POOL_SIZE}, universe={MAX_UNIVERSE_SIZE}, "
             f"candidates={MAX_CANDIDATES}, grids={MAX_GRIDS}, "
             f"exhaustive draws={MAX_EXHAUSTIVE_DRAWS}")
