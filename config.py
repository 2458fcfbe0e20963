import os

from dotenv import load_dotenv

# ============================================================
# ENVIRONMENT (SECURE LOAD)
# ============================================================

# 1. Load the .env file immediately
load_dotenv()

# 2. Document storage location (env first, then defaults)
PORTFOLIO_DIR = os.environ.get("PORTFOLIO_DIR", ".")
PORTFOLIO_FILE = os.environ.get("PORTFOLIO_FILE", "portfolio-current.json")

# 3. Net-worth goal used by the "time to target" estimates
try:
    TARGET_PORTFOLIO_VALUE = float(os.environ.get("TARGET_PORTFOLIO_VALUE", 1000000.0))
except ValueError:
    print("⚠️ WARNING: TARGET_PORTFOLIO_VALUE is not a number. Using 1,000,000.")
    TARGET_PORTFOLIO_VALUE = 1000000.0

# ============================================================
# PORTFOLIO DEFAULTS
# ============================================================
DEFAULT_BENCHMARK_RATE = "10,65"  # annual benchmark, percent points
DEFAULT_STRATEGY = "target"
STRATEGIES = ("target", "momentum")

# ============================================================
# ENGINE PARAMETERS
# ============================================================
MAX_EXPANSION_DAYS = 10000  # ~27 years of daily points

# Projection horizons: periods (months) -> weeks
PROJECTION_HORIZONS = {
    6: 26,
    12: 52,
    24: 104,
}

# Weekly-yield standard deviation buckets
RISK_LOW_THRESHOLD = 0.001
RISK_MODERATE_THRESHOLD = 0.003

# Sum of targets is "compliant" when within this distance of 100%
TARGET_SUM_TOLERANCE = 0.1

# ============================================================
# APP PARAMETERS
# ============================================================
RECALC_DEBOUNCE_MS = 300
DOCUMENT_CACHE_SECONDS = 2.0

# ============================================================
# GLOBAL COLOR PALETTE
# ============================================================
GLOBAL_PALETTE = [
    "#4C6A92",  # steel blue
    "#8C9CB1",  # soft gray-blue
    "#C0504D",  # muted red
    "#D79E9C",  # soft red-gray
    "#9BBB59",  # olive green
    "#C5D6A4",  # light olive
    "#8064A2",  # muted purple
    "#B1A0C7",  # lavender gray
    "#4F81BD",  # corporate blue
    "#A5B5CF",  # cool gray-blue
    "#F2C200",  # muted gold (accent)
    "#D6B656",  # soft gold-gray
]
