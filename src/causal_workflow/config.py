"""Central configuration for the causal inference workflow."""

from pathlib import Path

# ── Paths ──────────────────────────────────────────────────────────────────────
PROJECT_ROOT = Path(__file__).resolve().parents[2]
DATA_DIR = PROJECT_ROOT / "data"
OUTPUT_DIR = PROJECT_ROOT / "output"

BASICS_SUBDIR = "basics"
WORKFLOW_SUBDIR = "workflow"
SENSITIVITY_SUBDIR = "sensitivity"

# ── Reproducibility ───────────────────────────────────────────────────────────
RANDOM_SEED = 42

# ── Variable names ─────────────────────────────────────────────────────────────
ID_COL = "id"
TREATMENT_COL = "treatment"
OUTCOME_CONTINUOUS = "outcome"
OUTCOME_BINARY = "death"
TIME_COL = "time"
EVENT_COL = "event"

COVARIATE_COLS = ["age", "sex", "comorbidity", "severity"]

# ── Estimation ─────────────────────────────────────────────────────────────────
SL_LIBRARY = ("glm", "glmnet")
SURVIVAL_SL_LIBRARY = ("glm",)
SL_CV_FOLDS = 10
DML_FOLDS = 5
G_BOUND = 0.025

SURVIVAL_T0 = 365
SURVIVAL_INTERVALS = 12
SURVIVAL_SUBSET_N = 150

# ── Diagnostics thresholds ─────────────────────────────────────────────────────
SMD_THRESHOLD = 0.1
VARIANCE_RATIO_BOUNDS = (0.5, 2.0)
MAX_WEIGHT_THRESHOLD = 10.0
ESS_RATIO_THRESHOLD = 0.5

# ── Presentation ───────────────────────────────────────────────────────────────
COLORS = {
    "control": "#E63946",
    "treatment": "#2E86AB",
    "primary": "#2E86AB",
    "cox": "#1D3557",
    "neutral": "gray",
    "light_gray": "#F5F5F5",
    "dark_gray": "#333333",
}
BASE_FONT_SIZE = 16
FIGURE_DPI = 300

# ── True causal effects (for synthetic data validation) ────────────────────────
TRUE_ATE_CONTINUOUS = -5.0
TRUE_LOG_HR = -0.4
