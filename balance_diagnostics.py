"""
Covariate balance diagnostics for propensity-score weighting.
"""

import sys
from pathlib import Path
import logging

# Add src to path for imports
sys.path.append(str(Path(__file__).parent / "src"))

from causal_workflow.utils.helpers import setup_logging
from causal_workflow.workflows import run_balance_diagnostics


def main():
    """Run the balance diagnostics workflow."""
    setup_logging(level="INFO")
    logger = logging.getLogger(__name__)

    logger.info("Starting: Covariate balance diagnostics for propensity-score weighting")
    run_balance_diagnostics()
    logger.info("Done")


if __name__ == "__main__":
    main()
