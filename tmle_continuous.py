"""
TMLE analysis of a continuous outcome (blood pressure change) with Super Learner.
"""

import sys
from pathlib import Path
import logging

# Add src to path for imports
sys.path.append(str(Path(__file__).parent / "src"))

from causal_workflow.utils.helpers import setup_logging
from causal_workflow.workflows import run_tmle_continuous


def main():
    """Run the continuous-outcome TMLE workflow."""
    setup_logging(level="INFO")
    logger = logging.getLogger(__name__)

    logger.info("Starting: TMLE analysis of a continuous outcome (blood pressure change) with Super Learner")
    run_tmle_continuous()
    logger.info("Done")


if __name__ == "__main__":
    main()
