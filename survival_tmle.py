"""
Survival TMLE: treatment-specific survival at 365 days.
"""

import sys
from pathlib import Path
import logging

# Add src to path for imports
sys.path.append(str(Path(__file__).parent / "src"))

from causal_workflow.utils.helpers import setup_logging
from causal_workflow.workflows import run_survival_tmle


def main():
    """Run the survival TMLE workflow."""
    setup_logging(level="INFO")
    logger = logging.getLogger(__name__)

    logger.info("Starting: Survival TMLE: treatment-specific survival at 365 days")
    run_survival_tmle()
    logger.info("Done")


if __name__ == "__main__":
    main()
