"""
IPW-weighted Cox proportional hazards analysis with weighted Kaplan-Meier curves.
"""

import sys
from pathlib import Path
import logging

# Add src to path for imports
sys.path.append(str(Path(__file__).parent / "src"))

from causal_workflow.utils.helpers import setup_logging
from causal_workflow.workflows import run_survival_ipw_cox


def main():
    """Run the IPW Cox workflow."""
    setup_logging(level="INFO")
    logger = logging.getLogger(__name__)

    logger.info("Starting: IPW-weighted Cox proportional hazards analysis with weighted Kaplan-Meier curves")
    run_survival_ipw_cox()
    logger.info("Done")


if __name__ == "__main__":
    main()
