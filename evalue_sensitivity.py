"""
E-value sensitivity analysis for example observational studies.
"""

import sys
from pathlib import Path
import logging

# Add src to path for imports
sys.path.append(str(Path(__file__).parent / "src"))

from causal_workflow.utils.helpers import setup_logging
from causal_workflow.workflows import run_evalue_sensitivity


def main():
    """Run the E-value workflow."""
    setup_logging(level="INFO")
    logger = logging.getLogger(__name__)

    logger.info("Starting: E-value sensitivity analysis for example observational studies")
    run_evalue_sensitivity()
    logger.info("Done")


if __name__ == "__main__":
    main()
