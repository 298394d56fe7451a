"""
Data-frame basics: building, filtering and selecting patient data.
"""

import sys
from pathlib import Path
import logging

# Add src to path for imports
sys.path.append(str(Path(__file__).parent / "src"))

from causal_workflow.utils.helpers import setup_logging
from causal_workflow.workflows import run_basics_demo


def main():
    """Run the data-frame basics demo."""
    setup_logging(level="INFO")
    logger = logging.getLogger(__name__)

    logger.info("Starting: Data-frame basics: building, filtering and selecting patient data")
    run_basics_demo()
    logger.info("Done")


if __name__ == "__main__":
    main()
