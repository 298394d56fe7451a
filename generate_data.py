"""
Generate the synthetic CSV datasets used by every analysis script.
"""

import sys
from pathlib import Path
import logging

# Add src to path for imports
sys.path.append(str(Path(__file__).parent / "src"))

from causal_workflow import config
from causal_workflow.data.simulate import write_all
from causal_workflow.utils.helpers import setup_logging


def main():
    """Write every dataset under data/."""
    setup_logging(level="INFO")
    logger = logging.getLogger(__name__)

    paths = write_all(config.DATA_DIR)
    logger.info(f"Generated {len(paths)} datasets in {config.DATA_DIR}")


if __name__ == "__main__":
    main()
