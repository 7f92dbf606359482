import logging
import sys

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def configure_logging(level="INFO"):
    """Send the engine and host logs to stdout in one format."""
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
    )
    logging.getLogger("services").setLevel(level)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)
