import logging
from dashboard.config import settings
from dashboard.core.config import LOGS_DIR, RUN_TIMESTAMP
from pythonjsonlogger.json import JsonFormatter

def setup_run_logger(run_id: str) -> logging.Logger:
    """Setup a logger for a specific pipeline run."""
    safe_name = "".join(c if c.isalnum() else "_" for c in run_id.lower())
    logger = logging.getLogger(f"pipeline_run_{safe_name}")
    if not logger.handlers:  # Only add handler if none exists
        log_file = LOGS_DIR / f"run_{safe_name}_{RUN_TIMESTAMP}.log"

        logger.setLevel(logging.INFO)
        logger.propagate = False

        # create a json formatter for structured logging
        formatter = JsonFormatter('%(asctime)s - %(levelname)s - %(message)s')

        # Add file handler
        fh = logging.FileHandler(log_file)
        fh.setLevel(logging.INFO)
        fh.setFormatter(formatter)
        logger.addHandler(fh)

        # Add console handler
        ch = logging.StreamHandler()
        ch.setLevel(logging.INFO)
        ch.setFormatter(formatter)
        logger.addHandler(ch)

    return logger

def release_run_logger(logger: logging.Logger) -> None:
    """Close and detach the handlers of a finished run's logger."""
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)

# Setup root logger
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(levelname)s - %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
