from loguru import logger
from pathlib import Path
import sys


def setup_logger(log_dir: str = "logs", level: str = "INFO"):
    Path(log_dir).mkdir(parents=True, exist_ok=True)
    logger.remove()
    logger.add(sys.stdout, level=level)
    logger.add(Path(log_dir) / "runtime.log", rotation="10 MB", level="INFO")
    return logger
