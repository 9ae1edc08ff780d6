import sys
from datetime import datetime
from pathlib import Path

from loguru import logger

# no {extra}: bound context may carry report content
LOG_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {name}:{line} | {message}"


def setup_logging(root: str, level: str = "INFO", retention_days: int = 14, console: bool = True):
    """
    One file per day under <root>/YYYY/MM/DD/app.log, plus stderr when
    `console` is set. stdout stays free for CLI JSON output.
    """
    logdir = Path(root) / datetime.now().strftime("%Y/%m/%d")
    logdir.mkdir(parents=True, exist_ok=True)
    logger.remove()
    logger.add(
        str(logdir / "app.log"),
        format=LOG_FORMAT,
        rotation="00:00",
        retention=f"{retention_days} days",
        level=level,
        enqueue=True,
        backtrace=True,
        diagnose=False,  # keeps tokens and clinical values out of tracebacks
    )
    if console:
        logger.add(sys.stderr, format=LOG_FORMAT, level=level, diagnose=False)
    return logger
