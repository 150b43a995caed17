import logging
from pathlib import Path
from typing import Optional
from rich.console import Console
from rich.logging import RichHandler

LOG_FILENAME = "compression.log"
FILE_FORMAT = "%(asctime)s - %(levelname)s - %(name)s - %(message)s"


def setup_logging(log_dir: Optional[Path] = None, debug: bool = False, console: Optional[Console] = None) -> logging.Logger:
    """Configures the 'vcomp' logger tree.

    The console only shows warnings unless debug is on; the log file (when
    log_dir is given) always gets INFO and above.
    """
    logger = logging.getLogger("vcomp")
    logger.setLevel(logging.DEBUG if debug else logging.INFO)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    console_handler = RichHandler(console=console, show_path=False, rich_tracebacks=debug)
    console_handler.setLevel(logging.DEBUG if debug else logging.WARNING)
    logger.addHandler(console_handler)

    if log_dir is not None:
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_dir / LOG_FILENAME)
        file_handler.setLevel(logging.DEBUG if debug else logging.INFO)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger
