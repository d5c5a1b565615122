from loguru import logger
import sys, pathlib
from findocs.core.config import get_settings

_configured = False


def setup_logging():
    global _configured
    if _configured:
        return logger
    settings = get_settings()
    logger.remove()
    logger.add(sys.stderr, level=settings.log_level.upper(), backtrace=True, diagnose=False, enqueue=True)
    # File sink for persistent pipeline diagnostics
    if settings.log_dir:
        try:
            log_dir = pathlib.Path(settings.log_dir)
            log_dir.mkdir(parents=True, exist_ok=True)
            logger.add(str(log_dir / "pipeline.log"), level=settings.log_level.upper(), rotation="5 MB", retention=5, enqueue=True, backtrace=False, diagnose=False)
        except OSError as e:
            logger.warning(f"File logging disabled: {e}")
    _configured = True
    return logger
