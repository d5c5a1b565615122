from threading import RLock
from typing import Optional, Dict, Any
import time

_lock = RLock()
_generation_last_error: Optional[str] = None
_generation_last_error_time: Optional[float] = None
_generation_last_success_time: Optional[float] = None
_generation_calls: int = 0


def set_generation_failure(reason: str):
    global _generation_last_error, _generation_last_error_time, _generation_calls
    with _lock:
        _generation_last_error = reason.strip()[:160]
        _generation_last_error_time = time.time()
        _generation_calls += 1


def set_generation_success():
    global _generation_last_success_time, _generation_calls
    with _lock:
        _generation_last_success_time = time.time()
        _generation_calls += 1
        # keep last error for diagnostics


def generation_status(configured: bool) -> Dict[str, Any]:
    with _lock:
        return {
            "configured": configured,
            "calls": _generation_calls,
            "last_error": _generation_last_error,
            "last_error_time": _generation_last_error_time,
            "last_success_time": _generation_last_success_time,
        }


def reset():
    global _generation_last_error, _generation_last_error_time, _generation_last_success_time, _generation_calls
    with _lock:
        _generation_last_error = None
        _generation_last_error_time = None
        _generation_last_success_time = None
        _generation_calls = 0
