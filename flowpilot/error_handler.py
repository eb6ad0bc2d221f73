from __future__ import annotations

import time
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Callable, Deque, List, Optional

from .logger import get_logger

MAX_HISTORY = 50


@dataclass(frozen=True)
class ErrorRecord:
    error: BaseException
    operation: str
    step_id: Any = None
    timestamp: float = field(default_factory=time.time)


class ErrorHandler:
    """Routes engine errors: log, record, expose in state, notify ``error`` listeners.

    ``set_error`` is the engine callback that stores the observable error;
    ``publish`` delivers the ``error`` event and ``context`` supplies the
    context handed to listeners.
    """

    def __init__(
        self,
        *,
        set_error: Callable[[Optional[BaseException]], None],
        publish: Callable[..., Any],
        context: Callable[[], Any],
        logger: Any = None,
        max_history: int = MAX_HISTORY,
    ) -> None:
        self._set_error = set_error
        self._publish = publish
        self._context = context
        self.logger = logger or get_logger("flowpilot")
        self._history: Deque[ErrorRecord] = deque(maxlen=max_history)

    async def handle_error(
        self,
        error: BaseException,
        operation: str,
        *,
        step_id: Any = None,
        set_state: bool = True,
    ) -> ErrorRecord:
        record = ErrorRecord(error=error, operation=operation, step_id=step_id)
        self._history.append(record)
        self.logger.error("%s failed (step=%r): %s", operation, step_id, error)
        if set_state:
            self._set_error(error)
        await self._publish("error", error, self._context())
        return record

    @property
    def history(self) -> List[ErrorRecord]:
        return list(self._history)

    @property
    def last_error(self) -> Optional[ErrorRecord]:
        return self._history[-1] if self._history else None

    def clear_history(self) -> None:
        self._history.clear()
