"""Load state machine shared by every view that fetches from the store.

``IDLE -> LOADING -> LOADED | LOADED_EMPTY | FAILED``

Each fetch is stamped with a generation number. Only the most recently
started fetch may settle the state; slower, older responses are dropped.
While loading, and after a failed refresh, the last good data stays in
``LoadState.data``.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from careassist.errors import CareAssistError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class LoadPhase(str, Enum):
    IDLE = "idle"
    LOADING = "loading"
    LOADED = "loaded"
    LOADED_EMPTY = "loaded_empty"
    FAILED = "failed"


@dataclass(frozen=True)
class LoadState(Generic[T]):
    phase: LoadPhase = LoadPhase.IDLE
    data: Optional[T] = None
    error: Optional[BaseException] = None

    @property
    def has_data(self) -> bool:
        return self.data is not None


def _is_empty(data: Any) -> bool:
    if data is None:
        return True
    try:
        return len(data) == 0
    except TypeError:
        return False


class LoadTracker(Generic[T]):
    def __init__(self, is_empty: Callable[[Any], bool] = _is_empty):
        self._is_empty = is_empty
        self._generation = 0
        self.state: LoadState[T] = LoadState()

    @property
    def generation(self) -> int:
        return self._generation

    def begin(self) -> int:
        self._generation += 1
        self.state = LoadState(LoadPhase.LOADING, data=self.state.data)
        return self._generation

    def is_current(self, token: int) -> bool:
        return token == self._generation

    def resolve(self, token: int, data: T) -> bool:
        if not self.is_current(token):
            logger.debug("Dropping stale response (token=%s current=%s)", token, self._generation)
            return False
        self._settle(data)
        return True

    def fail(self, token: int, error: BaseException) -> bool:
        if not self.is_current(token):
            logger.debug("Dropping stale failure (token=%s current=%s)", token, self._generation)
            return False
        self.state = LoadState(LoadPhase.FAILED, data=self.state.data, error=error)
        return True

    def replace_data(self, data: T) -> None:
        """Swap in locally confirmed data (e.g. after an edit) without a refetch.

        In-flight fetches started before this call are now stale.
        """
        self._generation += 1
        self._settle(data)

    def _settle(self, data: T) -> None:
        phase = LoadPhase.LOADED_EMPTY if self._is_empty(data) else LoadPhase.LOADED
        self.state = LoadState(phase, data=data)

    async def run(self, fetch: Callable[[], Awaitable[T]]) -> LoadState[T]:
        token = self.begin()
        try:
            data = await fetch()
        except CareAssistError as e:
            logger.warning("Load failed: %s", e)
            self.fail(token, e)
        else:
            self.resolve(token, data)
        return self.state
