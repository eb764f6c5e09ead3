from __future__ import annotations

from tenacity.wait import wait_base


class DeterministicExponentialBackoff(wait_base):
    """
    base, 2*base, 4*base ... capped; no jitter so tests can assert on sleeps.
    """

    def __init__(self, *, base: float = 0.5, cap: float = 4.0) -> None:
        self._base = float(base)
        self._cap = float(cap)

    def wait_for(self, attempt_number: int) -> float:
        if attempt_number <= 0:
            return 0.0
        return min(self._cap, self._base * (2 ** (attempt_number - 1)))

    def __call__(self, retry_state) -> float:
        return self.wait_for(retry_state.attempt_number)
