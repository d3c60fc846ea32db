"""Drawdown tracking — pure math, no I/O.

Tracks peak equity and the deepest peak-to-trough decline seen so far.
Drawdowns are fractions of the peak (0.05 = 5 %).
"""


class DrawdownTracker:
    """Tracks equity peaks and computes drawdown metrics.

    Args:
        initial_equity: Starting account equity, used as the first peak.
    """

    def __init__(self, initial_equity: float) -> None:
        self._peak_equity: float = initial_equity
        self._current_equity: float = initial_equity
        self._max_drawdown: float = 0.0

    # ── Mutation ─────────────────────────────────────────────────────────

    def update(self, equity: float) -> None:
        """Record the latest equity, raising the peak when exceeded."""
        self._current_equity = equity
        if equity > self._peak_equity:
            self._peak_equity = equity
        dd = self.drawdown_pct
        if dd > self._max_drawdown:
            self._max_drawdown = dd

    # ── Queries ──────────────────────────────────────────────────────────

    @property
    def peak_equity(self) -> float:
        """Highest equity recorded."""
        return self._peak_equity

    @property
    def current_equity(self) -> float:
        """Most recently recorded equity."""
        return self._current_equity

    @property
    def drawdown_pct(self) -> float:
        """Current decline from peak as a fraction; 0.0 while the peak is <= 0."""
        if self._peak_equity <= 0:
            return 0.0
        return (self._peak_equity - self._current_equity) / self._peak_equity

    @property
    def max_drawdown_pct(self) -> float:
        """Largest ``drawdown_pct`` observed across all updates."""
        return self._max_drawdown
