"""
Pre-trade risk gate: turns a raw candidate list into an admissible,
capacity-bounded set of picks.
"""
from typing import Dict, Iterable, List, Optional, Sequence

from loguru import logger

from tradedesk.config import DEFAULT_EXCLUDED_SYMBOLS, as_float, as_int
from tradedesk.models import CandidatePick, Position, Trend


def filter_candidates(
    candidates: Sequence[CandidatePick],
    positions: Sequence[Position],
    max_positions: int,
    excluded_symbols: Iterable[str] = (),
    min_score: float = 0.0,
    allowed_trends: Iterable[Trend] = (Trend.BULLISH,),
    open_count: Optional[int] = None
) -> List[CandidatePick]:
    """
    Filter, rank and truncate candidates.

    Drops excluded symbols, symbols already held, disallowed trends and
    scores below ``min_score``; sorts by score descending (equal scores keep
    their input order); keeps the first occurrence of each symbol and
    truncates to ``max_positions - open_count``.

    Args:
        candidates: Ranked picks from the signal source
        positions: Current open positions
        max_positions: Maximum number of simultaneously open positions
        excluded_symbols: Symbols never eligible for automated entry
        min_score: Minimum conviction score
        allowed_trends: Trends eligible for entry
        open_count: Open position count (defaults to ``len(positions)``)

    Returns:
        Admissible picks in priority order
    """
    if open_count is None:
        open_count = len(positions)
    capacity = max_positions - open_count
    if capacity <= 0:
        return []

    excluded = {s.upper() for s in excluded_symbols}
    held = {p.symbol.upper() for p in positions}
    trends = set(allowed_trends)

    eligible = [
        pick for pick in candidates
        if pick.symbol not in excluded
        and pick.symbol not in held
        and pick.trend in trends
        and pick.score >= min_score
    ]

    # sorted() is stable, reverse=True included
    ranked = sorted(eligible, key=lambda pick: pick.score, reverse=True)

    seen = set()
    admitted = []
    for pick in ranked:
        if pick.symbol in seen:
            continue
        seen.add(pick.symbol)
        admitted.append(pick)

    return admitted[:capacity]


class RiskGate:
    """
    Configured wrapper around :func:`filter_candidates`.
    """

    def __init__(self, config: Dict, max_positions: int = 5):
        """
        Initialize risk gate.

        Args:
            config: ``risk`` configuration section
            max_positions: Position cap from the ``trading`` section
        """
        self.config = config
        self.max_positions = max_positions
        self.min_score = as_float(config.get('min_score'), 50.0)
        self.excluded_symbols = frozenset(
            s.upper() for s in (config.get('excluded_symbols') or DEFAULT_EXCLUDED_SYMBOLS)
        )
        self.allowed_trends = tuple(
            Trend.parse(t) for t in (config.get('allowed_trends') or [Trend.BULLISH.value])
        )

        logger.info(
            f"RiskGate initialized | "
            f"Max positions: {self.max_positions}, "
            f"Min score: {self.min_score}, "
            f"Excluded: {len(self.excluded_symbols)} symbols"
        )

    @classmethod
    def from_config(cls, config: Dict) -> "RiskGate":
        trading = config.get('trading', {}) or {}
        return cls(
            config.get('risk', {}) or {},
            max_positions=as_int(trading.get('max_positions'), 5),
        )

    def remaining_capacity(self, open_count: int) -> int:
        return max(self.max_positions - open_count, 0)

    def filter(
        self,
        candidates: Sequence[CandidatePick],
        positions: Sequence[Position]
    ) -> List[CandidatePick]:
        admitted = filter_candidates(
            candidates,
            positions,
            max_positions=self.max_positions,
            excluded_symbols=self.excluded_symbols,
            min_score=self.min_score,
            allowed_trends=self.allowed_trends,
        )
        logger.info(
            f"Risk gate | {len(candidates)} candidates -> {len(admitted)} admitted | "
            f"{', '.join(p.symbol for p in admitted) or 'none'}"
        )
        return admitted
