# src/tspend/policy/window.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from tspend.chain.params import ChainParams
from tspend.chain.treasury import calc_tspend_expiry, calc_tspend_window, is_treasury_vote_interval
from tspend.errors import ConfigError
from tspend.structured_logging import log_event

log = logging.getLogger("tspend.window")


@dataclass(frozen=True)
class WindowPlacement:
    next_height: int
    is_tvi: bool
    blocks_to_tvi: int
    too_close_threshold: int
    too_close: bool
    # Placement without the too-close adjustment.
    naive_expiry: int
    naive_window: Tuple[int, int]
    # Placement actually used.
    adjusted_height: int
    expiry: int
    window: Tuple[int, int]


class WindowPolicy:
    """Places a tspend's expiry (and therefore its voting window).

    A vote that would start too close to the next TVI leaves no time for the
    offline steps between signing and publishing (moving data across
    air-gapped machines, public review, distribution), so such placements
    are pushed into the following TVI. "Too close" is less than 1/4 of a TVI.
    """

    def __init__(
        self,
        params: ChainParams,
        *,
        best_height: Optional[Callable[[], int]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.params = params
        self._best_height = best_height
        self._log = logger or log

    @property
    def tvi(self) -> int:
        return self.params.treasury_vote_interval

    @property
    def multiplier(self) -> int:
        return self.params.treasury_vote_interval_multiplier

    def explain(self, current_height: int) -> WindowPlacement:
        next_height = int(current_height) + 1
        tvi = self.tvi
        blocks_to_tvi = tvi - (next_height % tvi)
        threshold = tvi // 4
        too_close = blocks_to_tvi < threshold

        naive_expiry = calc_tspend_expiry(next_height, tvi, self.multiplier)
        adjusted = next_height + blocks_to_tvi if too_close else next_height
        expiry = calc_tspend_expiry(adjusted, tvi, self.multiplier)
        return WindowPlacement(
            next_height=next_height,
            is_tvi=is_treasury_vote_interval(next_height, tvi),
            blocks_to_tvi=blocks_to_tvi,
            too_close_threshold=threshold,
            too_close=too_close,
            naive_expiry=naive_expiry,
            naive_window=self.window_for(naive_expiry),
            adjusted_height=adjusted,
            expiry=expiry,
            window=self.window_for(expiry),
        )

    def compute_expiry(
        self,
        current_height: Optional[int] = None,
        explicit_expiry: Optional[int] = None,
    ) -> int:
        """Expiry for a tspend built now.

        An explicit expiry always wins. Otherwise the placement starts from
        ``current_height`` or, when that is not given, the node's best height.
        """
        if explicit_expiry:
            return int(explicit_expiry)

        if not current_height:
            if self._best_height is None:
                raise ConfigError("no_current_height", "no current height given and no node to ask for one")
            current_height = int(self._best_height())
            self._log.debug("best block height %d", current_height)

        placement = self.explain(current_height)
        self._log.info("next block height: %d", placement.next_height)
        if placement.too_close:
            log_event(
                self._log,
                "tvi_too_close",
                blocks_to_tvi=placement.blocks_to_tvi,
                threshold=placement.too_close_threshold,
                next_height=placement.adjusted_height,
            )
        return placement.expiry

    def window_for(self, expiry: int) -> Tuple[int, int]:
        return calc_tspend_window(int(expiry), self.tvi, self.multiplier)
