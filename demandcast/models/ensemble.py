#////////////////////////////////////////////////////////////////////////////////#
# File:         ensemble.py                                                      #
# Date:         2025-04-03                                                       #
# Description:  Fixed-weight ensemble over the sequence, trend and             #
#               decomposition strategies.                                        #
#////////////////////////////////////////////////////////////////////////////////#
"""weighted ensemble of independent strategies"""
import logging
from typing import Dict, List, Mapping, Optional, Sequence

import numpy as np

from demandcast import config
from demandcast.exceptions import StrategyError
from demandcast.models.base import Estimate, ForecastStrategy, StrategyOutcome
from demandcast.models.classical import DecompositionStrategy, TrendSmoothingStrategy
from demandcast.models.lstm import SequenceModelStrategy
from demandcast.records import ENSEMBLE_LABEL, round_half_up

logger = logging.getLogger(__name__)


def default_members() -> List[ForecastStrategy]:
    return [SequenceModelStrategy(), TrendSmoothingStrategy(), DecompositionStrategy()]


class EnsembleStrategy(ForecastStrategy):
    """
    Weighted combination of independent strategies.

    Every member runs on the same series. Members that fail, or whose estimate
    breaks the ordering invariant, are left out and the weights of the rest
    are renormalized. Point, lower and upper are each the weighted mean of the
    members' values, rounded half-up. Fails only when every member fails.
    """

    name = ENSEMBLE_LABEL

    def __init__(self, members: Optional[Sequence[ForecastStrategy]] = None,
                 weights: Optional[Mapping[str, float]] = None):
        self.members = list(members) if members is not None else default_members()
        self.weights: Dict[str, float] = dict(weights if weights is not None else config.ENSEMBLE_WEIGHTS)
        if not self.members:
            raise ValueError("ensemble needs at least one member")
        for member in self.members:
            weight = self.weights.get(member.name)
            if weight is None or not weight > 0:
                raise ValueError(f"no positive ensemble weight for member {member.name!r}")

    def _estimate(self, series, forecast_date, adjuster):
        used = []
        failures = {}
        for member in self.members:
            outcome = member.estimate(series, forecast_date, adjuster)
            if not outcome.ok:
                failures[member.name] = outcome.reason
            elif not outcome.estimate.is_ordered():
                failures[member.name] = f"unordered estimate {outcome.estimate}"
            else:
                used.append((member.name, outcome.estimate))

        if not used:
            raise StrategyError(f"all ensemble members failed: {failures}")
        for name, reason in failures.items():
            logger.debug(f"ensemble member {name} left out: {reason}")

        weights = np.array([self.weights[name] for name, _ in used], dtype=float)
        weights = weights / weights.sum()
        points = np.array([est.point for _, est in used], dtype=float)
        lowers = np.array([est.lower for _, est in used], dtype=float)
        uppers = np.array([est.upper for _, est in used], dtype=float)

        estimate = Estimate(
            point=round_half_up(float(np.dot(weights, points))),
            lower=round_half_up(float(np.dot(weights, lowers))),
            upper=round_half_up(float(np.dot(weights, uppers))),
        )
        return StrategyOutcome.success(
            self.name, estimate,
            members=[name for name, _ in used],
            weights={name: float(w) for (name, _), w in zip(used, weights)},
            failures=failures,
        )
