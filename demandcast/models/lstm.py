#////////////////////////////////////////////////////////////////////////////////#
# File:         lstm.py                                                          #
# Date:         2025-04-02                                                       #
# Description:  LSTM scoring network with quantile heads, the read-only scorer   #
#               singletons built on it, and the sequence-model strategy.        #
#////////////////////////////////////////////////////////////////////////////////#


"""
LSTM sequence model for demand estimation with directly emitted uncertainty
bounds.

The network has one output head per quantile level (lower, median, upper).
Scorers wrap a network in evaluation mode, are created once per window length
and never mutated afterwards; calls into the network are serialized with a
lock because the scoring path is not guaranteed to be re-entrant.
"""


import logging
import os
import pickle
import threading
from pathlib import Path
from typing import Callable, Dict, List, Optional, Protocol, Tuple, Union

import numpy as np
import torch
import torch.nn as nn
from scipy.stats import norm

from demandcast import config
from demandcast.exceptions import StrategyError
from demandcast.feature_engineering import N_SEQUENCE_FEATURES, build_feature_window, window_scale
from demandcast.models.base import Estimate, ForecastStrategy, StrategyOutcome
from demandcast.records import SEQUENCE_LABEL, round_half_up
from demandcast.utils import create_directory, setup_torch_device

logger = logging.getLogger(__name__)


def _quantile_key(q: float) -> str:
    return f"q{str(q).replace('.', '')}"  # 0.5 -> "q05"


class LSTMModel(nn.Module):
    """
    LSTM network emitting one value per quantile level.
    """
    def __init__(
        self,
        input_dim: int,
        hidden_dim: int,
        num_layers: int,
        quantile_levels: List[float],
        dropout: float = 0.2,
        use_attention: bool = False,
        target_mean: float = None,
        target_std: float = None
    ):
        """
        Initialize the LSTM model.

        Args:
            input_dim: Number of features per time step
            hidden_dim: Number of hidden units in LSTM layers
            num_layers: Number of LSTM layers
            quantile_levels: Quantile levels, one output head each
            dropout: Dropout rate (applied between LSTM layers)
            use_attention: Whether to use attention over time steps
            target_mean: Mean of (scaled) targets, centers the output heads
            target_std: Spread of (scaled) targets, offsets the outer heads
        """
        super(LSTMModel, self).__init__()

        if not quantile_levels:
            raise ValueError("quantile_levels must not be empty")

        # Store architecture parameters for save/load
        self.input_dim = input_dim
        self.hidden_dim = hidden_dim
        self.num_layers = num_layers
        self.quantile_levels = list(quantile_levels)
        self.dropout_rate = dropout
        self.use_attention = use_attention
        self.target_mean = target_mean
        self.target_std = target_std

        self.lstm = nn.LSTM(
            input_size=input_dim,
            hidden_size=hidden_dim,
            num_layers=num_layers,
            batch_first=True,             # Input shape: (batch, sequence, features)
            dropout=dropout if num_layers > 1 else 0,
        )

        if use_attention:
            # hidden features -> tanh -> single score per time step
            self.attention = nn.Sequential(
                nn.Linear(hidden_dim, hidden_dim),
                nn.Tanh(),
                nn.Linear(hidden_dim, 1)
            )

        self.dropout_layer = nn.Dropout(dropout)

        if target_std is not None and target_mean is not None:
            base_scale = float(target_std)
            base_bias = float(target_mean)
        else:
            logger.debug("Target statistics not provided for quantile head initialization. Using defaults.")
            base_scale = 1.0
            base_bias = 0.0

        # one head per quantile with its own learned scale and bias
        self.quantile_outputs = nn.ModuleDict()
        self.quantile_scales = nn.ParameterDict()
        self.quantile_biases = nn.ParameterDict()

        for q in self.quantile_levels:
            q_key = _quantile_key(q)
            self.quantile_outputs[q_key] = nn.Linear(hidden_dim, 1)

            # outer quantiles get a wider scale and a bias offset by the
            # normal quantile so heads start out ordered
            quantile_distance_from_median = abs(q - 0.5)
            adjusted_scale = base_scale * (1.0 + quantile_distance_from_median * 0.5)
            adjusted_bias = base_bias + float(norm.ppf(q)) * base_scale

            self.quantile_scales[q_key] = nn.Parameter(torch.FloatTensor([adjusted_scale]))
            self.quantile_biases[q_key] = nn.Parameter(torch.FloatTensor([adjusted_bias]))

    def forward(self, features: torch.Tensor) -> Dict[float, torch.Tensor]:
        """
        Forward pass.

        Args:
            features: Tensor of shape (batch_size, sequence_length, input_dim)

        Returns:
            Dictionary mapping quantile levels to tensors of shape (batch_size, 1)
        """
        batch_size = features.shape[0]

        h0 = torch.zeros(self.num_layers, batch_size, self.hidden_dim, device=features.device)
        c0 = torch.zeros(self.num_layers, batch_size, self.hidden_dim, device=features.device)
        lstm_out, _ = self.lstm(features, (h0, c0))

        if self.use_attention:
            # softmax over time steps, then weighted sum of hidden states
            attention_weights = torch.softmax(self.attention(lstm_out).squeeze(-1), dim=1)
            lstm_out = torch.bmm(attention_weights.unsqueeze(1), lstm_out).squeeze(1)
        else:
            lstm_out = lstm_out[:, -1, :]

        lstm_out = self.dropout_layer(lstm_out)

        quantile_forecasts = {}
        for quantile_level in self.quantile_levels:
            quantile_key = _quantile_key(quantile_level)
            raw = self.quantile_outputs[quantile_key](lstm_out)
            quantile_forecasts[quantile_level] = raw * self.quantile_scales[quantile_key] \
                + self.quantile_biases[quantile_key]
        return quantile_forecasts


def create_sequence_model(
    input_dim: int = N_SEQUENCE_FEATURES,
    hidden_dim: int = config.DEFAULT_HIDDEN_DIM,
    num_layers: int = config.DEFAULT_NUM_LAYERS,
    quantile_levels: List[float] = None,
    dropout: float = config.DEFAULT_DROPOUT,
    use_attention: bool = config.USE_ATTENTION,
    target_mean: float = 1.0,
    target_std: float = 0.25
) -> LSTMModel:
    """
    Factory for the scoring network.

    Inputs and targets are expressed relative to the window's mean quantity,
    so the default target statistics center the heads on "same as recent
    average".
    """
    return LSTMModel(
        input_dim=input_dim,
        hidden_dim=hidden_dim,
        num_layers=num_layers,
        quantile_levels=quantile_levels or list(config.QUANTILE_LEVELS),
        dropout=dropout,
        use_attention=use_attention,
        target_mean=target_mean,
        target_std=target_std,
    )


class WindowScorer(Protocol):
    """maps a feature window to (point, lower, upper)"""

    sequence_length: int

    def score(self, window: np.ndarray) -> Tuple[float, float, float]:
        ...


class SequenceScorer:
    """
    Read-only scoring function around a trained network.

    The window's quantity and price columns are divided by their window means
    before scoring and the outputs multiplied back, so one network serves
    products of any volume.
    """

    def __init__(self, model: LSTMModel, sequence_length: int,
                 device: Optional[torch.device] = None):
        if len(model.quantile_levels) < 3:
            raise ValueError("scoring network needs lower, median and upper quantile heads")
        self.sequence_length = sequence_length
        self.device = device or setup_torch_device()
        self.model = model.to(self.device)
        self.model.eval()
        for parameter in self.model.parameters():
            parameter.requires_grad_(False)

        levels = sorted(model.quantile_levels)
        self.lower_level = levels[0]
        self.upper_level = levels[-1]
        self.point_level = min(levels, key=lambda q: abs(q - 0.5))
        self._lock = threading.Lock()

    def score(self, window: np.ndarray) -> Tuple[float, float, float]:
        expected = (self.sequence_length, self.model.input_dim)
        if window.shape != expected:
            raise ValueError(f"feature window has shape {window.shape}, expected {expected}")

        quantity_scale, price_scale = window_scale(window)
        scaled = np.array(window, dtype=np.float32, copy=True)
        scaled[:, 0] /= quantity_scale
        scaled[:, 1] /= price_scale
        features = torch.from_numpy(scaled).unsqueeze(0).to(self.device)

        with self._lock, torch.no_grad():
            outputs = self.model(features)

        point = float(outputs[self.point_level][0, 0]) * quantity_scale
        lower = float(outputs[self.lower_level][0, 0]) * quantity_scale
        upper = float(outputs[self.upper_level][0, 0]) * quantity_scale
        return point, lower, upper


def save_sequence_model(model: LSTMModel, path: Union[str, Path],
                        model_name: str = "sequence_model") -> None:
    """
    Save network weights and architecture.

    Args:
        model: Network to save
        path: Directory path to save the model
        model_name: Name for the saved model files
    """
    create_directory(path)

    torch.save(model.state_dict(), os.path.join(path, f"{model_name}.pt"))

    model_info = {
        "input_dim": model.input_dim,
        "hidden_dim": model.hidden_dim,
        "num_layers": model.num_layers,
        "quantile_levels": model.quantile_levels,
        "dropout": model.dropout_rate,
        "use_attention": model.use_attention,
        "target_mean": model.target_mean,
        "target_std": model.target_std,
    }
    with open(os.path.join(path, f"{model_name}_info.pkl"), "wb") as f:
        pickle.dump(model_info, f)
    logger.info(f"saved sequence model to {path}")


def load_sequence_model(path: Union[str, Path], model_name: str = "sequence_model",
                        device: Union[str, torch.device] = "cpu") -> LSTMModel:
    """
    Load a saved network.

    Args:
        path: Directory path where the model is saved
        model_name: Name of the saved model files
        device: Device to map the weights to

    Returns:
        The network with its saved weights
    """
    with open(os.path.join(path, f"{model_name}_info.pkl"), "rb") as f:
        model_info = pickle.load(f)

    model = create_sequence_model(
        input_dim=model_info["input_dim"],
        hidden_dim=model_info["hidden_dim"],
        num_layers=model_info["num_layers"],
        quantile_levels=model_info["quantile_levels"],
        dropout=model_info.get("dropout", config.DEFAULT_DROPOUT),
        use_attention=model_info.get("use_attention", False),
        target_mean=model_info.get("target_mean"),
        target_std=model_info.get("target_std"),
    )
    model.load_state_dict(torch.load(os.path.join(path, f"{model_name}.pt"), map_location=device))
    return model


def checkpoint_dir(sequence_length: int, model_dir: Optional[Union[str, Path]] = None) -> Path:
    return Path(model_dir or config.MODEL_DIR) / f"sequence_w{sequence_length}"


def build_scorer(sequence_length: int, model_dir: Optional[Union[str, Path]] = None,
                 seed: int = config.RANDOM_SEED) -> SequenceScorer:
    """
    Load the checkpoint for a window length, or seeded default weights when
    none has been saved.
    """
    path = checkpoint_dir(sequence_length, model_dir)
    if (path / "sequence_model.pt").exists():
        logger.info(f"loading sequence model for window {sequence_length} from {path}")
        model = load_sequence_model(path)
    else:
        logger.warning(f"no sequence model checkpoint at {path}, using seeded default weights")
        # keep the global RNG untouched
        with torch.random.fork_rng(devices=[]):
            torch.manual_seed(seed)
            model = create_sequence_model()
    return SequenceScorer(model, sequence_length)


_SCORERS: Dict[int, SequenceScorer] = {}
_SCORERS_LOCK = threading.Lock()


def get_sequence_scorer(sequence_length: int,
                        model_dir: Optional[Union[str, Path]] = None) -> SequenceScorer:
    """shared scorer for a window length, built on first use"""
    with _SCORERS_LOCK:
        scorer = _SCORERS.get(sequence_length)
        if scorer is None:
            scorer = build_scorer(sequence_length, model_dir)
            _SCORERS[sequence_length] = scorer
        return scorer


def warm_up_scorers(model_dir: Optional[Union[str, Path]] = None) -> None:
    """build both scorers up front (call once at startup)"""
    for sequence_length in (config.BASIC_SEQUENCE_LENGTH, config.ENHANCED_SEQUENCE_LENGTH):
        get_sequence_scorer(sequence_length, model_dir)


def clear_sequence_scorers() -> None:
    """drop the shared scorers (shutdown, or switching checkpoints)"""
    with _SCORERS_LOCK:
        _SCORERS.clear()


class SequenceModelStrategy(ForecastStrategy):
    """
    Scores a fixed-length feature window with the sequence model.

    Uses the 30-step (enhanced) window when at least 30 observations exist and
    the 7-step (basic) window otherwise. The network's three heads give the
    point estimate and both bounds directly; each is floored at 0 and rounded
    but never reordered.
    """

    name = SEQUENCE_LABEL

    def __init__(self, scorer_provider: Optional[Callable[[int], WindowScorer]] = None,
                 enhanced_length: int = config.ENHANCED_SEQUENCE_LENGTH,
                 basic_length: int = config.BASIC_SEQUENCE_LENGTH):
        self.scorer_provider = scorer_provider or get_sequence_scorer
        self.enhanced_length = enhanced_length
        self.basic_length = basic_length

    def sequence_length_for(self, n_observations: int) -> int:
        return self.enhanced_length if n_observations >= self.enhanced_length else self.basic_length

    def _estimate(self, series, forecast_date, adjuster):
        if not series:
            raise StrategyError("insufficient features: no observations")
        quantities = np.array([obs.quantity for obs in series], dtype=float)
        if not np.all(np.isfinite(quantities)):
            raise StrategyError("insufficient features: non-finite quantity")

        sequence_length = self.sequence_length_for(len(series))
        window = build_feature_window(series, sequence_length)
        point, lower, upper = self.scorer_provider(sequence_length).score(window)
        if not all(np.isfinite(v) for v in (point, lower, upper)):
            raise StrategyError(f"model produced non-finite output: {(point, lower, upper)}")

        estimate = Estimate(
            point=max(0, round_half_up(point)),
            lower=max(0, round_half_up(lower)),
            upper=max(0, round_half_up(upper)),
        )
        return StrategyOutcome.success(self.name, estimate, sequence_length=sequence_length)
