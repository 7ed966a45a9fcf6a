#////////////////////////////////////////////////////////////////////////////////#
# File:         utils.py                                                         #
# Date:         2025-03-18                                                       #
#////////////////////////////////////////////////////////////////////////////////#





"""
Utility functions for the forecasting engine.
"""
import json
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Union

import numpy as np
import torch

from demandcast import config

logger = logging.getLogger(__name__)


def create_directory(directory: Union[str, Path]) -> None:
    """create directory if it doesnt exist"""
    Path(directory).mkdir(parents=True, exist_ok=True)


def save_json(data: Dict[str, Any], filepath: Union[str, Path]) -> None:
    """Save dict to JSON."""
    with open(filepath, 'w') as f:
        json.dump(data, f, indent=4, default=str)


def load_json(filepath: Union[str, Path]) -> Dict[str, Any]:
    """load dict from json file"""
    with open(filepath, 'r') as f:
        data = json.load(f)
    return data


def setup_torch_device(prefer_gpu: bool = False) -> torch.device:
    """setup torch device (cpu unless a gpu is asked for and available)"""
    if prefer_gpu and torch.cuda.is_available():
        device = torch.device("cuda")
        logger.info(f"Using GPU: {torch.cuda.get_device_name(0)}")
    else:
        device = torch.device("cpu")
        logger.debug("Using CPU")
    return device


def set_random_seed(seed: Optional[int] = None) -> None:
    """set random seed for reproducability"""
    if seed is None:
        seed = config.RANDOM_SEED

    np.random.seed(seed)
    torch.manual_seed(seed)
    if torch.cuda.is_available():
        torch.cuda.manual_seed(seed)
        torch.cuda.manual_seed_all(seed)
        torch.backends.cudnn.deterministic = True
        torch.backends.cudnn.benchmark = False
