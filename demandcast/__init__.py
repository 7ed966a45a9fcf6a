#////////////////////////////////////////////////////////////////////////////////#
# File:         __init__.py                                                      #
# Date:         2025-03-12                                                       #
# Description:  Package initialization for the demand forecasting engine.       #
#////////////////////////////////////////////////////////////////////////////////#

"""
Demand forecasting engine.

Produces per-product (and per-location) demand forecasts with confidence
bands using statistical, LSTM and ensemble strategies, and backtests stored
forecasts against realized sales.
"""

__version__ = "0.1.0"
