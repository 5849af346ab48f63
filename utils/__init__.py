"""Utility modules for the attendance integrity engine."""
from .config import config, Config
from .logger import logger, IntegrityLogger
from .geo import haversine_distance, is_finite_coordinate, is_within_radius
__all__ = ['config', 'Config', 'logger', 'IntegrityLogger',
           'haversine_distance', 'is_finite_coordinate', 'is_within_radius']
