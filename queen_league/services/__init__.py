"""
Services package for the league scoring engine.
"""

from .base import BaseService
from .recalculation import RecalculationService
from .settings import SettingsService
from .standings import StandingsService

__all__ = ['BaseService', 'RecalculationService', 'SettingsService', 'StandingsService']
