# mlm_system/__init__.py
"""
MLM System - package referral compensation engine.
"""

# Services
from mlm_system.services.commission_service import CommissionDistributor, DistributionResult
from mlm_system.services.missed_earnings_service import MissedEarningsLedger
from mlm_system.services.earnings_aggregator import EarningsAggregator
from mlm_system.services.registration_service import RegistrationService
from mlm_system.services.stats_service import StatsService
from mlm_system.services.level_unlock import LevelUnlockCalculator
from mlm_system.services.team_census import TeamCensus

# Configuration
from mlm_system.config.compensation import CompensationPlan, get_compensation_plan

# Utilities
from mlm_system.utils.chain_walker import SponsorChainWalker
from mlm_system.utils.tree_placement import TreePlacementResolver
from mlm_system.utils.level_cache import LevelStatsCache

# Events
from mlm_system.events.event_bus import eventBus, MLMEvents

__all__ = [
    # Services
    'CommissionDistributor',
    'DistributionResult',
    'MissedEarningsLedger',
    'EarningsAggregator',
    'RegistrationService',
    'StatsService',
    'LevelUnlockCalculator',
    'TeamCensus',

    # Config
    'CompensationPlan',
    'get_compensation_plan',

    # Utils
    'SponsorChainWalker',
    'TreePlacementResolver',
    'LevelStatsCache',

    # Events
    'eventBus',
    'MLMEvents',
]
