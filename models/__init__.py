"""
Database models for the compensation engine.
Import all models here so Base.metadata sees every table.
"""

# Base and mixins
from models.base import Base, AuditMixin

# Core models
from models.member import Member
from models.earning import (
    Earning,
    EarningKind,
    EarningStatus,
    DIRECT_BONUS_LEVEL,
    CREATOR_FEE_LEVEL,
    DEVELOPMENT_FEE_LEVEL,
)
from models.missed_level_earning import MissedLevelEarning, MissedStatus

# Event listeners
from models.listeners import register_all_listeners

__all__ = [
    # Base
    'Base',
    'AuditMixin',

    # Core
    'Member',
    'Earning',
    'EarningKind',
    'EarningStatus',
    'DIRECT_BONUS_LEVEL',
    'CREATOR_FEE_LEVEL',
    'DEVELOPMENT_FEE_LEVEL',
    'MissedLevelEarning',
    'MissedStatus',

    # Listeners
    'register_all_listeners',
]
