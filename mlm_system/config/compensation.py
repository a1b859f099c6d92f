"""
Compensation plan constants.
Built from Config once per service; Decimal throughout, no float.
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Any
import logging

logger = logging.getLogger(__name__)

# Unlock table: direct referrals → levels
LEVELS_AT_TWO_DIRECTS = 4
MIN_DIRECTS_FOR_UNLOCK = 2
PER_REFERRAL_UNLOCK_FROM = 5


@dataclass(frozen=True)
class CompensationPlan:
    """Fixed split of one package fee."""
    packageFee: Decimal
    directBonus: Decimal
    levelIncome: Decimal
    creatorFee: Decimal
    developmentFee: Decimal
    maxLevels: int = 15
    teamFullyBuiltThreshold: int = 100

    @property
    def levelIncomeTotal(self) -> Decimal:
        return self.levelIncome * self.maxLevels

    @property
    def splitTotal(self) -> Decimal:
        return self.directBonus + self.levelIncomeTotal + self.creatorFee + self.developmentFee

    def isBalanced(self) -> bool:
        return self.splitTotal == self.packageFee

    def expectedMembersAtLevel(self, level: int) -> int:
        """Capacity of a full binary tree at the given depth."""
        return 2 ** level


def get_compensation_plan() -> CompensationPlan:
    """
    Build the plan from Config.

    Returns:
        CompensationPlan

    Raises:
        ConfigurationError: If the split does not add up to the fee
    """
    from config import Config

    Config.validate_package_split()

    return CompensationPlan(
        packageFee=Config.get(Config.PACKAGE_FEE),
        directBonus=Config.get(Config.DIRECT_BONUS),
        levelIncome=Config.get(Config.LEVEL_INCOME),
        creatorFee=Config.get(Config.CREATOR_FEE),
        developmentFee=Config.get(Config.DEVELOPMENT_FEE),
        maxLevels=Config.get(Config.MAX_LEVELS),
        teamFullyBuiltThreshold=Config.get(Config.TEAM_FULLY_BUILT_THRESHOLD),
    )


def theoretical_max_earnings(plan: CompensationPlan) -> Dict[str, Any]:
    """
    Earnings of a member whose tree is saturated on every level.

    Level 1 pays the direct bonus per member, deeper levels pay level income:
    Σ 2^level × (level == 1 ? D : L₁). With the default $20 plan this is 65,536.

    Args:
        plan: Compensation plan

    Returns:
        Dict with 'breakdown' (list of per-level dicts) and 'total'
    """
    breakdown = []
    total = Decimal("0")

    for level in range(1, plan.maxLevels + 1):
        expected = plan.expectedMembersAtLevel(level)
        perMember = plan.directBonus if level == 1 else plan.levelIncome
        levelTotal = perMember * expected

        breakdown.append({
            "level": level,
            "expectedMembers": expected,
            "commissionPerMember": perMember,
            "totalEarnings": levelTotal,
        })
        total += levelTotal

    return {"breakdown": breakdown, "total": total}
