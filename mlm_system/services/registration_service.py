# mlm_system/services/registration_service.py
"""
Registration entry point: sponsor resolution, placement, distribution.

Registration always succeeds structurally. A missing or unknown sponsor falls
back to the root member; commission problems are logged and healed by replay
or by the reconciliation sweep.
"""
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Optional, Union
from sqlalchemy import func
from sqlalchemy.orm import Session
import logging

from config import Config
from models.member import Member
from mlm_system.config.compensation import CompensationPlan, get_compensation_plan
from mlm_system.errors import InvariantViolation, StructuralError
from mlm_system.services.commission_service import CommissionDistributor, DistributionResult
from mlm_system.utils.chain_walker import SponsorChainWalker
from mlm_system.utils.level_cache import LevelStatsCache
from mlm_system.utils.tree_placement import TreePlacementResolver

logger = logging.getLogger(__name__)

SponsorReference = Union[Member, int, str, None]


@dataclass
class RegistrationResult:
    memberId: int
    sponsorId: int
    placementParentId: Optional[int]
    placementSide: Optional[str]
    usedFallbackSponsor: bool
    distribution: Optional[DistributionResult]


class RegistrationService:
    """Creates members and feeds them to the commission engine."""

    def __init__(
            self,
            session: Session,
            plan: Optional[CompensationPlan] = None,
            cache: Optional[LevelStatsCache] = None
    ):
        self.session = session
        self.plan = plan or get_compensation_plan()
        self.cache = cache
        self.walker = SponsorChainWalker(session)
        self.placement = TreePlacementResolver(session)

    def ensureCreator(self) -> Member:
        """
        Return the creator member, creating it on an empty tree.

        The creator is the placement root, the sponsor fallback and the
        creator-fee recipient.
        """
        creator = self.walker.get_creator_member()
        if creator is not None:
            return creator

        username = Config.get(Config.CREATOR_USERNAME)
        creator = Member(
            username=username,
            referralCode=username.lower(),
            isCreator=True,
            unlockedLevels=self.plan.maxLevels,
        )
        self.session.add(creator)
        self.session.flush()

        logger.info(f"Creator member {creator.memberID} ({username}) created")
        return creator

    async def registerMember(
            self,
            username: str,
            sponsorReference: SponsorReference = None,
            packageAmountPaid=None,
            referralCode: Optional[str] = None
    ) -> RegistrationResult:
        """
        Create a member, place it and distribute its package.

        Args:
            username: Unique username
            sponsorReference: Sponsor id, username, referral code or Member
            packageAmountPaid: Amount the member paid (informational)
            referralCode: Member's own code, defaults to the username

        Returns:
            RegistrationResult

        Raises:
            ValueError: Username already taken
            StructuralError: No root member to fall back to
        """
        existing = self.session.query(Member).filter_by(username=username).first()
        if existing:
            raise ValueError(f"Username {username} already registered (member {existing.memberID})")

        member = Member(
            username=username,
            referralCode=referralCode or username.lower(),
        )
        self.session.add(member)
        self.session.flush()

        logger.info(f"Member {member.memberID} ({username}) created")

        return await self.onMemberRegistered(member.memberID, sponsorReference, packageAmountPaid)

    async def onMemberRegistered(
            self,
            newMemberId: int,
            sponsorReference: SponsorReference = None,
            packageAmountPaid=None
    ) -> RegistrationResult:
        """
        Process a completed registration.

        Resolves the sponsor (root fallback), places the member in the binary
        tree if not yet placed, then distributes the package fee.

        Args:
            newMemberId: Registered member
            sponsorReference: Sponsor id, username, referral code or Member
            packageAmountPaid: Amount paid; a mismatch with the package fee is logged

        Returns:
            RegistrationResult
        """
        member = self.session.get(Member, newMemberId)
        if member is None:
            raise StructuralError(f"Member {newMemberId} not found")

        self._checkPaidAmount(member, packageAmountPaid)

        # ═══ STEP 1: SPONSOR AND PLACEMENT ═══
        usedFallback = False
        if member.placementParentID is None:
            sponsor = self.resolveSponsor(sponsorReference, member)
            if sponsor is None and member.sponsorID is not None:
                sponsor = self.session.get(Member, member.sponsorID)

            try:
                slot = self.placement.place(sponsor)
            except StructuralError as e:
                logger.warning(f"Member {member.memberID}: {e}, falling back to root")
                sponsor = self.walker.get_root_member()
                if sponsor is None or sponsor.memberID == member.memberID:
                    raise StructuralError("No root member configured for sponsor fallback")
                usedFallback = True
                slot = self.placement.place(sponsor)

            member.sponsorID = sponsor.memberID
            member.sponsorCode = sponsor.referralCode
            self.placement.attach(member, slot)

        # ═══ STEP 2: COMMISSIONS ═══
        distributor = CommissionDistributor(self.session, self.plan, self.cache)
        distribution = None
        try:
            distribution = await distributor.distribute(member)
        except InvariantViolation as e:
            logger.error(
                f"Distribution for member {member.memberID} violated ledger invariant: {e}",
                exc_info=True
            )

        return RegistrationResult(
            memberId=member.memberID,
            sponsorId=member.sponsorID,
            placementParentId=member.placementParentID,
            placementSide=member.placementSide,
            usedFallbackSponsor=usedFallback,
            distribution=distribution,
        )

    def resolveSponsor(self, reference: SponsorReference, member: Optional[Member] = None) -> Optional[Member]:
        """
        Find the sponsor member for a reference.

        Accepts a Member, a member id (int or digit string), a username or a
        referral code (case-insensitive). Returns None if nothing matches or
        the reference points at the member itself.
        """
        if reference is None or reference == "":
            return None

        sponsor = None
        if isinstance(reference, Member):
            sponsor = reference
        elif isinstance(reference, int) or (isinstance(reference, str) and reference.isdigit()):
            sponsor = self.session.get(Member, int(reference))
        else:
            sponsor = self.session.query(Member).filter_by(username=reference).first()
            if sponsor is None:
                sponsor = self.session.query(Member).filter(
                    func.lower(Member.referralCode) == reference.lower()
                ).first()

        if sponsor is None:
            logger.warning(f"Sponsor reference {reference!r} not found")
            return None

        if member is not None and sponsor.memberID == member.memberID:
            logger.warning(f"Member {member.memberID} cannot sponsor itself")
            return None

        return sponsor

    def _checkPaidAmount(self, member: Member, packageAmountPaid) -> None:
        if packageAmountPaid is None:
            return

        try:
            paid = Decimal(str(packageAmountPaid))
        except InvalidOperation:
            logger.warning(f"Member {member.memberID}: unreadable paid amount {packageAmountPaid!r}")
            return

        if paid != self.plan.packageFee:
            logger.warning(
                f"Member {member.memberID} paid {paid}, package fee is {self.plan.packageFee}; "
                f"distributing the package fee"
            )
