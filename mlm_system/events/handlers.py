# mlm_system/events/handlers.py
"""
Event handlers for the compensation engine.
Process events from the event bus.
"""
import logging
from typing import Any, Dict, Optional

from core.db import get_session
from mlm_system.services.registration_service import RegistrationService
from mlm_system.utils.level_cache import LevelStatsCache

logger = logging.getLogger(__name__)


def make_member_registered_handler(cache: Optional[LevelStatsCache] = None):
    """
    Build the MEMBER_REGISTERED handler.

    Args:
        cache: Level stats cache shared with the query side, invalidated on distribution

    Returns:
        Async handler taking the event payload
    """

    async def handle_member_registered(data: Dict[str, Any]):
        """
        Handle MEMBER_REGISTERED event.

        Places the member (if needed) and distributes its package fee in one
        session. Registration is already committed by the caller, so a
        failure here leaves a commission gap that replay or the sweep heals.

        Args:
            data: Event data with 'memberId', optional 'sponsorReference'
                and 'packageAmountPaid'
        """
        member_id = data.get("memberId")

        if not member_id:
            logger.error("MEMBER_REGISTERED event missing memberId")
            return None

        logger.info(f"Processing registration of member {member_id}")

        session = get_session()

        try:
            service = RegistrationService(session, cache=cache)
            result = await service.onMemberRegistered(
                member_id,
                data.get("sponsorReference"),
                data.get("packageAmountPaid")
            )
            session.commit()

            distribution = result.distribution
            if distribution is None:
                logger.error(f"Member {member_id} registered, commissions need manual audit")
            elif not distribution.success:
                logger.warning(
                    f"Member {member_id} registered with {len(distribution.failures)} "
                    f"failed postings"
                )
            else:
                logger.info(f"✓ Member {member_id} registered and distributed")

            return result

        except Exception as e:
            session.rollback()
            logger.error(f"Error processing registration of member {member_id}: {e}", exc_info=True)
            raise

        finally:
            session.close()

    return handle_member_registered
