#!/usr/bin/env python3
"""
Display the enrollment tree.

Shows the sponsor hierarchy with unlocked levels, earnings and pending
missed earnings per member.

Usage:
    python scripts/show_tree.py [--root-id MEMBER_ID] [--max-depth DEPTH] [--stats]
"""

import sys
import os
import argparse

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from config import Config
from core.db import get_session
from models.member import Member
from mlm_system.services.stats_service import StatsService
from mlm_system.utils.chain_walker import SponsorChainWalker

import logging

logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)


def print_tree(session, root_member, max_depth=None):
    """Print ASCII tree of the enrollment structure."""
    stats = StatsService(session)

    def print_member(member, prefix="", is_last=True, depth=0):
        if max_depth is not None and depth > max_depth:
            return

        connector = "└─ " if is_last else "├─ "
        creator_marker = "👑 " if member.isCreator else ""
        hold_marker = "⛔ " if member.auditHold else ""
        active_marker = "✅" if member.isActive else "❌"

        missed = stats.getMissedEarningsSummary(member).pendingTotal
        missed_display = f" missed ${missed}" if missed > 0 else ""

        print(
            f"{prefix}{connector}{creator_marker}{hold_marker}"
            f"{member.username} (ID:{member.memberID}) {active_marker} "
            f"L{stats.unlockedLevels(member)} ${stats.totalEarnings(member)}{missed_display}"
        )

        children = session.query(Member).filter(
            Member.sponsorID == member.memberID
        ).order_by(Member.memberID).all()

        for i, child in enumerate(children):
            is_last_child = (i == len(children) - 1)
            new_prefix = prefix + ("    " if is_last else "│   ")
            print_member(child, new_prefix, is_last_child, depth + 1)

    print("\n" + "=" * 80)
    print("ENROLLMENT TREE")
    print("=" * 80)
    print("\nLegend:")
    print("  👑 = Creator")
    print("  ⛔ = On audit hold")
    print("  ✅ = Active member")
    print("  ❌ = Inactive member")
    print("  L<n> = Unlocked levels")
    print("  $amount = Confirmed earnings")
    print("\n" + "=" * 80 + "\n")
    print_member(root_member)
    print("\n" + "=" * 80 + "\n")


def print_statistics(session):
    """Print database statistics."""
    stats = StatsService(session)

    total_members = session.query(Member).count()
    active_members = session.query(Member).filter_by(isActive=True).count()
    on_hold = session.query(Member).filter_by(auditHold=True).count()

    print("\n" + "=" * 80)
    print("DATABASE STATISTICS")
    print("=" * 80 + "\n")

    print(f"Total members:  {total_members}")
    if total_members:
        print(f"Active members: {active_members} ({active_members/total_members*100:.1f}%)")
    print(f"On audit hold:  {on_hold}")

    missed = stats.systemMissedByLevel()
    if missed:
        print("\nPending missed earnings by level:")
        for row in missed:
            print(f"  L{row.level:<3} ${row.pendingAmount:>10} ({row.members} members)")

    print(f"\nTheoretical max per member: ${stats.theoreticalMaxEarnings().total}")
    print("\n" + "=" * 80 + "\n")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(description='Display enrollment tree')
    parser.add_argument('--root-id', type=int,
                        help='Member ID to start from (default: root member)')
    parser.add_argument('--max-depth', type=int,
                        help='Maximum depth to display')
    parser.add_argument('--stats', action='store_true',
                        help='Show statistics only')
    args = parser.parse_args()

    # Initialize config
    Config.initialize_from_env()

    session = get_session()
    try:
        if args.stats:
            print_statistics(session)
            return

        if args.root_id:
            root = session.get(Member, args.root_id)
            if not root:
                print(f"❌ Member {args.root_id} not found!")
                return
        else:
            root = SponsorChainWalker(session).get_root_member()
            if not root:
                print("❌ Root member not configured!")
                return

        print_tree(session, root, args.max_depth)
        print_statistics(session)

    finally:
        session.close()


if __name__ == "__main__":
    main()
