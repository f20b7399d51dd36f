#!/usr/bin/env python3
"""
Standalone script for recalculating one episode's scores and standings.

Intended for scheduled jobs. Exits with status 1 when the run fails or is
rejected because another recalculation of the same episode is in flight.

Usage:
    python recalculate_episode.py            # current episode from settings
    python recalculate_episode.py 3
    python recalculate_episode.py 3 --multipliers 2.5 1.5 1.0 0.5
"""

import sys
import asyncio
import argparse

from queen_league.config import Config
from queen_league.database.database import Database
from queen_league.services.recalculation import RecalculationService
from queen_league.services.settings import SettingsService
from queen_league.utils.episode_lock import EpisodeLockManager
from queen_league.utils.logger import setup_logger

logger = setup_logger('recalculate_episode')


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description='Recalculate episode scores and season standings')
    parser.add_argument('episode', type=int, nargs='?',
                        help='Episode number (defaults to the current_episode setting)')
    parser.add_argument('--multipliers', type=float, nargs='+', metavar='M',
                        help=f'Override multipliers for ranks 1..N (N <= {Config.ROSTER_MAX_RANK})')
    parser.add_argument('--strategy', choices=['incremental', 'full'],
                        help='Standings rebuild strategy')
    args = parser.parse_args(argv)
    if args.multipliers and len(args.multipliers) > Config.ROSTER_MAX_RANK:
        parser.error(f"--multipliers takes at most {Config.ROSTER_MAX_RANK} values, one per roster rank")
    return args


async def run(args) -> int:
    db = Database()
    await db.initialize()
    lock_manager = await EpisodeLockManager.create()
    try:
        episode = args.episode
        if episode is None:
            settings_service = SettingsService(db.session_factory)
            await settings_service.load_all()
            episode = settings_service.get_current_episode()
        
        override = None
        if args.multipliers:
            override = {rank: value for rank, value in enumerate(args.multipliers, start=1)}
        
        service = RecalculationService(db, lock_manager=lock_manager, rebuild_strategy=args.strategy)
        result = await service.recalculate(episode, multiplier_override=override)
        
        print("\n" + "=" * 50)
        print(f"EPISODE {result.episode_number}: {result.status.value.upper()}")
        print("=" * 50)
        print(f"Scores updated: {result.rows_updated}")
        print(f"Stale scores removed: {result.rows_removed}")
        print(f"Standings updated: {result.standings_updated}")
        for warning in result.config_warnings:
            print(f"Warning: {warning}")
        if result.error:
            print(f"Error: {result.error}")
        print("=" * 50)
        
        return 0 if result.succeeded else 1
    finally:
        await lock_manager.close()
        await db.close()


def main():
    args = parse_args()
    try:
        sys.exit(asyncio.run(run(args)))
    except ValueError as e:
        logger.error(f"Recalculation aborted: {e}")
        print(f"\nERROR: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
