#!/usr/bin/env python3
"""
Retraining Scheduler

Periodically pulls sessions that ended since the previous check from the telemetry store into the
lifecycle manager's buffer and retrains when the active model has degraded
or aged out.

Usage:
    python training/scheduler.py --interval 600  # Check every 10 minutes
"""

import logging
import sys
import time
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

import click

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from ml.exceptions import DataUnavailableError, TrainingError
from training.config import TrainingConfig
from training.lifecycle import TrainingOutcome
from training.train import TrainingPipeline

logger = logging.getLogger(__name__)


class RetrainingScheduler:
    """Schedules incremental retraining checks."""

    def __init__(self, pipeline: TrainingPipeline, interval: int,
                 sleep: Callable[[float], None] = time.sleep):
        self.pipeline = pipeline
        self.lifecycle = pipeline.lifecycle
        self.interval = interval
        self.sleep = sleep
        self.last_check: Optional[datetime] = None
        self.last_success: Optional[datetime] = None

    def run_once(self) -> Optional[TrainingOutcome]:
        """Buffer sessions that ended since the previous check and retrain if needed."""
        check_time = self.pipeline.clock()
        try:
            samples = self.pipeline.collect_ended_samples(self.last_check, check_time)
        except DataUnavailableError as e:
            logger.error(f"Telemetry store unavailable, skipping check: {e.message}")
            return None

        buffered = self.lifecycle.ingest(samples)
        self.last_check = check_time
        logger.info(f"Buffered {len(samples)} new samples ({buffered} pending)")

        try:
            outcome = self.lifecycle.maybe_retrain(self.pipeline.config.model.params())
        except TrainingError as e:
            logger.error(f"Retraining failed: {e.message}")
            return None

        if outcome is None:
            logger.info("Retraining not needed")
            return None

        self.pipeline.save_artifacts(outcome)
        if outcome.promoted:
            self.last_success = check_time
        return outcome

    def run_forever(self, max_runs: Optional[int] = None):
        """Run retraining checks at regular intervals."""
        logger.info(f"Starting retraining scheduler with {self.interval}s interval")

        runs = 0
        while max_runs is None or runs < max_runs:
            try:
                self.run_once()
                runs += 1
                if max_runs is not None and runs >= max_runs:
                    break
                self._wait_for_next_run()
            except KeyboardInterrupt:
                logger.info("Scheduler stopped by user")
                break

    def _wait_for_next_run(self):
        """Wait for next scheduled run."""
        if self.last_success:
            logger.info(f"Last successful retraining: {self.last_success}")
        logger.info(f"Next retraining check in {self.interval}s")
        self.sleep(self.interval)


@click.command()
@click.option('--interval', default=600, help='Seconds between retraining checks')
@click.option('--verbose', '-v', is_flag=True, help='Verbose logging')
def main(interval: int, verbose: bool):
    """Run retraining scheduler."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    config = TrainingConfig.from_env()
    scheduler = RetrainingScheduler(TrainingPipeline(config), interval)
    scheduler.run_forever()


if __name__ == '__main__':
    main()
