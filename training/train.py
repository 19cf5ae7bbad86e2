#!/usr/bin/env python3
"""
Navigation Model Training Pipeline Entry Point

This script orchestrates the complete training pipeline:
1. Session retrieval from the telemetry store (synthetic sessions if empty)
2. Labeled next-page dataset creation
3. Model training on the older samples
4. Evaluation on the most recent samples
5. Promotion into the model registry
6. Artifact export and MLflow experiment tracking

Usage:
    python training/train.py --model-type bagged_ensemble
"""

import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Callable, Dict, List, Optional

import click

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from generators.clickgen import populate_store
from inference.stores import InMemoryTelemetryStore, TelemetryStore, create_store
from ml.exceptions import DataUnavailableError, TrainingError
from ml.models import ModelFactory, ModelTrainer
from ml.registry import ModelRegistry
from training.config import TrainingConfig
from training.datasets import DateRange, SampleFilters, TrainingDataBuilder, TrainingSample, dataset_statistics
from training.lifecycle import ModelLifecycleManager, TrainingOutcome
from training.tracking import MLflowExperimentManager

logger = logging.getLogger(__name__)


class TrainingPipeline:
    """Complete navigation model training pipeline."""

    def __init__(
        self,
        config: TrainingConfig,
        store: Optional[TelemetryStore] = None,
        registry: Optional[ModelRegistry] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.config = config
        self.store = store or create_store(config.data.store)
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.registry = registry or ModelRegistry()
        self.model_trainer = ModelTrainer(clock=self.clock)
        self.lifecycle = ModelLifecycleManager(
            self.registry,
            config.prediction,
            trainer=self.model_trainer,
            clock=self.clock,
            validation_fraction=config.model.validation_size,
        )
        self.mlflow_manager = MLflowExperimentManager(config)

        # Create output directory
        self.output_dir = config.create_output_dir()

    def _filters(self) -> SampleFilters:
        return SampleFilters(
            min_session_duration=self.config.data.min_session_duration,
            exclude_bounce_sessions=self.config.data.exclude_bounce_sessions,
            sample_size=self.config.data.sample_size,
        )

    def collect_samples(self, since: Optional[datetime] = None) -> List[TrainingSample]:
        """Labeled samples from sessions started since `since` (default: the lookback window)."""
        now = self.clock()
        start = since or now - timedelta(days=self.config.data.lookback_days)
        builder = TrainingDataBuilder(self.store, seed=self.config.data.sample_seed)
        return builder.build(DateRange(start=start, end=now), self._filters())

    def collect_ended_samples(self, after: Optional[datetime], until: datetime) -> List[TrainingSample]:
        """Labeled samples from sessions that ended within (after, until] (default after: the lookback window)."""
        after = after or until - timedelta(days=self.config.data.lookback_days)
        builder = TrainingDataBuilder(self.store, seed=self.config.data.sample_seed)
        return builder.build_ended(after, until, self._filters())

    def _create_dataset(self) -> List[TrainingSample]:
        """Create training samples from the telemetry store or synthetic sessions."""
        try:
            samples = self.collect_samples()
            if samples:
                logger.info(f"Successfully created dataset from telemetry store: {len(samples)} samples")
                return samples
            logger.warning("No sessions in telemetry store")

        except DataUnavailableError as e:
            logger.warning(f"Failed to read telemetry store: {e.message}")

        if self.config.data.synthetic_sessions == 0:
            return []

        # Fallback to synthetic sessions
        logger.info(f"Creating {self.config.data.synthetic_sessions} synthetic sessions for training")
        self.store = InMemoryTelemetryStore()
        populate_store(
            self.store,
            self.config.data.synthetic_sessions,
            seed=self.config.data.sample_seed,
            start_time=self.clock() - timedelta(days=min(7, self.config.data.lookback_days)),
        )
        return self.collect_samples()

    def _log_dataset_stats(self, samples: List[TrainingSample]):
        """Log dataset statistics to MLflow."""
        stats = dataset_statistics(samples)
        self.mlflow_manager.log_metrics(stats)

        logger.info("Dataset Statistics:")
        for key, value in stats.items():
            if 'rate' in key or 'share' in key:
                logger.info(f"  {key}: {value:.2%}")
            else:
                logger.info(f"  {key}: {value}")

    def save_artifacts(self, outcome: TrainingOutcome) -> Dict[str, str]:
        """Write the promoted model where the API loads it from."""
        if not outcome.promoted:
            logger.warning(f"Model {outcome.model.version} was not promoted; artifacts not exported")
            return {}
        artifacts = self.model_trainer.save_model_artifacts(outcome.model, str(self.output_dir))
        self.mlflow_manager.log_artifacts(artifacts)
        return artifacts

    def run_training_pipeline(self) -> Optional[TrainingOutcome]:
        """Run the complete training pipeline. Returns None when training failed."""
        logger.info("=" * 50)
        logger.info("Starting Navigation Model Training Pipeline")
        logger.info("=" * 50)

        try:
            run_name = self.config.get_run_name()
            self.mlflow_manager.start_run(run_name)

            # Step 1: Create dataset
            logger.info("Step 1: Creating dataset from telemetry store")
            samples = self._create_dataset()
            self._log_dataset_stats(samples)

            # Step 2: Train, evaluate and promote
            logger.info("Step 2: Training, evaluating and promoting model")
            outcome = self.lifecycle.train_and_promote(samples, self.config.model.params())
            self.mlflow_manager.log_metrics(outcome.metrics)
            self.mlflow_manager.set_tags({
                "model_version": outcome.model.version,
                "promoted": str(outcome.promoted),
            })

            # Step 3: Save artifacts
            logger.info("Step 3: Saving model artifacts")
            artifacts = self.save_artifacts(outcome)

            self._log_training_summary(outcome, artifacts)
            return outcome

        except TrainingError as e:
            logger.error(f"Training pipeline failed: {e.message}")
            return None

        finally:
            self.mlflow_manager.end_run()

    def _log_training_summary(self, outcome: TrainingOutcome, artifacts: Dict[str, str]):
        """Log training summary."""
        metrics = outcome.metrics
        logger.info("=" * 50)
        logger.info("Training Summary")
        logger.info("=" * 50)

        logger.info(f"Model: {outcome.model.version} ({outcome.model.kind})")
        logger.info("Model Performance:")
        logger.info(f"  Validation Accuracy: {metrics.get('accuracy', 0):.4f}")
        logger.info(f"  Macro Precision: {metrics.get('macro_precision', 0):.4f}")
        logger.info(f"  Macro Recall: {metrics.get('macro_recall', 0):.4f}")
        logger.info(f"  F1: {metrics.get('f1', 0):.4f}")

        logger.info("Artifacts Created:")
        for name, path in artifacts.items():
            logger.info(f"  {name}: {path}")

        accuracy = metrics.get('accuracy', 0)
        if accuracy >= self.config.prediction.retrain_threshold:
            logger.info(f"✓ Model accuracy meets the retrain threshold ({self.config.prediction.retrain_threshold})")
        else:
            logger.info(f"✗ Model accuracy is below the retrain threshold ({self.config.prediction.retrain_threshold})")


@click.command()
@click.option('--model-type', default='bagged_ensemble', type=click.Choice(ModelFactory.supported_kinds()),
              help='Model type')
@click.option('--max-depth', default=10, type=int, help='Maximum tree depth')
@click.option('--n-estimators', default=100, type=int, help='Trees in the bagged ensemble')
@click.option('--lookback-days', default=30, type=int, help='Days of sessions to train on')
@click.option('--min-data-points', default=None, type=int, help='Minimum samples required to train')
@click.option('--synthetic-sessions', default=500, type=int, help='Synthetic sessions when the store is empty')
@click.option('--output-dir', default='training/outputs', help='Where model artifacts are written')
@click.option('--experiment-name', default='navigation_prediction', help='MLflow experiment name')
@click.option('--verbose', '-v', is_flag=True, help='Verbose logging')
def main(model_type, max_depth, n_estimators, lookback_days, min_data_points, synthetic_sessions,
         output_dir, experiment_name, verbose):
    """Run navigation model training pipeline."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    logger.info(f"Starting training with model_type={model_type}, experiment={experiment_name}")

    try:
        config = TrainingConfig.from_env()

        # Override config with CLI arguments
        config.model.model_type = model_type
        config.model.max_depth = max_depth
        config.model.n_estimators = n_estimators
        config.data.lookback_days = lookback_days
        config.data.synthetic_sessions = synthetic_sessions
        config.output_dir = output_dir
        config.mlflow.experiment_name = experiment_name
        if min_data_points is not None:
            config.prediction.min_data_points = min_data_points
        config = TrainingConfig.model_validate(config.model_dump())
        if not verbose:
            logging.getLogger().setLevel(config.log_level)

        pipeline = TrainingPipeline(config)
        outcome = pipeline.run_training_pipeline()

        if outcome is None:
            logger.error("Training failed!")
            sys.exit(1)

        logger.info("Training completed successfully!")
        print("\n" + "=" * 50)
        print("Next Steps:")
        print("=" * 50)
        print(f"1. Serve the model: MODEL_DIR={config.output_dir} python -m inference.app")
        print("2. Predict: curl -X POST http://localhost:8080/predict "
              "-d '{\"session_id\": \"s1\", \"current_page\": \"/dashboard\"}'")

    except Exception as e:
        logger.error(f"Training script failed: {e}")
        logger.exception("Full traceback:")
        sys.exit(1)


if __name__ == '__main__':
    main()
