#!/usr/bin/env python3
"""
Versioned model registry with a single active slot.

Every registered version is kept; promotion swaps the active pointer under a
lock and retires the previous active version so it can be rolled back to.
"""

import dataclasses
import logging
import threading
from typing import Any, Dict, List, Optional

from ml.exceptions import ModelNotLoadedError
from ml.models import Model

logger = logging.getLogger(__name__)

CANDIDATE = "candidate"
ACTIVE = "active"
RETIRED = "retired"


class ModelRegistry:
    """Registry for navigation models with versioning and status."""

    def __init__(self):
        self._models: Dict[str, Model] = {}
        self._status: Dict[str, str] = {}
        self._active_version: Optional[str] = None
        self._retired_stack: List[str] = []
        self._lock = threading.RLock()

    def register(self, model: Model) -> str:
        """Store a model as a candidate; returns its version."""
        with self._lock:
            self._models[model.version] = model
            self._status.setdefault(model.version, CANDIDATE)
            logger.info(f"Registered model {model.version} ({model.kind})")
            return model.version

    def attach_metrics(self, version: str, metrics: Dict[str, Any]) -> Model:
        """Replace a stored model with a copy carrying the given metrics."""
        with self._lock:
            model = self.get(version)
            updated = dataclasses.replace(model, metrics=dict(metrics))
            self._models[version] = updated
            return updated

    def get(self, version: str) -> Model:
        with self._lock:
            model = self._models.get(version)
            if model is None:
                raise ModelNotLoadedError(f"Unknown model version {version}", version=version)
            return model

    def status(self, version: str) -> Optional[str]:
        with self._lock:
            return self._status.get(version)

    def active(self) -> Optional[Model]:
        """The active model, or None before the first promotion."""
        with self._lock:
            if self._active_version is None:
                return None
            return self._models[self._active_version]

    @property
    def active_version(self) -> Optional[str]:
        return self._active_version

    def promote(self, version: str) -> Model:
        """Make `version` active and retire the previously active version."""
        with self._lock:
            model = self.get(version)
            previous = self._active_version
            if previous == version:
                return model

            if previous is not None:
                self._status[previous] = RETIRED
                self._retired_stack.append(previous)
            self._status[version] = ACTIVE
            self._active_version = version

            logger.info(f"Promoted model {version} (previous: {previous})")
            return model

    def rollback(self) -> Optional[Model]:
        """Reactivate the most recently retired version; None if there is none."""
        with self._lock:
            if not self._retired_stack:
                logger.warning("Rollback requested but no retired model is available")
                return None

            target = self._retired_stack.pop()
            demoted = self._active_version
            if demoted is not None:
                # Rolled-back versions are not eligible for a later rollback
                self._status[demoted] = RETIRED
            self._status[target] = ACTIVE
            self._active_version = target

            logger.info(f"Rolled back from {demoted} to {target}")
            return self._models[target]

    def list_versions(self) -> List[Dict[str, Any]]:
        with self._lock:
            return [
                {
                    "version": version,
                    "kind": model.kind,
                    "status": self._status[version],
                    "trained_at": model.trained_at.isoformat(),
                    "accuracy": model.metrics.get("accuracy"),
                }
                for version, model in self._models.items()
            ]
