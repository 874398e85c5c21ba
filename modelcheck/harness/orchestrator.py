# modelcheck/harness/orchestrator.py
from __future__ import annotations

"""
Training Orchestrator（FINAL）

train(session, callback=None) -> (Model, elapsed seconds)

- callback(session) runs IMMEDIATELY before the blocking training call
- interrupt_training_after:
    timer sets a cancel event after N seconds;
    training runs in a worker thread joined with timeout N + grace;
    no return within the grace period => TrainingError
- pass_training_dataset_as_path:
    datasets are sharded under the session temp dir, trainer gets typed paths
    dataset_sampling only applies there (in-memory training keeps every row, warned)
- change_random_seed:
    learner seed drawn at random (logged, for reproduction)
"""

import threading
from time import perf_counter
from typing import Callable, Optional, Tuple

import numpy as np
import pyarrow as pa

from modelcheck import logs
from modelcheck.config.training_config import TrainingConfig
from modelcheck.dataset.sharding import shard_dataset
from modelcheck.harness.session import TestSession
from modelcheck.model.learner import Learner
from modelcheck.model.model import Model
from modelcheck.utils.errors import ConfigurationError, TrainingError

Callback = Callable[[TestSession], None]


class TrainingOrchestrator:
    def __init__(self, session: TestSession):
        self.session = session

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def train(self, callback: Optional[Callback] = None) -> Tuple[Model, float]:
        s = self.session
        if s.train_dataset is None or s.dataspec is None:
            raise ConfigurationError("[Orchestrator] no training dataset, call prepare_dataset first")

        cfg = self._training_config()
        learner = Learner(cfg, s.deployment)

        train_input = self._dataset_input(s.train_dataset, "train", s.dataset_sampling)
        valid_input = None
        if s.pass_validation_dataset and s.valid_dataset is not None:
            valid_input = self._dataset_input(s.valid_dataset, "valid", 1.0)

        cancel_event = threading.Event()

        def run() -> Model:
            return learner.train(
                train_input,
                valid_dataset=valid_input,
                dataspec=s.dataspec,
                cancel_event=cancel_event,
            )

        if callback is not None:
            callback(s)

        start = perf_counter()
        if s.interrupt_training_after is None:
            model = run()
        else:
            model = self._run_interruptible(run, cancel_event, s.interrupt_training_after)
        elapsed = perf_counter() - start

        model.metadata["training_duration"] = elapsed
        s.model = model
        s.training_duration = elapsed

        logs.info(f"[Orchestrator] trained {cfg.learner} in {elapsed:.3f}s")
        if s.show_full_model_structure:
            logs.info(f"[Orchestrator] model:\n{model.describe(full=True)}")
        else:
            logs.debug(f"[Orchestrator] model:\n{model.describe()}")

        return model, elapsed

    # ------------------------------------------------------------------
    # Internal
    # ------------------------------------------------------------------
    def _training_config(self) -> TrainingConfig:
        s = self.session
        update = {}

        if s.change_random_seed:
            update["seed"] = int(np.random.default_rng().integers(0, 2**31 - 1))
            logs.info(f"[Orchestrator] random learner seed={update['seed']}")

        # weights already emulated by duplication in the training partition
        if s.emulate_weight_with_duplication and s.training.weight_column:
            update["weight_column"] = None

        return s.training.model_copy(update=update) if update else s.training

    def _dataset_input(self, table: pa.Table, name: str, sampling: float) -> pa.Table | str:
        s = self.session
        if not s.pass_training_dataset_as_path:
            if sampling < 1.0:
                logs.warning(
                    f"[Orchestrator] dataset_sampling={sampling} ignored: "
                    f"only applies with pass_training_dataset_as_path, {name} keeps {table.num_rows} rows"
                )
            return table

        directory = s.ensure_tmp_dir() / name
        directory.mkdir(parents=True, exist_ok=True)
        return shard_dataset(
            table,
            s.num_shards,
            sampling,
            directory,
            fmt=s.preferred_format,
            name=name,
            seed=s.seed,
        )

    def _run_interruptible(
        self,
        run: Callable[[], Model],
        cancel_event: threading.Event,
        interrupt_after: float,
    ) -> Model:
        grace = self.session.harness.cancellation_grace_seconds
        outcome: dict = {}

        def worker() -> None:
            try:
                outcome["model"] = run()
            except BaseException as e:  # re-raised in the calling thread
                outcome["error"] = e

        timer = threading.Timer(interrupt_after, cancel_event.set)
        thread = threading.Thread(target=worker, name="modelcheck-training", daemon=True)

        logs.info(f"[Orchestrator] training will be interrupted after {interrupt_after}s (grace={grace}s)")
        timer.start()
        thread.start()
        try:
            thread.join(timeout=interrupt_after + grace)
        finally:
            timer.cancel()

        if thread.is_alive():
            cancel_event.set()
            raise TrainingError(
                f"[Orchestrator] training did not stop within {grace}s after interruption at {interrupt_after}s"
            )

        if "error" in outcome:
            raise outcome["error"]

        if cancel_event.is_set():
            logs.warning("[Orchestrator] training was interrupted, model is partially trained")
        return outcome["model"]


def train(session: TestSession, callback: Optional[Callback] = None) -> Tuple[Model, float]:
    return TrainingOrchestrator(session).train(callback)
