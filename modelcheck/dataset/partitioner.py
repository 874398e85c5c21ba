# modelcheck/dataset/partitioner.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

import numpy as np
import pyarrow as pa
import pyarrow.compute as pc

from modelcheck import logs
from modelcheck.utils.errors import ConfigurationError

# Upper bound of copies of a single row when emulating weights.
DEFAULT_MAX_DUPLICATION = 100


@dataclass(frozen=True)
class Partition:
    """
    Train / (valid) / test partition of ONE source dataset.

    *_indices are row indices into the source table
    (None when the partition comes from a dedicated file).
    """

    train: pa.Table
    test: pa.Table
    valid: Optional[pa.Table] = None

    train_indices: Optional[np.ndarray] = None
    test_indices: Optional[np.ndarray] = None
    valid_indices: Optional[np.ndarray] = None


class DatasetPartitioner:
    """
    DatasetPartitioner（FINAL）

    Semantics:
    - inject_random_noise=False:
        split is a pure function of (row index, ratio)
        ratio=0.5 -> even rows train / odd rows test
    - inject_random_noise=True:
        rows are permuted with default_rng(seed) first
    - pass_validation_dataset=True:
        non-train rows are split uniformly: even position -> valid, odd -> test
    """

    def __init__(
        self,
        split_train_ratio: float = 0.5,
        *,
        inject_random_noise: bool = False,
        seed: int = 1234,
        pass_validation_dataset: bool = False,
    ):
        self.ratio = split_train_ratio
        self.inject_random_noise = inject_random_noise
        self.seed = seed
        self.pass_validation_dataset = pass_validation_dataset

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------
    def split_indices(self, num_rows: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
        """
        Returns:
            train_idx, valid_idx, test_idx (valid_idx empty unless pass_validation_dataset)
        """
        if not 0.0 < self.ratio < 1.0:
            raise ConfigurationError(
                f"[Partitioner] split_train_ratio must be in (0, 1), got {self.ratio}"
            )

        idx = np.arange(num_rows)

        if self.inject_random_noise:
            rng = np.random.default_rng(self.seed)
            perm = rng.permutation(num_rows)
            num_train = int(round(num_rows * self.ratio))
            train_idx, rest = perm[:num_train], perm[num_train:]
        else:
            # evenly spaced; ratio=0.5 => 0, 2, 4, ...
            is_train = np.ceil((idx + 1) * self.ratio) > np.ceil(idx * self.ratio)
            train_idx, rest = idx[is_train], idx[~is_train]

        if self.pass_validation_dataset:
            valid_idx, test_idx = rest[0::2], rest[1::2]
        else:
            valid_idx, test_idx = rest[:0], rest

        return train_idx, valid_idx, test_idx

    def partition(self, table: pa.Table, test_table: Optional[pa.Table] = None) -> Partition:
        """
        test_table given => whole `table` is training data.
        """
        if test_table is not None:
            if self.pass_validation_dataset:
                # validation is carved out of the dedicated test file
                idx = np.arange(test_table.num_rows)
                return Partition(
                    train=table,
                    valid=test_table.take(pa.array(idx[0::2], type=pa.int64())),
                    test=test_table.take(pa.array(idx[1::2], type=pa.int64())),
                )
            return Partition(train=table, test=test_table)

        train_idx, valid_idx, test_idx = self.split_indices(table.num_rows)

        partition = Partition(
            train=table.take(pa.array(train_idx, type=pa.int64())),
            test=table.take(pa.array(test_idx, type=pa.int64())),
            valid=(
                table.take(pa.array(valid_idx, type=pa.int64()))
                if self.pass_validation_dataset else None
            ),
            train_indices=train_idx,
            test_indices=test_idx,
            valid_indices=valid_idx if self.pass_validation_dataset else None,
        )

        logs.info(
            f"[Partitioner] rows={table.num_rows} ratio={self.ratio} "
            f"noise={self.inject_random_noise} -> train={partition.train.num_rows} "
            f"valid={0 if partition.valid is None else partition.valid.num_rows} "
            f"test={partition.test.num_rows}"
        )
        return partition


# ======================================================================
# Weight emulation
# ======================================================================
def duplication_counts(weights: np.ndarray, max_duplication: int = DEFAULT_MAX_DUPLICATION) -> np.ndarray:
    """
    count_i = round(w_i / min positive w), clipped to [1, max_duplication]
    for positive weights; 0 for w <= 0 or NaN.
    """
    if max_duplication < 1:
        raise ConfigurationError(f"[Partitioner] max_duplication must be >= 1, got {max_duplication}")

    w = np.nan_to_num(np.asarray(weights, dtype=np.float64), nan=0.0)
    positive = w > 0
    if not positive.any():
        raise ConfigurationError("[Partitioner] no positive weight, cannot emulate weights")

    min_positive = w[positive].min()
    counts = np.zeros(len(w), dtype=np.int64)
    counts[positive] = np.clip(np.rint(w[positive] / min_positive), 1, max_duplication)
    return counts


def emulate_weights(
    table: pa.Table,
    weight_column: str,
    max_duplication: int = DEFAULT_MAX_DUPLICATION,
) -> pa.Table:
    """
    Replace a numerical weight by row duplication.
    """
    if weight_column not in table.column_names:
        raise ConfigurationError(f"[Partitioner] weight column '{weight_column}' not found")

    weights = pc.cast(table.column(weight_column), pa.float64()).to_numpy()
    counts = duplication_counts(weights, max_duplication)

    take = np.repeat(np.arange(table.num_rows), counts)
    out = table.take(pa.array(take, type=pa.int64()))

    logs.info(
        f"[Partitioner] weight emulation '{weight_column}': "
        f"{table.num_rows} rows -> {out.num_rows} rows (max copies={int(counts.max())})"
    )
    return out
