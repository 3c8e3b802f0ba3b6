from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from itertools import islice
from typing import List, Sequence, Tuple

import numpy as np
from lamin_utils import logger
from tqdm import tqdm

from .errors import BlockReadError, InvalidArgument

# largest integer a float64 holds exactly
MAX_EXACT_FLOAT = 2**53


@dataclass
class ReductionResult:
    """
    Per-column and per-row statistics of a genes x cells matrix.

    Attributes:
        column_sum (np.ndarray): total counts of each column (cell).
        column_nonzero_count (np.ndarray): number of strictly positive entries of each column.
        row_sum_total (np.ndarray): total counts of each row (gene).
        row_mean (np.ndarray): row_sum_total divided by the number of columns, as float64.
    """

    column_sum: np.ndarray
    column_nonzero_count: np.ndarray
    row_sum_total: np.ndarray
    row_mean: np.ndarray

    @property
    def n_columns(self) -> int:
        return len(self.column_sum)

    @property
    def n_rows(self) -> int:
        return len(self.row_sum_total)


def accumulator_dtype(dtype: np.dtype) -> np.dtype:
    """
    int64 for integer (and boolean) matrices, float64 otherwise.

    int64 sums are exact up to 2**63. float64 sums of integer counts are exact
    up to 2**53.
    """
    dtype = np.dtype(dtype)
    if np.issubdtype(dtype, np.integer) or np.issubdtype(dtype, np.bool_):
        return np.dtype(np.int64)
    return np.dtype(np.float64)


def validate_plan(plan: Sequence[Tuple[int, int]], n_columns: int):
    """
    Checks that `plan` is a set of non-empty, disjoint ranges covering exactly [0, n_columns).

    Raises:
        InvalidArgument: at the first range that breaks it.
    """
    if len(plan) == 0:
        raise InvalidArgument("the chunk plan is empty")
    expected = 0
    for start, end in sorted(plan):
        if start < 0 or end > n_columns:
            raise InvalidArgument(
                f"range [{start}, {end}) is outside of the matrix columns [0, {n_columns})"
            )
        if end <= start:
            raise InvalidArgument(f"range [{start}, {end}) is empty")
        if start != expected:
            raise InvalidArgument(
                f"range [{start}, {end}) leaves a gap or overlaps at column {expected}"
            )
        expected = end
    if expected != n_columns:
        raise InvalidArgument(
            f"the chunk plan covers {expected} columns out of {n_columns}"
        )


def _reduce_block(matrix, start: int, end: int, dtype: np.dtype):
    """Reads one block and returns its column sums, column nonzero counts and row sums."""
    block = matrix.read_block(start, end)
    if block.shape != (matrix.shape[0], end - start):
        raise BlockReadError(
            f"block [{start}, {end}) has shape {block.shape}, "
            f"expected {(matrix.shape[0], end - start)}"
        )
    return (
        start,
        end,
        block.sum(axis=0, dtype=dtype),
        np.count_nonzero(block > 0, axis=0),
        block.sum(axis=1, dtype=dtype),
    )


def reduce_blocks(
    matrix,
    plan: List[Tuple[int, int]],
    n_workers: int = 1,
    progress: bool = False,
) -> ReductionResult:
    """
    Computes column sums, column nonzero counts and row sums in a single pass over `matrix`.

    Each block of the plan is read exactly once and dropped as soon as its
    statistics are extracted, so memory stays at one block (per worker) plus
    the output vectors. Column statistics of a block land in their own slice
    of the output; row sums of every block are added together.

    With `n_workers > 1`, blocks are read by a thread pool and the partial
    results are combined here, in plan order, so the output is the same as
    with a single worker. At most `n_workers` blocks are submitted ahead of
    the one being combined, so memory does not grow with the number of blocks.

    Args:
        matrix (TenxH5Matrix | InMemoryMatrix): anything with `shape` and `read_block(start, end)`.
        plan (list[tuple[int, int]]): the column ranges, see `plan_chunks`.
        n_workers (int, optional): number of threads reading blocks. Defaults to 1.
        progress (bool, optional): whether to show a progress bar. Defaults to False.

    Raises:
        InvalidArgument: if the plan does not fit the matrix. Nothing is read in that case.
        BlockReadError: if a block cannot be read. The whole reduction is abandoned.

    Returns:
        ReductionResult: the statistics.
    """
    n_rows, n_columns = matrix.shape
    validate_plan(plan, n_columns)
    dtype = accumulator_dtype(matrix.dtype)

    column_sum = np.zeros(n_columns, dtype=dtype)
    column_nonzero_count = np.zeros(n_columns, dtype=np.int64)
    row_sum_total = np.zeros(n_rows, dtype=dtype)

    def combine(part):
        start, end, col_sum, col_nnz, row_sum = part
        column_sum[start:end] = col_sum
        column_nonzero_count[start:end] = col_nnz
        row_sum_total[:] += row_sum

    if n_workers <= 1:
        for start, end in tqdm(plan, desc="Reducing blocks", disable=not progress):
            combine(_reduce_block(matrix, start, end, dtype))
    else:
        logger.info(f"reading {len(plan)} blocks with {n_workers} workers")
        blocks = iter(plan)
        with ThreadPoolExecutor(max_workers=n_workers) as executor:
            pending = deque(
                executor.submit(_reduce_block, matrix, start, end, dtype)
                for start, end in islice(blocks, n_workers)
            )
            try:
                with tqdm(
                    total=len(plan), desc="Reducing blocks", disable=not progress
                ) as pbar:
                    while pending:
                        part = pending.popleft().result()
                        for start, end in islice(blocks, 1):
                            pending.append(
                                executor.submit(_reduce_block, matrix, start, end, dtype)
                            )
                        combine(part)
                        del part
                        pbar.update(1)
            except BaseException:
                for future in pending:
                    future.cancel()
                raise

    if n_rows > 0 and row_sum_total.max() >= MAX_EXACT_FLOAT:
        logger.warning(
            "some row sums exceed 2**53, their means are rounded to double precision"
        )
    return ReductionResult(
        column_sum=column_sum,
        column_nonzero_count=column_nonzero_count,
        row_sum_total=row_sum_total,
        row_mean=row_sum_total.astype(np.float64) / n_columns,
    )
