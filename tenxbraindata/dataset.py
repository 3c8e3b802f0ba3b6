from dataclasses import dataclass, replace
from typing import Optional, Tuple, Union

import numpy as np
import pandas as pd
from anndata import AnnData
from lamin_utils import logger

from .cache import ObjectCache
from .chunking import chunk_size_for_budget, plan_chunks
from .config import SUMMARY_VERSION, Settings
from .errors import InvalidArgument
from .reduce import ReductionResult, reduce_blocks
from .results import Cached, Fresh, LocalResultCache, Outcome, ResultCache
from .store import InMemoryMatrix, TenxH5Matrix


@dataclass
class TENxBrainData:
    """
    A genes x cells count matrix read lazily from disk, with its gene and cell metadata.

    Attributes:
        matrix (TenxH5Matrix | InMemoryMatrix): the counts, genes as rows and cells as columns.
        row_data (pd.DataFrame): one row per gene.
        col_data (pd.DataFrame): one row per cell.
        name (str): logical name of the dataset.
    """

    matrix: Union[TenxH5Matrix, InMemoryMatrix]
    row_data: pd.DataFrame
    col_data: pd.DataFrame
    name: str = "TENxBrainData"

    def __post_init__(self):
        n_rows, n_cols = self.matrix.shape
        if len(self.row_data) != n_rows or len(self.col_data) != n_cols:
            raise InvalidArgument(
                f"metadata of shape ({len(self.row_data)}, {len(self.col_data)}) "
                f"does not match the matrix of shape {self.matrix.shape}"
            )

    @property
    def shape(self) -> Tuple[int, int]:
        return self.matrix.shape

    @property
    def has_summary(self) -> bool:
        return {"sum", "detected"} <= set(self.col_data.columns) and (
            "mean" in self.row_data.columns
        )

    def with_summary(self, stats: ReductionResult) -> "TENxBrainData":
        """Copy with `sum` and `detected` added to col_data and `mean` added to row_data."""
        col_data = self.col_data.copy()
        col_data["sum"] = stats.column_sum
        col_data["detected"] = stats.column_nonzero_count
        row_data = self.row_data.copy()
        row_data["mean"] = stats.row_mean
        return replace(self, row_data=row_data, col_data=col_data)

    def to_anndata(self) -> AnnData:
        """
        The metadata as an AnnData without X: cells are observations, genes are variables.

        The counts themselves stay in the matrix file.
        """
        adata = AnnData(obs=self.col_data, var=self.row_data)
        adata.uns["dataset"] = self.name
        return adata

    def annotate_from(self, adata: AnnData) -> "TENxBrainData":
        """Copy using the obs / var of `adata` as col_data / row_data."""
        if adata.uns.get("dataset", self.name) != self.name:
            raise InvalidArgument(
                f"result belongs to {adata.uns['dataset']}, not to {self.name}"
            )
        if adata.shape != self.shape[::-1]:
            raise InvalidArgument(
                f"result of shape {adata.shape} (cells, genes) does not match {self.shape} (genes, cells)"
            )
        return replace(self, row_data=adata.var.copy(), col_data=adata.obs.copy())

    def close(self):
        self.matrix.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return (
            f"TENxBrainData({self.name!r}, {self.shape[0]} genes x {self.shape[1]} cells, "
            f"row_data: {list(self.row_data.columns)}, col_data: {list(self.col_data.columns)})"
        )


def load_tenx_brain(
    dataset: str = "TENxBrainData",
    settings: Optional[Settings] = None,
    object_cache: Optional[ObjectCache] = None,
) -> TENxBrainData:
    """
    Downloads (once) and opens one of the 10x mouse brain datasets.

    Args:
        dataset (str, optional): "TENxBrainData" for the 1.3 million cells, or
            "TENxBrainData20k" for the 20,000 cells subset. Defaults to "TENxBrainData".
        settings (Settings, optional): where to cache the files. Defaults to Settings().
        object_cache (ObjectCache, optional): overrides the cache built from `settings`.

    Returns:
        TENxBrainData: the dataset, backed by the local HDF5 file.
    """
    settings = settings or Settings()
    if object_cache is None:
        object_cache = ObjectCache(settings.cache_dir, settings.resources)
    path = object_cache.resolve(dataset)
    matrix = TenxH5Matrix(path)
    try:
        return TENxBrainData(
            matrix=matrix,
            row_data=matrix.row_data(),
            col_data=matrix.col_data(),
            name=dataset,
        )
    except Exception:
        matrix.close()
        raise


def compute_summary(
    data: TENxBrainData, settings: Optional[Settings] = None
) -> ReductionResult:
    """Plans the column blocks within the memory budget and runs the single pass reduction."""
    settings = settings or Settings()
    n_rows, n_cols = data.shape
    chunk_size = chunk_size_for_budget(
        n_rows,
        settings.chunk_size,
        settings.memory_budget,
        itemsize=np.dtype(data.matrix.dtype).itemsize,
    )
    if chunk_size < settings.chunk_size:
        logger.warning(
            f"chunk size lowered from {settings.chunk_size} to {chunk_size} to fit the memory budget"
        )
    plan = plan_chunks(n_cols, chunk_size)
    logger.info(
        f"summarizing {n_rows} genes x {n_cols} cells in {len(plan)} blocks of {chunk_size} cells"
    )
    return reduce_blocks(
        data.matrix, plan, n_workers=settings.n_workers, progress=settings.progress
    )


def summary_name(dataset: str, shape: Tuple[int, int]) -> str:
    """Result name, e.g. "TENxBrainData20k_27998x20000_summary_v1"."""
    return f"{dataset}_{shape[0]}x{shape[1]}_summary_{SUMMARY_VERSION}"


def summarize(
    data: TENxBrainData,
    settings: Optional[Settings] = None,
    result_cache: Optional[ResultCache] = None,
    force: bool = False,
) -> Outcome:
    """
    Adds per-cell `sum` / `detected` and per-gene `mean` to the metadata, computing them only once.

    Args:
        data (TENxBrainData): the dataset.
        settings (Settings, optional): chunking and cache settings. Defaults to Settings().
        result_cache (ResultCache, optional): where results are stored.
            Defaults to a LocalResultCache in the results folder of the object cache.
        force (bool, optional): recompute even if a stored result exists. Defaults to False.

    Returns:
        Cached | Fresh: the annotated dataset.
    """
    settings = settings or Settings()
    if result_cache is None:
        result_cache = LocalResultCache.in_object_cache(
            ObjectCache(settings.cache_dir, settings.resources)
        )
    outcome = result_cache.get_or_compute(
        summary_name(data.name, data.shape),
        lambda: data.with_summary(compute_summary(data, settings)).to_anndata(),
        force=force,
    )
    annotated = data.annotate_from(outcome.value)
    return Cached(annotated) if isinstance(outcome, Cached) else Fresh(annotated)
