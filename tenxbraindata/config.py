"""
Configuration file for tenxbraindata

The datasets that can be downloaded, and the settings passed to the cache, the
reducer and the result cache. Nothing here is process-wide: build a `Settings`
and hand it to whatever needs it.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional

from .errors import InvalidArgument

TENX_BASE_URL = "https://cf.10xgenomics.com/samples/cell-exp/1.3.0/1M_neurons/"

DEFAULT_CHUNK_SIZE = 10_000

SUMMARY_VERSION = "v1"

# folder of cache_dir holding computed results, next to the downloaded files
RESULTS_FOLDER = "results"


@dataclass(frozen=True)
class Resource:
    """A remote file, known under a stable logical name."""

    name: str
    url: str
    filename: str
    md5: Optional[str] = None


# logical dataset name -> resource holding its count matrix
DATASETS: Dict[str, Resource] = {
    "TENxBrainData": Resource(
        name="TENxBrainData",
        url=TENX_BASE_URL + "1M_neurons_filtered_gene_bc_matrices_h5.h5",
        filename="1M_neurons_filtered_gene_bc_matrices_h5.h5",
    ),
    "TENxBrainData20k": Resource(
        name="TENxBrainData20k",
        url=TENX_BASE_URL + "1M_neurons_neuron20k.h5",
        filename="1M_neurons_neuron20k.h5",
    ),
}


def default_cache_dir() -> Path:
    return Path(
        os.getenv(
            "TENXBRAINDATA_CACHE", os.path.join("~", ".cache", "tenxbraindata")
        )
    ).expanduser()


@dataclass
class Settings:
    """
    Settings for one run.

    Args:
        cache_dir (Path, optional): where downloaded files and computed results live.
            Defaults to $TENXBRAINDATA_CACHE or ~/.cache/tenxbraindata.
        chunk_size (int, optional): number of columns (cells) read per block.
            Defaults to 10_000.
        memory_budget (int, optional): maximum number of bytes one dense block may take.
            Shrinks the effective chunk size when needed. Defaults to None (no limit).
        n_workers (int, optional): number of threads reading blocks. Defaults to 1.
        progress (bool, optional): whether to show a progress bar over blocks.
            Defaults to True.
        resources (dict, optional): the datasets that can be resolved by name.
            Defaults to DATASETS.

    Raises:
        InvalidArgument: for a non-positive chunk size, memory budget or worker count,
            so that bad values fail before anything is downloaded or opened.
    """

    cache_dir: Path = field(default_factory=default_cache_dir)
    chunk_size: int = DEFAULT_CHUNK_SIZE
    memory_budget: Optional[int] = None
    n_workers: int = 1
    progress: bool = True
    resources: Dict[str, Resource] = field(default_factory=lambda: dict(DATASETS))

    def __post_init__(self):
        self.cache_dir = Path(self.cache_dir).expanduser()
        if isinstance(self.chunk_size, bool) or not isinstance(self.chunk_size, int):
            raise InvalidArgument(f"chunk_size must be an integer, got {self.chunk_size!r}")
        if self.chunk_size <= 0:
            raise InvalidArgument(f"chunk_size must be positive, got {self.chunk_size}")
        if self.memory_budget is not None and self.memory_budget <= 0:
            raise InvalidArgument(
                f"memory_budget must be positive, got {self.memory_budget}"
            )
        if self.n_workers < 1:
            raise InvalidArgument(f"n_workers must be at least 1, got {self.n_workers}")
        if RESULTS_FOLDER in self.resources:
            raise InvalidArgument(f"{RESULTS_FOLDER!r} is reserved for computed results")

    @property
    def results_dir(self) -> Path:
        return self.cache_dir / RESULTS_FOLDER
