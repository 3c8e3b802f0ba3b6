from importlib.metadata import version

from .cache import ObjectCache
from .chunking import chunk_size_for_budget, plan_chunks
from .config import DATASETS, Resource, Settings
from .dataset import TENxBrainData, compute_summary, load_tenx_brain, summarize
from .errors import BlockReadError, CacheMiss, DownloadError, InvalidArgument
from .reduce import ReductionResult, reduce_blocks
from .results import Cached, Fresh, LaminResultCache, LocalResultCache, ResultCache
from .store import InMemoryMatrix, TenxH5Matrix

__version__ = version("tenxbraindata")
