import os
from abc import ABC, abstractmethod
from dataclasses import dataclass
from os import PathLike
from pathlib import Path
from typing import Callable, Generic, TypeVar, Union
from uuid import uuid4

from anndata import AnnData, read_h5ad
from lamin_utils import logger

from .errors import CacheMiss, InvalidArgument

T = TypeVar("T")


@dataclass
class Cached(Generic[T]):
    """A result loaded from the cache, nothing was computed."""

    value: T

    @property
    def is_cached(self) -> bool:
        return True


@dataclass
class Fresh(Generic[T]):
    """A result that was just computed and stored."""

    value: T

    @property
    def is_cached(self) -> bool:
        return False


Outcome = Union[Cached, Fresh]


class ResultCache(ABC):
    """
    Stores computed AnnData objects under logical names.

    Two processes missing the same name at the same time will both compute
    and store it; the last write wins and both results are valid.
    """

    @abstractmethod
    def contains(self, name: str) -> bool:
        pass

    @abstractmethod
    def load(self, name: str) -> AnnData:
        """
        Raises:
            CacheMiss: if nothing is stored under `name`.
        """
        pass

    @abstractmethod
    def save(self, name: str, adata: AnnData) -> None:
        pass

    @abstractmethod
    def remove(self, name: str) -> None:
        pass

    def get_or_compute(
        self, name: str, compute_fn: Callable[[], AnnData], force: bool = False
    ) -> Outcome:
        """
        Returns the result stored under `name`, or computes, stores and returns it.

        Args:
            name (str): logical name of the result.
            compute_fn (callable): called without arguments on a miss.
            force (bool, optional): recompute and overwrite even if a result is stored.
                Defaults to False.

        Returns:
            Cached | Fresh: the result, wrapped according to where it comes from.
                If `compute_fn` raises, nothing is stored and the error propagates.
        """
        if not force:
            try:
                adata = self.load(name)
            except CacheMiss:
                logger.info(f"no stored result for {name}, computing it")
            else:
                logger.info(f"loaded stored result for {name}")
                return Cached(adata)
        adata = compute_fn()
        self.save(name, adata)
        logger.success(f"stored result for {name}")
        return Fresh(adata)


class LocalResultCache(ResultCache):
    """
    Results stored as `<directory>/<name>.h5ad`.

    Writes go to a temporary file that is renamed once complete.
    """

    def __init__(self, directory: Union[str, PathLike]):
        self.directory = Path(directory).expanduser()

    @classmethod
    def in_object_cache(cls, object_cache) -> "LocalResultCache":
        """Results kept where `object_cache.store` puts computed files."""
        return cls(object_cache.results_dir)

    def path(self, name: str) -> Path:
        if not name or os.sep in name or name.startswith("."):
            raise InvalidArgument(f"invalid result name: {name!r}")
        return self.directory / f"{name}.h5ad"

    def contains(self, name: str) -> bool:
        return self.path(name).is_file()

    def load(self, name: str) -> AnnData:
        path = self.path(name)
        if not path.is_file():
            raise CacheMiss(name)
        return read_h5ad(path)

    def save(self, name: str, adata: AnnData):
        path = self.path(name)
        self.directory.mkdir(parents=True, exist_ok=True)
        tmp = self.directory / f".{name}.{uuid4().hex}.h5ad"
        try:
            adata.write_h5ad(tmp)
            os.replace(tmp, path)
        finally:
            tmp.unlink(missing_ok=True)

    def remove(self, name: str):
        self.path(name).unlink(missing_ok=True)


class LaminResultCache(ResultCache):
    """
    Results stored as LaminDB artifacts, keyed by `<folder>/<name>.h5ad`.

    Needs a LaminDB instance to be set up (`lamin init` or `lamin connect`).

    Args:
        folder (str, optional): key prefix of the artifacts. Defaults to "tenxbraindata".
        description (str, optional): description given to new artifacts.
    """

    def __init__(
        self,
        folder: str = "tenxbraindata",
        description: str = "per-cell and per-gene summary computed by tenxbraindata",
    ):
        self.folder = folder
        self.description = description

    @property
    def ln(self):
        import lamindb as ln

        return ln

    def key(self, name: str) -> str:
        return f"{self.folder}/{name}.h5ad"

    def _artifact(self, name: str):
        return self.ln.Artifact.filter(key=self.key(name)).first()

    def contains(self, name: str) -> bool:
        return self._artifact(name) is not None

    def load(self, name: str) -> AnnData:
        artifact = self._artifact(name)
        if artifact is None:
            raise CacheMiss(name)
        return artifact.load()

    def save(self, name: str, adata: AnnData):
        self.ln.Artifact.from_anndata(
            adata, key=self.key(name), description=self.description
        ).save()

    def remove(self, name: str):
        artifact = self._artifact(name)
        if artifact is not None:
            artifact.delete(permanent=True)
