from os import PathLike
from typing import Optional, Sequence, Tuple, Union

import h5py
import numpy as np
import pandas as pd
from lamin_utils import logger
from scipy.sparse import csc_matrix, issparse

from .errors import BlockReadError, InvalidArgument

# name of the group holding the matrix in cellranger >= 3 files
MATRIX = "matrix"

_decode = np.frompyfunc(lambda x: x.decode("utf-8") if isinstance(x, bytes) else x, 1, 1)


def _check_range(start: int, end: int, n_cols: int):
    if not 0 <= start < end <= n_cols:
        raise InvalidArgument(
            f"column range [{start}, {end}) is outside of [0, {n_cols})"
        )


def barcodes_to_col_data(barcodes: Sequence[str]) -> pd.DataFrame:
    """
    Splits 10x barcodes such as "AAACCTGAGATAGGAG-1" into their sequence and library number.

    Args:
        barcodes (list[str]): the cell barcodes.

    Returns:
        pd.DataFrame: Barcode, Sequence and Library columns, indexed by barcode.
    """
    barcodes = pd.Index(np.asarray(barcodes, dtype=object).astype(str))
    parts = barcodes.str.split("-", n=1)
    col_data = pd.DataFrame(
        {
            "Barcode": barcodes.values,
            "Sequence": [p[0] for p in parts],
            "Library": pd.to_numeric(
                [p[1] if len(p) > 1 else None for p in parts], errors="coerce"
            ),
        },
        index=barcodes.values,
    )
    if not col_data["Library"].isna().any():
        col_data["Library"] = col_data["Library"].astype(np.int64)
    return col_data


class TenxH5Matrix:
    """
    Genes x cells count matrix stored in a 10x Genomics HDF5 file.

    Nothing but the column pointers is loaded on opening. Blocks of columns
    (cells) are read on demand with `read_block`. Both the legacy layout (one
    group per genome, e.g. "mm10") and the cellranger >= 3 layout (a single
    "matrix" group) are supported.

    Args:
        path (str | PathLike): path to the .h5 file.
        genome (str, optional): genome group to use in legacy files holding more
            than one genome. Defaults to the only genome present.

    Raises:
        BlockReadError: if the file cannot be opened as a 10x matrix.
        InvalidArgument: if the genome is missing or ambiguous.
    """

    def __init__(self, path: Union[str, PathLike], genome: Optional[str] = None):
        self.path = path
        try:
            self._file = h5py.File(path, "r")
        except OSError as e:
            raise BlockReadError(f"could not open {path} as an HDF5 file") from e
        try:
            if MATRIX in self._file:
                self.version = 3
                self._group = self._file[MATRIX]
                self.genome = genome
            else:
                self.version = 1
                genomes = list(self._file.keys())
                if genome is None:
                    if len(genomes) != 1:
                        raise InvalidArgument(
                            f"{path} holds genomes {genomes}, please choose one"
                        )
                    genome = genomes[0]
                elif genome not in genomes:
                    raise InvalidArgument(f"genome {genome} not found in {path}")
                self.genome = genome
                self._group = self._file[genome]
            self._shape = tuple(int(i) for i in self._group["shape"][:])
            self._dtype = self._group["data"].dtype
            self._indptr = self._group["indptr"][:].astype(np.int64)
        except KeyError as e:
            self.close()
            raise BlockReadError(f"{path} is not a 10x count matrix file") from e
        except InvalidArgument:
            self.close()
            raise
        if len(self._indptr) != self._shape[1] + 1:
            self.close()
            raise BlockReadError(
                f"{path} has {len(self._indptr)} column pointers for {self._shape[1]} columns"
            )
        logger.info(
            f"opened {path}: {self._shape[0]} genes x {self._shape[1]} cells, "
            f"{int(self._indptr[-1])} nonzero entries"
        )

    @property
    def shape(self) -> Tuple[int, int]:
        return self._shape

    @property
    def dtype(self) -> np.dtype:
        return self._dtype

    @property
    def nnz(self) -> int:
        return int(self._indptr[-1])

    @property
    def closed(self) -> bool:
        return self._file is None

    def read_block(self, start: int, end: int) -> np.ndarray:
        """
        Reads columns [start, end) into a dense array.

        Only the nonzero entries of these columns are read from disk.

        Args:
            start (int): first column.
            end (int): column to stop at (excluded).

        Raises:
            InvalidArgument: if the range is outside of the matrix.
            BlockReadError: if the file cannot be read.

        Returns:
            np.ndarray: an array of shape (n_genes, end - start).
        """
        _check_range(start, end, self._shape[1])
        if self.closed:
            raise BlockReadError(f"{self.path} is closed")
        lo, hi = int(self._indptr[start]), int(self._indptr[end])
        indptr = self._indptr[start : end + 1] - lo
        try:
            data = self._group["data"][lo:hi]
            indices = self._group["indices"][lo:hi]
            # a truncated file gives arrays that do not match indptr
            block = csc_matrix((data, indices, indptr), shape=(self._shape[0], end - start))
        except (OSError, KeyError, ValueError) as e:
            raise BlockReadError(
                f"could not read columns [{start}, {end}) from {self.path}"
            ) from e
        return block.toarray()

    def row_data(self) -> pd.DataFrame:
        """Gene metadata: Ensembl id and symbol, indexed by Ensembl id."""
        if self.version == 3:
            ids = self._group["features"]["id"][:]
            names = self._group["features"]["name"][:]
        else:
            ids = self._group["genes"][:]
            names = self._group["gene_names"][:]
        ids = _decode(ids).astype(str)
        return pd.DataFrame(
            {"Ensembl": ids, "Symbol": _decode(names).astype(str)}, index=ids
        )

    def col_data(self) -> pd.DataFrame:
        """Cell metadata: barcode, barcode sequence and library number, indexed by barcode."""
        return barcodes_to_col_data(_decode(self._group["barcodes"][:]))

    def close(self):
        if self._file is not None:
            self._file.close()
            self._file = None
            self._group = None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __repr__(self):
        return f"TenxH5Matrix({self.path!r}, shape={self._shape})"


class InMemoryMatrix:
    """
    Same interface as `TenxH5Matrix`, over a matrix already in memory.

    Args:
        matrix (np.ndarray | scipy.sparse matrix): a 2D genes x cells matrix.
        row_names (list[str], optional): gene names. Defaults to gene_0, gene_1, ...
        col_names (list[str], optional): cell names. Defaults to cell_0, cell_1, ...
    """

    def __init__(
        self,
        matrix,
        row_names: Optional[Sequence[str]] = None,
        col_names: Optional[Sequence[str]] = None,
    ):
        if not issparse(matrix):
            matrix = np.asarray(matrix)
        if matrix.ndim != 2:
            raise InvalidArgument(f"expected a 2D matrix, got {matrix.ndim} dimensions")
        self.matrix = csc_matrix(matrix) if issparse(matrix) else matrix
        self.row_names = (
            list(row_names)
            if row_names is not None
            else [f"gene_{i}" for i in range(matrix.shape[0])]
        )
        self.col_names = (
            list(col_names)
            if col_names is not None
            else [f"cell_{i}" for i in range(matrix.shape[1])]
        )

    @property
    def shape(self) -> Tuple[int, int]:
        return tuple(int(i) for i in self.matrix.shape)

    @property
    def dtype(self) -> np.dtype:
        return self.matrix.dtype

    def read_block(self, start: int, end: int) -> np.ndarray:
        _check_range(start, end, self.shape[1])
        block = self.matrix[:, start:end]
        return block.toarray() if issparse(block) else np.array(block)

    def row_data(self) -> pd.DataFrame:
        return pd.DataFrame({"Symbol": self.row_names}, index=self.row_names)

    def col_data(self) -> pd.DataFrame:
        return pd.DataFrame({"Barcode": self.col_names}, index=self.col_names)

    def close(self):
        pass

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
