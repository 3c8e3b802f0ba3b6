import sys

import h5py
import numpy as np
import pytest
from scipy.sparse import csc_matrix


# each test runs on cwd to its temp dir
@pytest.fixture(autouse=True)
def go_to_tmpdir(request):
    # Get the fixture dynamically by its name.
    tmpdir = request.getfixturevalue("tmpdir")
    # ensure local test created packages can be imported
    sys.path.insert(0, str(tmpdir))
    # Chdir only for the duration of the test.
    with tmpdir.as_cwd():
        yield


@pytest.fixture
def counts():
    """A small genes x cells UMI count matrix, with an empty cell and an empty gene."""
    rng = np.random.default_rng(42)
    mat = rng.poisson(0.6, size=(12, 37)).astype(np.int32)
    mat[:, 5] = 0
    mat[3, :] = 0
    return mat


def _write_tenx_h5(path, matrix, version=1, genomes=("mm10",)):
    m = csc_matrix(matrix)
    n_genes, n_cells = m.shape
    genes = np.array([f"ENSMUSG{i:011d}" for i in range(n_genes)], dtype="S")
    names = np.array([f"Gene{i}" for i in range(n_genes)], dtype="S")
    barcodes = np.array(
        [f"{'ACGT'[i % 4] * 16}{i:04d}-{1 + i % 3}" for i in range(n_cells)], dtype="S"
    )
    with h5py.File(path, "w") as f:
        for genome in genomes if version == 1 else ["matrix"]:
            g = f.create_group(genome)
            if version == 1:
                g.create_dataset("genes", data=genes)
                g.create_dataset("gene_names", data=names)
            else:
                features = g.create_group("features")
                features.create_dataset("id", data=genes)
                features.create_dataset("name", data=names)
            g.create_dataset("barcodes", data=barcodes)
            g.create_dataset("data", data=m.data.astype(np.int32))
            g.create_dataset("indices", data=m.indices.astype(np.int64))
            g.create_dataset("indptr", data=m.indptr.astype(np.int64))
            g.create_dataset("shape", data=np.array(m.shape, dtype=np.int32))
    return path


@pytest.fixture
def write_tenx_h5():
    """Writes a matrix as a 10x HDF5 file, legacy (1) or cellranger >= 3 (3) layout."""
    return _write_tenx_h5


@pytest.fixture
def tenx_h5(tmp_path, counts):
    return _write_tenx_h5(tmp_path / "neurons.h5", counts)
