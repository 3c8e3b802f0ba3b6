import h5py
import numpy as np
import pytest

from tenxbraindata import BlockReadError, InMemoryMatrix, InvalidArgument, TenxH5Matrix
from tenxbraindata.store import barcodes_to_col_data


@pytest.mark.parametrize("version", [1, 3])
def test_read_blocks(tmp_path, counts, write_tenx_h5, version):
    path = write_tenx_h5(tmp_path / f"v{version}.h5", counts, version=version)
    with TenxH5Matrix(path) as matrix:
        assert matrix.version == version
        assert matrix.shape == counts.shape
        assert matrix.dtype == np.int32
        assert matrix.nnz == np.count_nonzero(counts)
        for start, end in [(0, 1), (0, 37), (5, 6), (10, 23), (36, 37)]:
            block = matrix.read_block(start, end)
            assert block.shape == (counts.shape[0], end - start)
            np.testing.assert_array_equal(block, counts[:, start:end])
    assert matrix.closed


@pytest.mark.parametrize("version", [1, 3])
def test_metadata(tmp_path, counts, write_tenx_h5, version):
    path = write_tenx_h5(tmp_path / f"v{version}.h5", counts, version=version)
    with TenxH5Matrix(path) as matrix:
        row_data = matrix.row_data()
        col_data = matrix.col_data()
    assert list(row_data.columns) == ["Ensembl", "Symbol"]
    assert len(row_data) == counts.shape[0]
    assert row_data.index[0] == "ENSMUSG00000000000"
    assert row_data["Symbol"].iloc[2] == "Gene2"
    assert list(col_data.columns) == ["Barcode", "Sequence", "Library"]
    assert len(col_data) == counts.shape[1]
    assert col_data["Barcode"].iloc[1] == "CCCCCCCCCCCCCCCC0001-2"
    assert col_data["Sequence"].iloc[1] == "CCCCCCCCCCCCCCCC0001"
    assert col_data["Library"].tolist()[:4] == [1, 2, 3, 1]
    assert col_data.index.is_unique


def test_invalid_range(tenx_h5):
    with TenxH5Matrix(tenx_h5) as matrix:
        for start, end in [(-1, 2), (3, 3), (4, 2), (0, 38)]:
            with pytest.raises(InvalidArgument):
                matrix.read_block(start, end)


def test_read_after_close(tenx_h5):
    matrix = TenxH5Matrix(tenx_h5)
    matrix.close()
    with pytest.raises(BlockReadError):
        matrix.read_block(0, 2)


def test_not_a_matrix_file(tmp_path):
    path = tmp_path / "broken.h5"
    path.write_bytes(b"this is not hdf5")
    with pytest.raises(BlockReadError):
        TenxH5Matrix(path)


def test_genome_choice(tmp_path, counts, write_tenx_h5):
    path = write_tenx_h5(tmp_path / "two.h5", counts, genomes=("mm10", "hg19"))
    with pytest.raises(InvalidArgument):
        TenxH5Matrix(path)
    with pytest.raises(InvalidArgument):
        TenxH5Matrix(path, genome="GRCh38")
    with TenxH5Matrix(path, genome="hg19") as matrix:
        assert matrix.genome == "hg19"
        assert matrix.shape == counts.shape


def test_barcodes_to_col_data():
    col_data = barcodes_to_col_data(["AAAC-1", "GGGT-12"])
    assert col_data["Library"].tolist() == [1, 12]
    assert col_data["Library"].dtype == np.int64
    col_data = barcodes_to_col_data(["AAAC", "GGGT-2"])
    assert np.isnan(col_data["Library"].iloc[0])
    assert col_data["Sequence"].tolist() == ["AAAC", "GGGT"]


def test_in_memory_matrix(counts):
    matrix = InMemoryMatrix(counts)
    assert matrix.shape == counts.shape
    np.testing.assert_array_equal(matrix.read_block(2, 9), counts[:, 2:9])
    assert matrix.row_data().index[0] == "gene_0"
    assert matrix.col_data().index[-1] == "cell_36"
    with pytest.raises(InvalidArgument):
        matrix.read_block(0, 100)
    with pytest.raises(InvalidArgument):
        InMemoryMatrix(np.arange(5))


def test_missing_dataset_while_reading(tmp_path, counts, write_tenx_h5):
    path = write_tenx_h5(tmp_path / "broken.h5", counts)
    with h5py.File(path, "r+") as f:
        del f["mm10"]["indices"]
    with TenxH5Matrix(path) as matrix:
        assert matrix.shape == counts.shape
        with pytest.raises(BlockReadError):
            matrix.read_block(0, 5)
