import pytest
from tqdm import tqdm

from tenxbraindata import DownloadError, InvalidArgument, ObjectCache, Resource
from tenxbraindata.cache import md5sum


@pytest.fixture
def source(tmp_path):
    path = tmp_path / "remote" / "matrix.h5"
    path.parent.mkdir()
    path.write_bytes(b"0123456789" * 1000)
    return path


def make_cache(tmp_path, url, md5=None):
    resources = {"toy": Resource(name="toy", url=str(url), filename="matrix.h5", md5=md5)}
    return ObjectCache(tmp_path / "cache", resources)


def test_download_once(tmp_path, source):
    cache = make_cache(tmp_path, source)
    assert not cache.is_cached("toy")
    path = cache.resolve("toy")
    assert path == tmp_path / "cache" / "toy" / "matrix.h5"
    assert path.read_bytes() == source.read_bytes()
    assert cache.is_cached("toy")
    # the source is not needed anymore
    source.unlink()
    assert cache.resolve("toy") == path


def test_file_url(tmp_path, source):
    cache = make_cache(tmp_path, source.as_uri())
    assert cache.resolve("toy").read_bytes() == source.read_bytes()


def test_unreachable_source(tmp_path):
    cache = make_cache(tmp_path, tmp_path / "remote" / "missing.h5")
    with pytest.raises(DownloadError):
        cache.resolve("toy")
    assert not cache.is_cached("toy")
    assert list((tmp_path / "cache" / "toy").iterdir()) == []


def test_checksum(tmp_path, source):
    cache = make_cache(tmp_path, source, md5="0" * 32)
    with pytest.raises(DownloadError):
        cache.resolve("toy")
    assert not cache.is_cached("toy")

    cache = make_cache(tmp_path, source, md5=md5sum(source))
    assert cache.resolve("toy").is_file()


def test_unknown_resource(tmp_path, source):
    cache = make_cache(tmp_path, source)
    with pytest.raises(InvalidArgument):
        cache.resolve("TENxBrainData")


def test_store_and_remove(tmp_path, source):
    cache = make_cache(tmp_path, source)
    cache.resolve("toy")
    # a computed file named like a resource does not collide with its download
    out = cache.store("toy")
    assert out == tmp_path / "cache" / "results" / "toy"
    out.write_bytes(b"result")
    assert cache.resolve("toy").read_bytes() == source.read_bytes()

    cache.remove("toy")
    assert not cache.is_cached("toy")
    assert not out.exists()

    summary = cache.store("toy_summary.h5ad")
    summary.write_bytes(b"result")
    cache.remove("toy_summary.h5ad")
    assert not summary.exists()


def test_store_invalid_name(tmp_path, source):
    cache = make_cache(tmp_path, source)
    for name in ["", ".hidden", "a/b"]:
        with pytest.raises(InvalidArgument):
            cache.store(name)
    with pytest.raises(InvalidArgument):
        ObjectCache(tmp_path, {"results": Resource("results", str(source), "x.h5")})


def test_interrupted_download_leaves_nothing(tmp_path, source, monkeypatch):
    cache = make_cache(tmp_path, source)

    def interrupt(self, n):
        raise KeyboardInterrupt

    monkeypatch.setattr(tqdm, "update", interrupt)
    with pytest.raises(KeyboardInterrupt):
        cache.resolve("toy")
    assert not cache.is_cached("toy")
    assert list((tmp_path / "cache" / "toy").iterdir()) == []


def test_default_datasets(tmp_path):
    cache = ObjectCache(tmp_path)
    assert set(cache.resources) == {"TENxBrainData", "TENxBrainData20k"}
    assert cache.local_path("TENxBrainData").name == (
        "1M_neurons_filtered_gene_bc_matrices_h5.h5"
    )
