import os
import random

import pytest

from catalog_search.logger import NoItemsError
from catalog_search.refresh_core.coordinator import RefreshCoordinator
from catalog_search.search import (
    MAX_LIMIT,
    build_path,
    build_search_query,
    execute_random,
    execute_search,
    get_db_status,
    get_item_type,
)


@pytest.fixture
def coordinator(sample_catalog):
    coord = RefreshCoordinator(sample_catalog.path)
    coord.init()
    yield coord
    coord.close()


def _ids(response):
    return [r.id for r in response.results]


@pytest.mark.unit
def test_item_types():
    assert get_item_type(1) == "file"
    assert get_item_type(200) == "folder"
    assert get_item_type(150) == "folder"
    assert get_item_type(172) == "volume"
    assert get_item_type(42) == "file"


@pytest.mark.unit
def test_build_path_variants():
    assert build_path("x", "a/x", "LBL", "/mnt/d") == "/mnt/d/a/x"
    assert build_path("x", "a/x", "LBL", "/mnt/d/") == "/mnt/d/a/x"
    assert build_path("x", "a/x", "LBL", "D:\\") == "D:\\a/x"
    assert build_path("x", "a/x", "LBL", None) == "[LBL]/a/x"
    assert build_path("x", "a/x", None, None) == "a/x"
    assert build_path("x", None, "LBL", "/mnt/d") == "x"


@pytest.mark.unit
def test_search_sql_is_parameterized():
    sql, params = build_search_query("50% off")
    assert "50" not in sql
    assert params == ["%50\\%%", "%off%"]
    assert sql.endswith("ORDER BY COALESCE(size, 0) DESC, id ASC")


@pytest.mark.integration
def test_config_query_returns_three_entries(coordinator, sample_catalog):
    response = execute_search("config", coordinator=coordinator)
    assert response.total_results_on_this_page == 3
    ids = sample_catalog.ids
    # size descending: root2/config (20), root/config (10), .config folder (5)
    assert _ids(response) == [ids["config2"], ids["config"], ids["dot_config"]]
    assert response.results[0].path == "[BACKUP]/root2/config"
    assert response.results[2].type == "folder"


@pytest.mark.integration
def test_deep_file_path_has_all_ancestors(coordinator):
    response = execute_search("deep_file", coordinator=coordinator)
    assert len(response.results) == 1
    result = response.results[0]
    assert result.name == "deep_file.txt"
    assert result.path == "/mnt/data/root/a/b/c/d/deep_file.txt"
    positions = [result.path.index(f"/{seg}/") for seg in ("a", "b", "c", "d")]
    assert positions == sorted(positions)
    assert result.volume_label == "DATA"
    assert result.size == 7


@pytest.mark.integration
def test_terms_are_anded(coordinator):
    assert len(execute_search("deep txt", coordinator=coordinator).results) == 1
    assert execute_search("deep log", coordinator=coordinator).results == []
    assert len(execute_search('"deep_file.txt"', coordinator=coordinator).results) == 1


@pytest.mark.integration
def test_wildcards_in_terms_are_literal(coordinator):
    assert execute_search("%", coordinator=coordinator).results == []
    underscore = execute_search("_", coordinator=coordinator)
    assert [r.name for r in underscore.results] == ["deep_file.txt"]


@pytest.mark.integration
def test_blank_query_matches_everything(coordinator):
    response = execute_search("   ", limit=MAX_LIMIT, coordinator=coordinator)
    assert len(response.results) == 14
    sizes = [r.size for r in response.results]
    assert sizes == sorted(sizes, reverse=True)


@pytest.mark.integration
def test_pagination_concatenates_to_full_result(coordinator):
    full = _ids(execute_search("", limit=MAX_LIMIT, coordinator=coordinator))
    pages = []
    offset = 0
    while True:
        page = _ids(execute_search("", limit=3, offset=offset, coordinator=coordinator))
        if not page:
            break
        pages.extend(page)
        offset += 3
    assert pages == full
    assert len(set(pages)) == len(pages)


@pytest.mark.integration
def test_limit_and_offset_are_clamped(coordinator):
    assert len(execute_search("", limit=0, coordinator=coordinator).results) == 1
    assert len(execute_search("", limit=-4, coordinator=coordinator).results) == 1
    assert len(execute_search("", limit=10_000, coordinator=coordinator).results) == 14
    first = _ids(execute_search("", limit=2, offset=-10, coordinator=coordinator))
    assert first == _ids(execute_search("", limit=2, offset=0, coordinator=coordinator))


@pytest.mark.integration
def test_response_dict_shape(coordinator):
    payload = execute_search("notes", coordinator=coordinator).to_dict()
    assert set(payload) == {"query", "results", "totalResultsOnThisPage", "executionTimeMs"}
    assert payload["query"] == "notes"
    assert payload["totalResultsOnThisPage"] == 1
    item = payload["results"][0]
    assert set(item) == {
        "id", "name", "path", "size", "dateModified", "dateCreated",
        "type", "volumeLabel", "volumePath",
    }
    assert item["path"] == "/mnt/data/root/notes.log"


@pytest.mark.integration
def test_exclude_txt_removes_txt_but_keeps_log(sample_catalog):
    coord = RefreshCoordinator(sample_catalog.path, ["*.txt"])
    coord.init()
    try:
        assert execute_search(".txt", coordinator=coord).results == []
        assert [r.name for r in execute_search(".log", coordinator=coord).results] == ["notes.log"]
    finally:
        coord.close()


@pytest.mark.integration
def test_random_returns_an_indexed_entry(coordinator):
    rng = random.Random(1234)
    all_ids = set(_ids(execute_search("", limit=MAX_LIMIT, coordinator=coordinator)))
    picks = {execute_random(coordinator=coordinator, rng=rng).id for _ in range(30)}
    assert picks <= all_ids
    assert len(picks) > 1


@pytest.mark.integration
def test_random_on_empty_catalog_raises(catalog):
    catalog.write()
    coord = RefreshCoordinator(catalog.path)
    coord.init()
    try:
        with pytest.raises(NoItemsError, match="No items"):
            execute_random(coordinator=coord)
        assert execute_search("anything", coordinator=coord).results == []
    finally:
        coord.close()


@pytest.mark.integration
def test_db_status(coordinator, sample_catalog):
    status = get_db_status(coordinator=coordinator).to_dict()
    assert status["connected"] is True
    assert status["path"] == str(sample_catalog.path)
    assert status["fileSizeBytes"] == os.stat(sample_catalog.path).st_size
    assert status["lastModifiedISO"] == "2023-11-14T22:13:21.000Z"
    assert status["lastLoadedISO"].endswith("Z")
    assert status["statistics"] == {
        "totalItems": 14,
        "totalFiles": 5,
        "totalFolders": 7,
        "totalVolumes": 2,
        "totalSizeBytes": 45,
    }


@pytest.mark.integration
def test_search_reloads_changed_catalog(coordinator, sample_catalog):
    assert execute_search("fresh", coordinator=coordinator).results == []
    before = coordinator.generation_number
    sample_catalog.file("fresh.txt", sample_catalog.ids["root"], size=1)
    sample_catalog.write()

    response = execute_search("fresh", coordinator=coordinator)
    assert [r.name for r in response.results] == ["fresh.txt"]
    assert coordinator.generation_number == before + 1


@pytest.mark.integration
def test_broken_catalog_keeps_serving_previous_index(coordinator, sample_catalog):
    sample_catalog.path.write_bytes(b"corrupted" * 1000)
    os.utime(sample_catalog.path, ns=(1, 1))

    response = execute_search("config", coordinator=coordinator)
    assert len(response.results) == 3
