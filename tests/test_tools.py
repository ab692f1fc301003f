import json

import httpx
import pytest

from app.tools import TOOL_MAP, TOOLS, call_tool, run_tool
from app.errors import InvalidArguments, SelectionInvalid
from conftest import API_CONFIG, POPULATION_METADATA, TABLES_PAGE, Upstream, make_dataset


METADATA_ROUTE = ("GET", "/tables/TAB638/metadata")
DATA_ROUTE = ("GET", "/tables/TAB638/data")


def payload_of(result):
    """Decode the JSON text content of a tool result."""
    assert len(result["content"]) == 1
    assert result["content"][0]["type"] == "text"
    return json.loads(result["content"][0]["text"])


def test_tool_registry():
    names = [tool["name"] for tool in TOOLS]
    assert names == [
        "scb_get_api_status",
        "scb_search_tables",
        "scb_get_table_info",
        "scb_get_table_data",
        "scb_check_usage",
        "scb_search_regions",
        "scb_find_region_code",
        "scb_get_table_variables",
        "scb_test_selection",
        "scb_preview_data",
        "scb_browse_folders",
    ]
    assert set(TOOL_MAP) == set(names)

    schemas = {tool["name"]: tool["inputSchema"] for tool in TOOLS}
    assert schemas["scb_get_table_data"]["required"] == ["table_id"]
    assert "selection" in schemas["scb_test_selection"]["required"]
    assert schemas["scb_search_tables"]["properties"]["page_size"]["maximum"] == 100


@pytest.mark.asyncio
async def test_check_usage_makes_no_request():
    upstream = Upstream()
    client = upstream.client()

    result = await call_tool(client, "scb_check_usage", {})

    usage = payload_of(result)
    assert "isError" not in result
    assert usage["calls_made"] == 0
    assert usage["calls_remaining"] == usage["max_calls"]
    assert upstream.requests == []
    await client.close()


@pytest.mark.asyncio
async def test_get_api_status():
    client = Upstream().client()

    status = await run_tool(client, "scb_get_api_status", {})

    assert status["api_version"] == "2.0.0"
    assert status["languages"] == ["sv", "en"]
    assert status["max_data_cells"] == 150000
    assert status["rate_limit"]["max_calls"] == 30
    assert status["rate_limit"]["remaining"] == 28
    await client.close()


@pytest.mark.asyncio
async def test_search_tables():
    upstream = Upstream({("GET", "/tables"): TABLES_PAGE})
    client = upstream.client()

    result = await run_tool(client, "scb_search_tables", {"query": "  population ", "page_size": 5})

    assert result["tables"][0]["id"] == "TAB638"
    assert result["tables"][0]["variables"][0] == "region"
    assert result["page"]["total_results"] == 1
    assert upstream.requests[0].url.params["query"] == "population"
    assert upstream.requests[0].url.params["pageSize"] == "5"
    await client.close()


@pytest.mark.asyncio
async def test_get_table_info():
    client = Upstream({METADATA_ROUTE: POPULATION_METADATA}).client()

    info = await run_tool(client, "scb_get_table_info", {"table_id": "TAB638"})

    assert info["total_cells"] == 24
    assert [v["variable_code"] for v in info["variables"]] == ["Region", "Kon", "ContentsCode", "Tid"]
    region = info["variables"][0]
    assert region["total_values"] == 4
    assert region["sample_values"][0] == {"code": "00", "label": "Sweden"}
    await client.close()


@pytest.mark.asyncio
async def test_get_table_data_translates_selection():
    upstream = Upstream(
        {
            METADATA_ROUTE: POPULATION_METADATA,
            DATA_ROUTE: make_dataset(["0180", "1480"], ["2"], ["2023"], [500000, 300000]),
        }
    )
    client = upstream.client()

    result = await run_tool(
        client,
        "scb_get_table_data",
        {"table_id": "TAB638", "selection": {"region": ["Stockholm", "Göteborg"], "kön": "women", "Tid": ["2023"]}},
    )

    assert result["query"]["table_id"] == "TAB638"
    assert result["query"]["translated_selection"] == {"Region": ["0180", "1480"], "Kon": ["2"], "Tid": ["2023"]}
    assert [(r["region"], r["sex"], r["value"]) for r in result["data"]] == [
        ("Stockholm", "women", 500000),
        ("Göteborg", "women", 300000),
    ]
    data_request = upstream.requests[-1]
    assert data_request.url.params["valueCodes[Region]"] == "0180,1480"
    assert data_request.url.params["valueCodes[Kon]"] == "2"
    await client.close()


@pytest.mark.asyncio
async def test_get_table_data_rejects_invalid_selection_before_fetch():
    upstream = Upstream({METADATA_ROUTE: POPULATION_METADATA, DATA_ROUTE: make_dataset(["00"], ["1"], ["2023"], [1])})
    client = upstream.client()

    result = await call_tool(client, "scb_get_table_data", {"table_id": "TAB638", "selection": {"Region": ["Stokholm"]}})

    assert result["isError"] is True
    error = payload_of(result)
    assert error["tool"] == "scb_get_table_data"
    assert error["error"]["kind"] == "SelectionInvalid"
    assert "Did you mean '0180' (Stockholm) for variable 'Region'?" in error["error"]["suggestions"]
    assert [request.url.path for request in upstream.requests] == ["/api/v2/tables/TAB638/metadata"]
    await client.close()


@pytest.mark.asyncio
async def test_search_regions():
    client = Upstream({METADATA_ROUTE: POPULATION_METADATA}).client()

    result = await run_tool(client, "scb_search_regions", {"query": "stockholm"})

    assert result["regions"] == [
        {"code": "0180", "name": "Stockholm", "type": "municipality"},
        {"code": "01", "name": "Stockholm county", "type": "county"},
    ]
    assert result["total_found"] == 2
    await client.close()


@pytest.mark.asyncio
async def test_find_region_code():
    client = Upstream({METADATA_ROUTE: POPULATION_METADATA}).client()

    exact = await run_tool(client, "scb_find_region_code", {"query": "goteborg"})
    assert exact["found"] is True
    assert exact["exact_match"] == {"code": "1480", "name": "Göteborg", "type": "municipality"}

    partial = await run_tool(client, "scb_find_region_code", {"query": "Stock", "table_id": "TAB638"})
    assert partial["found"] is False
    assert [match["code"] for match in partial["possible_matches"]] == ["01", "0180"]

    with pytest.raises(InvalidArguments):
        await run_tool(client, "scb_find_region_code", {"query": "   "})
    await client.close()


@pytest.mark.asyncio
async def test_get_table_variables():
    client = Upstream({METADATA_ROUTE: POPULATION_METADATA}).client()

    result = await run_tool(client, "scb_get_table_variables", {"table_id": "TAB638", "variable_name": "kön"})
    assert [v["variable_code"] for v in result["variables"]] == ["Kon"]
    assert result["variables"][0]["base_name"] == "sex"

    with pytest.raises(SelectionInvalid) as exc_info:
        await run_tool(client, "scb_get_table_variables", {"table_id": "TAB638", "variable_name": "income"})
    assert exc_info.value.errors == ["Unknown variable 'income'"]
    await client.close()


@pytest.mark.asyncio
async def test_test_selection_reports_errors():
    client = Upstream({METADATA_ROUTE: POPULATION_METADATA}).client()

    result = await run_tool(client, "scb_test_selection", {"table_id": "TAB638", "selection": {"municipaliti": ["0180"]}})

    assert result["is_valid"] is False
    assert result["errors"] == ["Unknown variable 'municipaliti'"]
    assert result["suggestions"]
    assert result["translated_selection"] is None
    await client.close()


@pytest.mark.asyncio
async def test_preview_data_narrows_unselected_variables():
    upstream = Upstream(
        {METADATA_ROUTE: POPULATION_METADATA, DATA_ROUTE: make_dataset(["0180"], ["1"], ["2023"], [480000])}
    )
    client = upstream.client()

    result = await run_tool(client, "scb_preview_data", {"table_id": "TAB638", "selection": {"Region": ["0180"]}})

    params = upstream.requests[-1].url.params
    assert params["valueCodes[Region]"] == "0180"
    assert params["valueCodes[Kon]"] == "1"
    assert params["valueCodes[ContentsCode]"] == "BE0101N1"
    assert params["valueCodes[Tid]"] == "2023"
    assert result["preview"]["rows_shown"] == 1
    assert result["data"][0]["value"] == 480000
    await client.close()


@pytest.mark.asyncio
async def test_browse_folders_is_unavailable():
    upstream = Upstream()
    client = upstream.client()

    result = await call_tool(client, "scb_browse_folders", {"folder_id": "BE"})

    assert result["isError"] is True
    assert payload_of(result)["error"]["kind"] == "FeatureUnavailable"
    assert upstream.requests == []
    await client.close()


@pytest.mark.asyncio
async def test_invalid_arguments():
    client = Upstream().client()

    for name, arguments in [
        ("scb_get_table_info", {"table_id": "TAB/638"}),
        ("scb_get_table_info", {"table_id": "TAB638", "unexpected": 1}),
        ("scb_search_tables", {"page_size": 1000}),
        ("scb_get_table_info", {"table_id": "TAB638", "language": "de"}),
        ("scb_no_such_tool", {}),
    ]:
        result = await call_tool(client, name, arguments)
        assert result["isError"] is True
        assert payload_of(result)["error"]["kind"] == "InvalidArguments"
    await client.close()


@pytest.mark.asyncio
async def test_rate_limit_surfaces_as_structured_error():
    upstream = Upstream({METADATA_ROUTE: POPULATION_METADATA}, config={**API_CONFIG, "maxCallsPerTimeWindow": 2})
    client = upstream.client()

    first = await call_tool(client, "scb_get_table_info", {"table_id": "TAB638"})
    second = await call_tool(client, "scb_get_table_info", {"table_id": "TAB638"})

    assert "isError" not in first
    assert second["isError"] is True
    error = payload_of(second)["error"]
    assert error["kind"] == "RateLimitExceeded"
    assert "reset_in_seconds" in error
    assert len(upstream.requests) == 1
    await client.close()


@pytest.mark.asyncio
async def test_upstream_not_found_is_structured():
    upstream = Upstream(routes={("GET", "/tables/TAB9/metadata"): httpx.Response(404, text="Not found")})
    client = upstream.client()

    result = await call_tool(client, "scb_get_table_info", {"table_id": "TAB9"})

    error = payload_of(result)["error"]
    assert error["kind"] == "UpstreamNotFound"
    assert error["http_status"] == 404
    assert error["body"] == "Not found"
    await client.close()
