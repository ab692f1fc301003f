"""Tool definitions and dispatcher functions."""

import json
import logging
import math
from typing import Any, Awaitable, Callable, Dict, List, Optional, Type

from pydantic import BaseModel, ValidationError

from config_loader import get_config
from security_utils import (
    log_security_event,
    validate_language,
    validate_search_query,
    validate_selection_arg,
    validate_table_id,
)

from .errors import InvalidArguments, SCBError, SelectionInvalid
from .reshaper import transform_to_structured_data
from .schemas import (
    BrowseFoldersArgs,
    FindRegionCodeArgs,
    NoArgs,
    RegionSearchArgs,
    SearchTablesArgs,
    SelectionArgs,
    TableArgs,
    TableDataArgs,
    TableVariablesArgs,
)
from .scb_client import SCBClient
from .translator import (
    category_codes,
    category_labels,
    check_selection,
    closest_matches,
    dimension_base_name,
    normalize_name,
    ordered_dimension_codes,
    translate_variable_name,
)

logger = logging.getLogger(__name__)


def _raise_if_invalid(validation, table_id: str) -> None:
    if not validation.is_valid:
        raise SelectionInvalid(
            f"Selection is not valid for table {table_id}",
            errors=validation.errors,
            suggestions=validation.suggestions,
        )


def _variable_overview(metadata: Dict[str, Any], sample_size: int) -> List[Dict[str, Any]]:
    dimensions = metadata.get("dimension") or {}
    variables = []
    for code in ordered_dimension_codes(metadata):
        labels = category_labels(dimensions[code])
        variables.append(
            {
                "variable_code": code,
                "variable_name": dimensions[code].get("label") or code,
                "base_name": dimension_base_name(code),
                "total_values": len(labels),
                "sample_values": [{"code": c, "label": label} for c, label in list(labels.items())[:sample_size]],
            }
        )
    return variables


def _region_type(code: str) -> str:
    if code == "00":
        return "country"
    if len(code) == 2 and code.isdigit():
        return "county"
    if len(code) == 4 and code.isdigit():
        return "municipality"
    return "other"


async def _region_matches(client: SCBClient, table_id: str, query: str, language: str) -> Dict[str, Any]:
    """Exact and partial matches of `query` among a table's region categories."""
    metadata = await client.get_table_metadata(table_id, language)
    region_code = translate_variable_name("region", metadata)
    dimensions = metadata.get("dimension") or {}
    if region_code not in dimensions:
        raise InvalidArguments(
            f"Table {table_id} has no region variable",
            detail=f"Variables: {', '.join(ordered_dimension_codes(metadata))}",
        )

    wanted = normalize_name(query)
    exact, partial = [], []
    for code, label in category_labels(dimensions[region_code]).items():
        entry = {"code": code, "name": label, "type": _region_type(code)}
        if normalize_name(label) == wanted or normalize_name(code) == wanted:
            exact.append(entry)
        elif wanted in normalize_name(label):
            partial.append(entry)

    return {"variable": region_code, "exact": exact, "partial": partial}


# Tool: API status
async def _get_api_status(client: SCBClient) -> Dict[str, Any]:
    api_config = await client.get_config()
    usage = client.get_usage_info()
    return {
        "api_version": api_config.get("apiVersion"),
        "default_language": api_config.get("defaultLanguage"),
        "languages": [language["id"] for language in api_config.get("languages", [])],
        "max_data_cells": api_config.get("maxDataCells"),
        "license": api_config.get("license"),
        "rate_limit": {
            "max_calls": api_config.get("maxCallsPerTimeWindow"),
            "time_window": api_config.get("timeWindow"),
            "remaining": usage["remaining"],
            "reset_in_seconds": usage["reset_in_seconds"],
        },
    }


# Tool: Search tables
async def _search_tables(
    client: SCBClient,
    query: Optional[str] = None,
    page_size: int = 20,
    page_number: int = 1,
    past_days: Optional[int] = None,
    include_discontinued: bool = False,
    language: str = "en",
) -> Dict[str, Any]:
    result = await client.search_tables(
        query=query,
        past_days=past_days,
        include_discontinued=include_discontinued,
        page_number=page_number,
        page_size=page_size,
        lang=language,
    )
    tables = [
        {
            "id": table["id"],
            "label": table["label"],
            "description": table.get("description", ""),
            "updated": table.get("updated"),
            "first_period": table.get("firstPeriod"),
            "last_period": table.get("lastPeriod"),
            "category": table.get("category"),
            "subject_code": table.get("subjectCode"),
            "source": table.get("source"),
            "variables": table.get("variableNames", []),
            "discontinued": table.get("discontinued"),
        }
        for table in result["tables"]
    ]
    page = result["page"]
    response = {
        "query": query,
        "language": language,
        "tables": tables,
        "page": {
            "page_number": page["pageNumber"],
            "page_size": page["pageSize"],
            "total_results": page["totalElements"],
            "total_pages": page["totalPages"],
        },
    }
    if tables:
        response["next_steps"] = [f"scb_get_table_info(table_id='{tables[0]['id']}') to inspect variables"]
    else:
        response["next_steps"] = ["Try broader terms, or search in Swedish with language='sv'"]
    return response


# Tool: Table metadata
async def _get_table_info(client: SCBClient, table_id: str, language: str = "en") -> Dict[str, Any]:
    metadata = await client.get_table_metadata(table_id, language)
    sizes = metadata.get("size") or []
    return {
        "table_id": table_id,
        "label": metadata.get("label"),
        "source": metadata.get("source"),
        "updated": metadata.get("updated"),
        "total_cells": math.prod(sizes) if sizes else 0,
        "notes": metadata.get("note", []),
        "variables": _variable_overview(metadata, get_config().suggestion_sample_size),
        "next_steps": [
            "scb_test_selection to check a selection before fetching data",
            "scb_get_table_data with {variable_code: [value codes]}, '*' selects all values",
        ],
    }


# Tool: Table data
async def _get_table_data(
    client: SCBClient, table_id: str, selection: Optional[Dict[str, List[str]]] = None, language: str = "en"
) -> Dict[str, Any]:
    translated = None
    if selection:
        validation = await client.validate_selection(table_id, selection, language)
        _raise_if_invalid(validation, table_id)
        translated = validation.translated_selection

    dataset = await client.get_table_data(table_id, translated, language)
    result = transform_to_structured_data(dataset, selection, table_id=table_id)
    result["query"]["translated_selection"] = translated or {}
    return result


# Tool: Usage
async def _check_usage(client: SCBClient) -> Dict[str, Any]:
    usage = client.get_usage_info()
    return {
        "calls_made": usage["request_count"],
        "calls_remaining": usage["remaining"],
        "max_calls": usage["max_calls_per_window"],
        "time_window_seconds": usage["window_duration_seconds"],
        "reset_in_seconds": usage["reset_in_seconds"],
        "window_start": usage["window_start"],
        "limits_source": usage["limits_source"],
    }


# Tool: Region search
async def _search_regions(client: SCBClient, query: str, language: str = "en") -> Dict[str, Any]:
    config = get_config()
    matches = await _region_matches(client, config.region_table_id, query, language)
    regions = (matches["exact"] + matches["partial"])[: config.region_match_limit]
    return {
        "query": query,
        "table_id": config.region_table_id,
        "regions": regions,
        "total_found": len(matches["exact"]) + len(matches["partial"]),
        "usage_tip": f"Use the code in selections, e.g. {{'{matches['variable']}': ['<code>']}}",
    }


# Tool: Exact region code
async def _find_region_code(
    client: SCBClient, query: str, table_id: Optional[str] = None, language: str = "en"
) -> Dict[str, Any]:
    config = get_config()
    table_id = table_id or config.region_table_id
    matches = await _region_matches(client, table_id, query, language)

    if matches["exact"]:
        return {
            "query": query,
            "table_id": table_id,
            "variable": matches["variable"],
            "found": True,
            "exact_match": matches["exact"][0],
            "alternatives": matches["exact"][1:] + matches["partial"][:5],
        }

    return {
        "query": query,
        "table_id": table_id,
        "variable": matches["variable"],
        "found": False,
        "possible_matches": matches["partial"][: config.region_match_limit],
        "suggestion": "No exact match. Pick a code from possible_matches or try scb_search_regions",
    }


# Tool: Table variables
async def _get_table_variables(
    client: SCBClient, table_id: str, variable_name: Optional[str] = None, language: str = "en"
) -> Dict[str, Any]:
    config = get_config()
    metadata = await client.get_table_metadata(table_id, language)
    variables = _variable_overview(metadata, config.variable_sample_size)

    if variable_name:
        code = translate_variable_name(variable_name, metadata)
        variables = [variable for variable in variables if variable["variable_code"] == code]
        if not variables:
            names = {v["variable_code"]: v["variable_name"] for v in _variable_overview(metadata, 0)}
            raise SelectionInvalid(
                f"Table {table_id} has no variable '{variable_name}'",
                errors=[f"Unknown variable '{variable_name}'"],
                suggestions=[f"Did you mean '{match}' ({names[match]})?" for match in closest_matches(variable_name, names)]
                or [f"Available variables: {', '.join(names)}"],
            )

    return {"table_id": table_id, "variables": variables}


# Tool: Selection check
async def _test_selection(
    client: SCBClient, table_id: str, selection: Dict[str, List[str]], language: str = "en"
) -> Dict[str, Any]:
    validation = await client.validate_selection(table_id, selection, language)
    result = {"table_id": table_id, **validation.model_dump()}
    if validation.is_valid:
        result["next_step"] = "Selection is valid, call scb_get_table_data with it"
    return result


# Tool: Data preview
async def _preview_data(
    client: SCBClient, table_id: str, selection: Optional[Dict[str, List[str]]] = None, language: str = "en"
) -> Dict[str, Any]:
    """
    Fetch a bounded slice of a table.

    Variables the caller did not select are narrowed to a single value: the
    latest period for time variables, the first category otherwise.
    """
    config = get_config()
    metadata = await client.get_table_metadata(table_id, language)
    validation = check_selection(metadata, selection or {}, sample_size=config.suggestion_sample_size)
    _raise_if_invalid(validation, table_id)

    preview_selection = dict(validation.translated_selection or {})
    dimensions = metadata.get("dimension") or {}
    for code in ordered_dimension_codes(metadata):
        if code in preview_selection:
            continue
        codes = category_codes(dimensions[code])
        if codes:
            preview_selection[code] = [codes[-1] if dimension_base_name(code) == "period" else codes[0]]

    dataset = await client.get_table_data(table_id, preview_selection, language)
    result = transform_to_structured_data(dataset, selection, table_id=table_id, max_records=config.preview_rows)
    result["query"]["translated_selection"] = preview_selection
    result["preview"] = {
        "rows_shown": len(result["data"]),
        "total_records": result["summary"]["total_records"],
        "note": "Unselected variables were narrowed to one value; use scb_get_table_data for the full slice",
    }
    return result


# Tool: Folder browsing
async def _browse_folders(client: SCBClient, folder_id: Optional[str] = None, language: str = "en") -> Dict[str, Any]:
    return await client.get_navigation(folder_id, language)


ToolHandler = Callable[..., Awaitable[Dict[str, Any]]]

TOOL_DEFINITIONS: Dict[str, Dict[str, Any]] = {
    "scb_get_api_status": {
        "description": "Get API configuration and rate limit information from Statistics Sweden",
        "args": NoArgs,
        "handler": _get_api_status,
    },
    "scb_search_tables": {
        "description": "Search for statistical tables in the SCB database",
        "args": SearchTablesArgs,
        "handler": _search_tables,
    },
    "scb_get_table_info": {
        "description": "Get detailed metadata about a specific table: variables, value counts and sample values",
        "args": TableArgs,
        "handler": _get_table_info,
    },
    "scb_get_table_data": {
        "description": (
            "Get statistical data from a table as flat records. Variable and value names may be codes, "
            "labels or common Swedish/English names; the selection is validated before any data is fetched."
        ),
        "args": TableDataArgs,
        "handler": _get_table_data,
    },
    "scb_check_usage": {
        "description": "Check current API usage and rate limits",
        "args": NoArgs,
        "handler": _check_usage,
    },
    "scb_search_regions": {
        "description": "Search for region codes (country, counties, municipalities) by name",
        "args": RegionSearchArgs,
        "handler": _search_regions,
    },
    "scb_find_region_code": {
        "description": "Find the exact region code for a municipality or county",
        "args": FindRegionCodeArgs,
        "handler": _find_region_code,
    },
    "scb_get_table_variables": {
        "description": "Get available variables and values for a table",
        "args": TableVariablesArgs,
        "handler": _get_table_variables,
    },
    "scb_test_selection": {
        "description": "Test if a data selection is valid and get suggestions for invalid variables or values",
        "args": SelectionArgs,
        "handler": _test_selection,
    },
    "scb_preview_data": {
        "description": "Get a small preview of data from a table",
        "args": TableDataArgs,
        "handler": _preview_data,
    },
    "scb_browse_folders": {
        "description": "Browse database folders (not available in API v2, use scb_search_tables)",
        "args": BrowseFoldersArgs,
        "handler": _browse_folders,
    },
}

TOOLS: List[Dict[str, Any]] = [
    {"name": name, "description": definition["description"], "inputSchema": definition["args"].model_json_schema()}
    for name, definition in TOOL_DEFINITIONS.items()
]

# Mapping tool name -> callable
TOOL_MAP: Dict[str, ToolHandler] = {name: definition["handler"] for name, definition in TOOL_DEFINITIONS.items()}


def _clean_arguments(name: str, args_model: Type[BaseModel], arguments: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    """Schema-check and sanitize tool arguments."""
    try:
        params = args_model.model_validate(arguments or {}).model_dump()
        config = get_config()
        if "table_id" in params and params["table_id"] is not None:
            params["table_id"] = validate_table_id(params["table_id"])
        if "language" in params:
            params["language"] = validate_language(
                params["language"], config.supported_languages, config.default_language
            )
        if "query" in params:
            params["query"] = validate_search_query(params["query"])
            if params["query"] is None and name != "scb_search_tables":
                raise ValueError("Query cannot be empty")
        if params.get("selection") is not None:
            params["selection"] = validate_selection_arg(params["selection"])
    except (ValidationError, ValueError) as e:
        log_security_event("invalid_tool_arguments", {"tool": name, "error": str(e)}, severity="WARNING")
        raise InvalidArguments(f"Invalid arguments for {name}: {e}") from e
    return params


async def run_tool(client: SCBClient, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Validate arguments and run a tool. Failures raise SCBError subclasses."""
    if name not in TOOL_DEFINITIONS:
        raise InvalidArguments(f"Unknown tool {name}", detail=f"Available tools: {', '.join(TOOL_MAP)}")
    params = _clean_arguments(name, TOOL_DEFINITIONS[name]["args"], arguments)
    logger.info("Running tool %s", name)
    return await TOOL_MAP[name](client, **params)


def _text_content(payload: Dict[str, Any]) -> List[Dict[str, Any]]:
    return [{"type": "text", "text": json.dumps(payload, indent=2, ensure_ascii=False, default=str)}]


async def call_tool(client: SCBClient, name: str, arguments: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Run a tool and wrap its result (or its structured error) as MCP text content."""
    try:
        payload = await run_tool(client, name, arguments)
    except SCBError as exc:
        logger.warning("Tool %s failed with %s: %s", name, exc.kind, exc.message)
        return {"isError": True, "content": _text_content({"error": exc.to_dict(), "tool": name})}
    return {"content": _text_content(payload)}
