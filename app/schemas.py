from pydantic import BaseModel, Field, ConfigDict
from typing import Optional, List, Dict, Any, Union

# Selection values are category codes/labels, or the "*" wildcard
SelectionArg = Dict[str, Union[List[str], str]]


# ---------------------------------------------------------------------------
# Upstream payloads (PxWebApi v2)
# ---------------------------------------------------------------------------


class Link(BaseModel):
    rel: Optional[str] = None
    hreflang: Optional[str] = None
    href: str

    model_config = ConfigDict(extra="allow")


class TableSummary(BaseModel):
    """One hit from the table search. API v2 no longer sends `type` on every table."""

    id: str
    label: str
    description: str = ""
    updated: Optional[str] = None
    category: Optional[str] = None
    type: Optional[str] = None
    source: Optional[str] = None
    subjectCode: Optional[str] = None
    firstPeriod: Optional[str] = None
    lastPeriod: Optional[str] = None
    discontinued: Optional[bool] = None
    variableNames: List[str] = Field(default_factory=list)
    links: List[Link] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")


class PageInfo(BaseModel):
    pageNumber: int
    pageSize: int
    totalElements: int
    totalPages: int

    model_config = ConfigDict(extra="allow")


class TablesResponse(BaseModel):
    language: Optional[str] = None
    tables: List[TableSummary]
    page: PageInfo
    links: List[Link] = Field(default_factory=list)

    model_config = ConfigDict(extra="allow")


class Language(BaseModel):
    id: str
    label: str


class ConfigResponse(BaseModel):
    apiVersion: str
    languages: List[Language] = Field(default_factory=list)
    defaultLanguage: Optional[str] = None
    maxDataCells: int
    maxCallsPerTimeWindow: int
    timeWindow: int
    license: Optional[str] = None

    model_config = ConfigDict(extra="allow")


class Category(BaseModel):
    index: Optional[Union[Dict[str, int], List[str]]] = None
    label: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(extra="allow")


class Dimension(BaseModel):
    label: Optional[str] = None
    category: Category

    model_config = ConfigDict(extra="allow")


class JsonStatDataset(BaseModel):
    """JSON-stat 2.0 dataset, as returned for both table metadata and table data."""

    version: Optional[str] = None
    class_: Optional[str] = Field(default=None, alias="class")
    label: Optional[str] = None
    source: Optional[str] = None
    updated: Optional[str] = None
    id: List[str]
    size: List[int]
    dimension: Dict[str, Dimension]
    value: Optional[Union[List[Optional[float]], Dict[str, Optional[float]]]] = None

    model_config = ConfigDict(extra="allow", populate_by_name=True)


# ---------------------------------------------------------------------------
# Tool arguments
# ---------------------------------------------------------------------------


class LanguageArg(BaseModel):
    language: str = Field("en", description="Language (en/sv)")

    model_config = ConfigDict(extra="forbid")


class SearchTablesArgs(LanguageArg):
    """Input schema for scb_search_tables."""

    query: Optional[str] = Field(None, description="Search term, e.g. 'population' or 'befolkning'")
    page_size: int = Field(20, ge=1, le=100, description="Results per page (max 100)")
    page_number: int = Field(1, ge=1, description="Page number, starting at 1")
    past_days: Optional[int] = Field(None, ge=1, description="Only tables updated within this many days")
    include_discontinued: bool = Field(False, description="Include discontinued tables")


class TableArgs(LanguageArg):
    table_id: str = Field(..., description="Table ID (e.g., TAB638)")


class TableVariablesArgs(TableArgs):
    variable_name: Optional[str] = Field(None, description="Optional: a single variable, by code or name")


class TableDataArgs(TableArgs):
    selection: Optional[SelectionArg] = Field(
        None, description="Variable selection {variable: [values]}; use '*' for all values of a variable"
    )


class SelectionArgs(TableArgs):
    selection: SelectionArg = Field(..., description="Variable selection {variable: [values]}")


class RegionSearchArgs(LanguageArg):
    query: str = Field(..., min_length=1, description="Region name to search")


class FindRegionCodeArgs(RegionSearchArgs):
    table_id: Optional[str] = Field(None, description="Optional: table whose region variable is searched")


class BrowseFoldersArgs(LanguageArg):
    folder_id: Optional[str] = Field(None, description="Folder ID")


class NoArgs(BaseModel):
    model_config = ConfigDict(extra="forbid")


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class SelectionValidation(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    suggestions: List[str] = Field(default_factory=list)
    translated_selection: Optional[Dict[str, List[str]]] = None
