import copy
import sys
from pathlib import Path

import httpx
import pytest

# Add the parent directory to path so we can import the server modules
sys.path.insert(0, str(Path(__file__).parent.parent))

from app.scb_client import SCBClient  # noqa: E402


POPULATION_METADATA = {
    "version": "2.0",
    "class": "dataset",
    "label": "Population by region, sex and year",
    "source": "Statistics Sweden",
    "updated": "2024-02-21T08:00:00Z",
    "id": ["Region", "Kon", "ContentsCode", "Tid"],
    "size": [4, 2, 1, 3],
    "dimension": {
        "Region": {
            "label": "region",
            "category": {
                "index": {"00": 0, "01": 1, "0180": 2, "1480": 3},
                "label": {"00": "Sweden", "01": "Stockholm county", "0180": "Stockholm", "1480": "Göteborg"},
            },
        },
        "Kon": {
            "label": "sex",
            "category": {"index": {"1": 0, "2": 1}, "label": {"1": "men", "2": "women"}},
        },
        "ContentsCode": {
            "label": "observations",
            "category": {"index": {"BE0101N1": 0}, "label": {"BE0101N1": "Population"}},
        },
        "Tid": {
            "label": "year",
            "category": {
                "index": {"2021": 0, "2022": 1, "2023": 2},
                "label": {"2021": "2021", "2022": "2022", "2023": "2023"},
            },
        },
    },
}


def make_dataset(region_codes, sex_codes, years, values, status=None):
    """A data response for a slice of POPULATION_METADATA."""
    dims = POPULATION_METADATA["dimension"]

    def sliced(code, keep):
        labels = dims[code]["category"]["label"]
        return {
            "label": dims[code]["label"],
            "category": {
                "index": {c: i for i, c in enumerate(keep)},
                "label": {c: labels[c] for c in keep},
            },
        }

    dataset = {
        "version": "2.0",
        "class": "dataset",
        "label": POPULATION_METADATA["label"],
        "source": POPULATION_METADATA["source"],
        "updated": POPULATION_METADATA["updated"],
        "id": ["Region", "Kon", "ContentsCode", "Tid"],
        "size": [len(region_codes), len(sex_codes), 1, len(years)],
        "dimension": {
            "Region": sliced("Region", region_codes),
            "Kon": sliced("Kon", sex_codes),
            "ContentsCode": sliced("ContentsCode", ["BE0101N1"]),
            "Tid": sliced("Tid", years),
        },
        "value": values,
    }
    if status is not None:
        dataset["status"] = status
    return dataset


API_CONFIG = {
    "apiVersion": "2.0.0",
    "languages": [{"id": "sv", "label": "Svenska"}, {"id": "en", "label": "English"}],
    "defaultLanguage": "sv",
    "maxDataCells": 150000,
    "maxCallsPerTimeWindow": 30,
    "timeWindow": 10,
    "license": "CC0",
}


@pytest.fixture
def metadata():
    return copy.deepcopy(POPULATION_METADATA)


@pytest.fixture
def api_config():
    return copy.deepcopy(API_CONFIG)


BASE_URL = "https://scb.test/api/v2"

TABLES_PAGE = {
    "language": "en",
    "tables": [
        {
            "id": "TAB638",
            "label": "Population by region, marital status, age and sex. Year 1968 - 2023",
            "updated": "2024-02-21T08:00:00Z",
            "firstPeriod": "1968",
            "lastPeriod": "2023",
            "category": "public",
            "source": "Statistics Sweden",
            "subjectCode": "BE",
            "variableNames": ["region", "marital status", "age", "sex", "year"],
            "links": [{"rel": "self", "href": "https://scb.test/api/v2/tables/TAB638"}],
        }
    ],
    "page": {"pageNumber": 1, "pageSize": 20, "totalElements": 1, "totalPages": 1},
    "links": [],
}


class Upstream:
    """Records requests and answers them from a route table.

    /config calls are kept apart in `config_requests`.
    A route is an httpx.Response, a callable taking the request, or a JSON
    payload that is served with status 200 on every call.
    """

    def __init__(self, routes=None, config=API_CONFIG):
        self.routes = routes or {}
        self.config = config
        self.requests = []
        self.config_requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path.replace("/api/v2", "", 1)
        if path == "/config":
            self.config_requests.append(request)
            if isinstance(self.config, httpx.Response):
                return self.config
            return httpx.Response(200, json=self.config)

        self.requests.append(request)
        route = self.routes.get((request.method, path))
        if route is None:
            return httpx.Response(404, json={"title": "Not Found", "detail": f"No table at {path}"})
        if isinstance(route, httpx.Response):
            return route
        if callable(route):
            return route(request)
        return httpx.Response(200, json=route)

    def client(self, **kwargs) -> SCBClient:
        return SCBClient(base_url=BASE_URL, transport=httpx.MockTransport(self), **kwargs)
