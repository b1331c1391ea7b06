"""
Fake provider API and raw record builders shared by the test suite
"""

import json
import re
from typing import Any, Dict, List, Optional

import httpx

from ingestion.enrichment.orchestrator import CATEGORY_ENDPOINTS

PROVIDER_URL = "https://provider.test"
BEARER_TOKEN = "b" * 64
SECURITY_TOKEN = "s" * 32

ENDPOINT_CATEGORIES = {endpoint: category for category, endpoint in CATEGORY_ENDPOINTS.items()}
CATEGORY_PATH = re.compile(r"^/api/Aircraft/(get\w+)/(\d+)/([^/]+)$")


class FakeProvider:
    """
    In-memory stand-in for the provider API, served through httpx.MockTransport.

    Attributes:
        login_payload: JSON returned by the login endpoint
        pages: Export pages in order; requests past the end get an empty page
        failing_pages: Page numbers answered with HTTP 500
        categories: Category payloads keyed by provider aircraft id
        failing_categories: Categories answered with HTTP 500 for every aircraft
        forbidden_categories: Categories answered with HTTP 401 for every aircraft
        pictures: Pictures payload keyed by provider aircraft id
    """

    def __init__(self):
        self.login_payload: Any = {
            "bearerToken": BEARER_TOKEN,
            "apiToken": SECURITY_TOKEN,
            "expiresIn": 3600,
        }
        self.login_status = 200
        self.pages: List[Any] = []
        self.failing_pages: set = set()
        self.categories: Dict[int, Dict[str, Any]] = {}
        self.failing_categories: set = set()
        self.forbidden_categories: set = set()
        self.pictures: Dict[int, Any] = {}

        self.login_calls = 0
        self.export_requests: List[Dict[str, Any]] = []
        self.category_requests: List[str] = []
        self.requests: List[httpx.Request] = []
        # Called with the page number after each export request is recorded
        self.on_export_page = None

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handle)

    def handle(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if path == "/api/Admin/APILogin":
            self.login_calls += 1
            return httpx.Response(self.login_status, json=self.login_payload)

        if request.headers.get("Authorization") != f"Bearer {BEARER_TOKEN}":
            return httpx.Response(401, json={"error": "unauthorized"})

        if path == f"/api/Aircraft/getBulkAircraftExport/{SECURITY_TOKEN}":
            body = json.loads(request.content)
            self.export_requests.append(body)
            if self.on_export_page is not None:
                self.on_export_page(body["page"])
            page = body["page"]
            if page in self.failing_pages:
                return httpx.Response(500, text="export failed")
            if page > len(self.pages):
                return httpx.Response(200, json=[])
            return httpx.Response(200, json=self.pages[page - 1])

        match = CATEGORY_PATH.match(path)
        if match and match.group(3) == SECURITY_TOKEN:
            endpoint, aircraft_id = match.group(1), int(match.group(2))
            category = ENDPOINT_CATEGORIES[endpoint]
            self.category_requests.append(category)
            if category in self.failing_categories:
                return httpx.Response(500, text="category failed")
            if category in self.forbidden_categories:
                return httpx.Response(401, json={"error": "not licensed"})
            if category == "images":
                payload = self.pictures.get(aircraft_id)
            else:
                payload = self.categories.get(aircraft_id, {}).get(category)
            if payload is None:
                return httpx.Response(404)
            return httpx.Response(200, json=payload)

        return httpx.Response(404)


def make_raw_record(aircraft_id: Optional[int] = 1001, **overrides) -> Dict[str, Any]:
    """Raw export row shaped like the provider's bulk export"""
    record = {
        "aircraftid": aircraft_id,
        "regnbr": f"N{aircraft_id}GA" if aircraft_id is not None else None,
        "sernbr": f"SN-{aircraft_id}" if aircraft_id is not None else None,
        "make": "GULFSTREAM",
        "model": "G650",
        "yearmfr": 2015,
        "yeardlv": 2016,
        "askingprice": "2500000",
        "forsale": "Y",
        "marketstatus": "For Sale",
        "basecity": "Teterboro",
        "basestate": "NJ",
        "basecountry": "United States",
        "baseicaocode": "KTEB",
        "acpassengers": "14",
        "aftt": "4200",
        "enginesn1": "E-1",
        "enginesn2": "E-2",
    }
    record.update(overrides)
    return record


def make_categories(aircraft_id: int) -> Dict[str, Any]:
    return {
        "status": {"forsale": "Y", "marketstatus": "For Sale"},
        "airframe": {"aftt": 4200, "landings": 1800},
        "engines": [{"serial": "E-1"}, {"serial": "E-2"}],
        "apu": {"model": "RE220"},
        "avionics": {"suite": "PlaneView II"},
        "features": ["WiFi", "Satcom", "Enhanced Vision"],
        "additional_equipment": {"items": ["TCAS II"]},
        "interior": {"year": 2019, "passengers": 14},
        "exterior": {"year": 2020},
        "maintenance": {"nextDueDays": 45},
        "relationships": [{"type": "Owner", "company": "Acme Aviation"}],
    }


