"""Shared test fixtures: a recording HTTP fake that returns real
``requests.Response`` objects, plus ready-wired pipeline components."""

import json
import random
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

import pytest
import requests  # type: ignore[import-untyped]

from catalog_sync.api_client import ApiClient, ApiSession
from catalog_sync.deferred import DeferredImageProcessor, DeferredImageQueue
from catalog_sync.models import ProductRecord, RawColor
from catalog_sync.transfer import ImageTransfer
from catalog_sync.uploader import ProductUploader

BASE_URL = "https://api.test/v1"
TOKEN = "tok-abcdefghijklmnopqrstuvwxyz"
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"0" * 64


def make_response(
    status: int = 200,
    json_body: Any = None,
    content: Optional[bytes] = None,
    headers: Optional[Dict[str, str]] = None,
) -> requests.Response:
    """Build a real Response without touching the network."""
    resp = requests.Response()
    resp.status_code = status
    resp.encoding = "utf-8"
    if json_body is not None:
        resp._content = json.dumps(json_body).encode("utf-8")
        resp.headers["Content-Type"] = "application/json"
    else:
        resp._content = content if content is not None else b""
    resp.headers.update(headers or {})
    return resp


@dataclass
class Call:
    method: str
    url: str
    data: List[Tuple[str, str]] = field(default_factory=list)
    files: List[Tuple[str, str]] = field(default_factory=list)
    json: Any = None
    params: Any = None
    headers: Dict[str, str] = field(default_factory=dict)

    @property
    def form(self) -> Dict[str, str]:
        return dict(self.data)

    @property
    def file_fields(self) -> List[str]:
        return [name for name, _ in self.files]


class FakeHttp:
    """Stands in for ``requests.Session``.

    Routes match on method and URL suffix. Each route holds a list of
    responses consumed in order; the last one repeats. An exception in the
    list is raised instead of returned.
    """

    def __init__(self):
        self.calls: List[Call] = []
        self._routes: List[Tuple[str, str, List[Any]]] = []

    def add(self, method: str, url_suffix: str, *responses: Any) -> None:
        self._routes.insert(0, (method, url_suffix, list(responses)))

    def add_image(self, url: str, content: bytes = JPEG_BYTES) -> None:
        self.add("GET", url, make_response(200, content=content, headers={"Content-Type": "image/jpeg"}))

    def calls_to(self, method: str, url_part: str = "") -> List[Call]:
        return [c for c in self.calls if c.method == method and url_part in c.url]

    def _dispatch(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        files = kwargs.get("files") or []
        self.calls.append(Call(
            method=method,
            url=url,
            data=list(kwargs.get("data") or []),
            files=[(name, part[0]) for name, part in files],
            json=kwargs.get("json"),
            params=kwargs.get("params"),
            headers=dict(kwargs.get("headers") or {}),
        ))

        path = url.split("?", 1)[0]
        for route_method, suffix, responses in self._routes:
            if route_method == method and path.endswith(suffix):
                result = responses.pop(0) if len(responses) > 1 else responses[0]
                if isinstance(result, Exception):
                    raise result
                return result
        raise AssertionError(f"Unexpected request: {method} {url}")

    def get(self, url: str, **kwargs: Any) -> requests.Response:
        return self._dispatch("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> requests.Response:
        return self._dispatch("POST", url, **kwargs)

    def request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        return self._dispatch(method, url, **kwargs)


@pytest.fixture
def fake_http():
    """FakeHttp with a working login endpoint."""
    http = FakeHttp()
    http.add("POST", "/auth", make_response(200, {"token": TOKEN, "expires_in": 86400}))
    return http


@pytest.fixture
def client(fake_http):
    return ApiClient(
        base_url=BASE_URL,
        username="user",
        password="secret",
        session=ApiSession(),
        http=fake_http,
    )


@pytest.fixture
def staging_dir(tmp_path):
    return tmp_path / "staging"


@pytest.fixture
def transfer(staging_dir, fake_http):
    return ImageTransfer(staging_dir=str(staging_dir), session=fake_http)


@pytest.fixture
def sleeps():
    """Records requested sleeps instead of sleeping."""
    return []


@pytest.fixture
def deferred_queue(client, transfer, sleeps):
    processor = DeferredImageProcessor(client, transfer, sleep=sleeps.append, rng=random.Random(7))
    return DeferredImageQueue(processor)


@pytest.fixture
def uploader(client, transfer, deferred_queue):
    return ProductUploader(client, transfer, deferred=deferred_queue, initial_image_count=2)


@pytest.fixture
def make_product():
    """Factory for valid products; keyword arguments override fields."""

    def _make(reference: str = "SP-100", images: Optional[List[str]] = None, **overrides: Any) -> ProductRecord:
        if images is None:
            images = [f"https://img.test/{reference}/1.jpg"]
        data: Dict[str, Any] = {
            "reference": reference,
            "name": f"Product {reference}",
            "description": "A promotional gift",
            "price": Decimal("12.50"),
            "categories": ["Bags"],
            "colors": [RawColor(name="Blue", kind="hex", code="#0000ff")],
            "images": images,
        }
        data.update(overrides)
        return ProductRecord(**data)

    return _make


@pytest.fixture
def staged_files(staging_dir):
    """Callable listing the files currently in the staging directory."""

    def _list() -> List[str]:
        if not staging_dir.exists():
            return []
        return sorted(p.name for p in staging_dir.iterdir())

    return _list
