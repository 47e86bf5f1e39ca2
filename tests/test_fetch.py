"""
Tests for data_ops.fetch — URL layout, request planning, coalescing,
atomic ingestion and collection/region switches.

No network: every test injects a fake fetcher.

Run with: python -m pytest tests/test_fetch.py
"""

import threading
from concurrent.futures import wait
from unittest import mock

import pytest
import requests

from data_ops.errors import ConfigurationError, FetchError, ParseError
from data_ops.fetch import (
    WIDE_KEY,
    FetchCoordinator,
    Resource,
    extract_columns,
    fetch_reduced_pair,
    http_get,
    resource_url,
)
from data_ops.store import VariableStore

ENDPOINT = "https://data.example.test/scatter/"
DISTRICT_COLUMNS = ["id", "name", "lat", "lon", "w_avg", "b_avg", "sz"]
WIDE = {"districts": DISTRICT_COLUMNS}

DISTRICTS_META = (
    "id,name,lat,lon,w_avg,b_avg,sz\n"
    "D1,Alpha,40.1,-75.2,0.5,-0.3,1200\n"
    "D2,Beta,41.0,-74.9,1.2,0.4,800\n"
    "D3,Gamma,39.5,-76.0,-9999,0.1,300\n"
)


class FakeEndpoint:
    """url -> body callable that records calls and can hold responses."""

    def __init__(self, files, gate=None, url_gates=None):
        self.files = dict(files)
        self.gate = gate
        self.url_gates = dict(url_gates or {})
        self.calls = []
        self._lock = threading.Lock()

    def __call__(self, url):
        with self._lock:
            self.calls.append(url)
        if self.gate is not None:
            self.gate.wait(5)
        if url in self.url_gates:
            self.url_gates[url].wait(5)
        if url not in self.files:
            raise requests.HTTPError(f"404 Client Error for url: {url}")
        return self.files[url]


@pytest.fixture
def store():
    return VariableStore()


def _coordinator(store, files, gate=None, url_gates=None, **kwargs):
    fake = FakeEndpoint(files, gate, url_gates)
    coord = FetchCoordinator(store, ENDPOINT, wide_variables=WIDE, fetcher=fake, **kwargs)
    return coord, fake


# ---------------------------------------------------------------------------
# URL layout
# ---------------------------------------------------------------------------

class TestResourceUrl:
    def test_nested(self):
        assert resource_url(ENDPOINT, "districts", "x") == ENDPOINT + "districts/x.csv"

    def test_flat(self):
        assert resource_url(ENDPOINT, "districts", "x", path_style="flat") == ENDPOINT + "districts-x.csv"

    def test_no_collection(self):
        assert resource_url(ENDPOINT, None, "x") == ENDPOINT + "x.csv"

    def test_adds_trailing_slash(self):
        assert resource_url("https://h/d", "districts", "x") == "https://h/d/districts/x.csv"

    def test_wide(self):
        assert resource_url(ENDPOINT, "districts", WIDE_KEY) == ENDPOINT + "meta/districts.csv"

    def test_region(self):
        assert resource_url(ENDPOINT, "schools", "x", "01") == ENDPOINT + "schools/01/x.csv"
        assert resource_url(ENDPOINT, "schools", WIDE_KEY, "01") == ENDPOINT + "meta/schools/01.csv"

    def test_regional_collection_needs_region(self):
        with pytest.raises(ConfigurationError, match="requires a region"):
            resource_url(ENDPOINT, "schools", "x")


# ---------------------------------------------------------------------------
# Planning
# ---------------------------------------------------------------------------

class TestPlanning:
    def test_requires_endpoint(self, store):
        with pytest.raises(ConfigurationError):
            FetchCoordinator(store, None, wide_variables=WIDE)

    def test_resource_for_wide_member(self, store):
        coord, _ = _coordinator(store, {})
        try:
            res = coord.resource_for("w_avg", "districts")
            assert res == Resource(WIDE_KEY, ENDPOINT + "meta/districts.csv", "wide")
            res = coord.resource_for("other", "districts")
            assert res == Resource("other", ENDPOINT + "districts/other.csv", "narrow")
        finally:
            coord.close()

    def test_id_is_not_a_wide_member(self, store):
        coord, _ = _coordinator(store, {})
        try:
            assert coord.resource_for("id", "districts").schema == "narrow"
        finally:
            coord.close()

    def test_plan_dedups_shared_file(self, store):
        coord, _ = _coordinator(store, {})
        try:
            plan = coord.plan(["w_avg", "b_avg", "other"], "districts")
            assert [r.key for r in plan] == [WIDE_KEY, "other"]
        finally:
            coord.close()

    def test_missing(self, store):
        store.put("districts", "x", {"a": 1.0})
        coord, _ = _coordinator(store, {})
        try:
            assert coord.missing(["x", "y", "y", None], "districts") == ["y"]
        finally:
            coord.close()


# ---------------------------------------------------------------------------
# ensure()
# ---------------------------------------------------------------------------

class TestEnsure:
    def test_wide_pair_is_one_request(self, store):
        files = {ENDPOINT + "meta/districts.csv": DISTRICTS_META}
        coord, fake = _coordinator(store, files)
        try:
            result = coord.ensure(["w_avg", "b_avg"], "districts").result(timeout=5)
        finally:
            coord.close()
        assert fake.calls == [ENDPOINT + "meta/districts.csv"]
        assert set(result) == {"w_avg", "b_avg"}
        # Every declared column is stored, not just the requested ones
        for name in DISTRICT_COLUMNS[1:]:
            assert store.has("districts", name)
        assert store.get("districts", "w_avg").values["D1"] == 0.5

    def test_narrow_variables(self, store):
        files = {
            ENDPOINT + "districts/x.csv": "id,x\na,1\nb,2\n",
            ENDPOINT + "districts/y.csv": "id,y\na,3\n",
        }
        coord, fake = _coordinator(store, files)
        try:
            result = coord.ensure(["x", "y"], "districts").result(timeout=5)
        finally:
            coord.close()
        assert sorted(fake.calls) == sorted(files)
        assert result["x"].values.to_dict() == {"a": 1.0, "b": 2.0}

    def test_cache_hit_is_immediate(self, store):
        store.put("districts", "x", {"a": 1.0})
        store.put("districts", "y", {"a": 2.0})
        coord, fake = _coordinator(store, {})
        try:
            future = coord.ensure(["x", "y"], "districts")
            assert future.done()
            assert set(future.result()) == {"x", "y"}
        finally:
            coord.close()
        assert fake.calls == []

    def test_second_ensure_hits_cache(self, store):
        files = {ENDPOINT + "meta/districts.csv": DISTRICTS_META}
        coord, fake = _coordinator(store, files)
        try:
            coord.ensure(["w_avg", "b_avg"], "districts").result(timeout=5)
            again = coord.ensure(["b_avg", "sz"], "districts")
            assert again.done()
        finally:
            coord.close()
        assert len(fake.calls) == 1

    def test_concurrent_requests_coalesce(self, store):
        gate = threading.Event()
        files = {ENDPOINT + "meta/districts.csv": DISTRICTS_META}
        coord, fake = _coordinator(store, files, gate=gate)
        try:
            first = coord.ensure(["w_avg"], "districts")
            second = coord.ensure(["b_avg"], "districts")
            gate.set()
            r1 = first.result(timeout=5)
            r2 = second.result(timeout=5)
        finally:
            coord.close()
        assert len(fake.calls) == 1
        assert set(r1) == {"w_avg"}
        assert set(r2) == {"b_avg"}

    def test_failure_stores_nothing(self, store):
        files = {ENDPOINT + "districts/x.csv": "id,x\na,1\n"}
        coord, _ = _coordinator(store, files)
        try:
            future = coord.ensure(["x", "y"], "districts")
            wait([future], timeout=5)
        finally:
            coord.close()
        err = future.exception()
        assert isinstance(err, FetchError)
        assert err.resource == ENDPOINT + "districts/y.csv"
        assert isinstance(err.cause, requests.HTTPError)
        assert not store.has("districts", "x")
        assert not store.has("districts", "y")

    def test_parse_error_propagates(self, store):
        files = {
            ENDPOINT + "districts/x.csv": "id,x\na,1\n",
            ENDPOINT + "districts/y.csv": "id,y\na,1\nb,2,3\n",
        }
        coord, _ = _coordinator(store, files)
        try:
            future = coord.ensure(["x", "y"], "districts")
            wait([future], timeout=5)
        finally:
            coord.close()
        assert isinstance(future.exception(), ParseError)
        assert len(store) == 0

    def test_region_switch_refetches(self, store):
        files = {
            ENDPOINT + "schools/01/x.csv": "id,x\ns1,1\n",
            ENDPOINT + "schools/02/x.csv": "id,x\ns2,2\n",
        }
        coord, fake = _coordinator(store, files)
        try:
            coord.ensure(["x"], "schools", "01").result(timeout=5)
            gen = coord.generation
            result = coord.ensure(["x"], "schools", "02").result(timeout=5)
        finally:
            coord.close()
        assert coord.generation == gen + 1
        assert len(fake.calls) == 2
        assert result["x"].values.to_dict() == {"s2": 2.0}

    def test_stale_result_is_discarded(self, store):
        gate = threading.Event()
        files = {
            ENDPOINT + "districts/x.csv": "id,x\na,1\n",
            ENDPOINT + "counties/x.csv": "id,x\nc,1\n",
        }
        coord, _ = _coordinator(store, files, gate=gate)
        try:
            old = coord.ensure(["x"], "districts")
            new = coord.ensure(["x"], "counties")
            gate.set()
            wait([old, new], timeout=5)
        finally:
            coord.close()
        assert old.cancelled()
        assert new.result()["x"].values.to_dict() == {"c": 1.0}
        assert not store.has("districts", "x")

    def test_empty_request(self, store):
        coord, fake = _coordinator(store, {})
        try:
            assert coord.ensure([None, ""], "districts").result() == {}
        finally:
            coord.close()
        assert fake.calls == []


class TestOverlappingRequests:
    X_URL = ENDPOINT + "districts/x.csv"
    Y_URL = ENDPOINT + "districts/y.csv"
    Z_URL = ENDPOINT + "districts/z.csv"
    FILES = {
        X_URL: "id,x\na,1\n",
        Y_URL: "id,y\na,2\n",
        Z_URL: "id,z\na,3\n",
    }

    def test_finished_download_waiting_on_sibling_is_reused(self, store):
        """x is downloaded but not yet stored (y still pending): a new
        request for x must join that download, not repeat it."""
        y_gate = threading.Event()
        coord, fake = _coordinator(store, self.FILES, url_gates={self.Y_URL: y_gate})
        try:
            first = coord.ensure(["x", "y"], "districts")
            wait([coord._inflight[self.X_URL]], timeout=5)
            assert not store.has("districts", "x")

            second = coord.ensure(["x"], "districts")
            r2 = second.result(timeout=5)
            y_gate.set()
            r1 = first.result(timeout=5)
        finally:
            coord.close()
        assert fake.calls.count(self.X_URL) == 1
        assert set(r2) == {"x"}
        assert set(r1) == {"x", "y"}

    def test_partially_overlapping_sets(self, store):
        gate = threading.Event()
        coord, fake = _coordinator(store, self.FILES, gate=gate)
        try:
            first = coord.ensure(["x", "y"], "districts")
            second = coord.ensure(["y", "z"], "districts")
            gate.set()
            r1 = first.result(timeout=5)
            r2 = second.result(timeout=5)
        finally:
            coord.close()
        assert sorted(fake.calls) == sorted(self.FILES)
        assert set(r1) == {"x", "y"}
        assert set(r2) == {"y", "z"}
        assert store.get("districts", "y").values.to_dict() == {"a": 2.0}

    def test_failed_download_is_retried(self, store):
        coord, fake = _coordinator(store, {self.X_URL: "id,x\na,1\n"})
        try:
            failed = coord.ensure(["y"], "districts")
            wait([failed], timeout=5)
            assert isinstance(failed.exception(), FetchError)

            fake.files[self.Y_URL] = "id,y\na,2\n"
            assert set(coord.ensure(["y"], "districts").result(timeout=5)) == {"y"}
        finally:
            coord.close()
        assert fake.calls.count(self.Y_URL) == 2

    def test_close_discards_running_downloads(self, store):
        gate = threading.Event()
        coord, _ = _coordinator(store, self.FILES, gate=gate)
        future = coord.ensure(["x"], "districts")
        coord.close()
        gate.set()
        wait([future], timeout=5)
        assert future.cancelled()
        assert not store.has("districts", "x")


# ---------------------------------------------------------------------------
# HTTP and reduced pairs
# ---------------------------------------------------------------------------

class TestHttpGet:
    def test_returns_body(self):
        resp = mock.Mock(content=b"id,x\n")
        with mock.patch("data_ops.fetch.requests.get", return_value=resp) as get:
            assert http_get("https://h/x.csv", timeout=3) == b"id,x\n"
        get.assert_called_once_with("https://h/x.csv", timeout=3)
        resp.raise_for_status.assert_called_once()

    def test_http_error_raises(self):
        resp = mock.Mock()
        resp.raise_for_status.side_effect = requests.HTTPError("500")
        with mock.patch("data_ops.fetch.requests.get", return_value=resp):
            with pytest.raises(requests.HTTPError):
                http_get("https://h/x.csv")


class TestReducedPair:
    def test_sorted_file_name(self):
        url = ENDPOINT + "schools/reduced/all_avg-frl_pct.csv"
        fake = FakeEndpoint({url: "id,frl_pct,all_avg\ns1,0.3,2.5\n"})
        columns = fetch_reduced_pair(ENDPOINT, "frl_pct", "all_avg", fetcher=fake)
        assert fake.calls == [url]
        assert columns == {"frl_pct": {"s1": 0.3}, "all_avg": {"s1": 2.5}}

    def test_failure_returns_empty(self):
        fake = FakeEndpoint({})
        assert fetch_reduced_pair(ENDPOINT, "a", "b", fetcher=fake) == {}

    def test_extract_columns_skips_empty(self):
        from data_ops.parser import parse_csv
        table = parse_csv("id,a,b\nx,1,\ny,,2\n", "wide")
        assert extract_columns(table) == {"a": {"x": 1.0}, "b": {"y": 2.0}}
