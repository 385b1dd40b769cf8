"""
Unit tests for agents/PoiAgent.py

Tests cover:
- parse_lng_lat / to_candidate mapping
- AmapClient error classification (mocked requests)
- PoiCollector keyword loop, de-duplication, cap and ProviderResult outcomes
"""
from unittest.mock import MagicMock, patch

import pytest
import requests

from agents import PoiAgent
from agents.PoiAgent import (
    AmapClient,
    PoiCollector,
    ProviderError,
    ProviderResult,
    collect_poi_candidates,
    parse_lng_lat,
    to_candidate,
)


def _poi(i, name=None, **extra):
    return {"id": f"B{i:03d}", "name": name or f"Place {i}", "type": "风景名胜",
            "address": f"{i} Road", "location": f"104.0{i % 10},30.6{i % 10}", **extra}


def _response(payload, status=200):
    resp = MagicMock()
    resp.status_code = status
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(f"{status}")
    return resp


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

class TestParseLngLat:
    def test_valid(self):
        coords = parse_lng_lat("104.06,30.67")
        assert coords.lat == 30.67
        assert coords.lng == 104.06

    @pytest.mark.parametrize("raw", [None, "", [], "104.06", "a,b", "nan,30", "1,2,3"])
    def test_invalid(self, raw):
        assert parse_lng_lat(raw) is None


class TestToCandidate:
    def test_maps_fields(self):
        c = to_candidate(_poi(1))
        assert c.poi_id == "B001"
        assert c.name == "Place 1"
        assert c.category == "风景名胜"
        assert c.address == "1 Road"
        assert c.source == "amap"
        assert c.location is not None

    def test_empty_list_fields_become_none(self):
        c = to_candidate(_poi(1, address=[], type=[]))
        assert c.address is None
        assert c.category is None

    @pytest.mark.parametrize("raw", [{"id": "", "name": "x"}, {"id": "1", "name": "  "}, "nope", None])
    def test_missing_id_or_name(self, raw):
        assert to_candidate(raw) is None


# ---------------------------------------------------------------------------
# AmapClient
# ---------------------------------------------------------------------------

class TestAmapClient:
    def test_unconfigured(self):
        client = AmapClient()
        assert client.configured is False
        with pytest.raises(ProviderError) as exc:
            client.place_text("Chengdu 博物馆")
        assert exc.value.kind == "unconfigured"

    def test_reads_key_from_env(self, monkeypatch):
        monkeypatch.setenv("AMAP_WEB_KEY", "k2")
        assert AmapClient().key == "k2"

    @patch("agents.PoiAgent.requests.get")
    def test_place_text_params(self, mock_get):
        mock_get.return_value = _response({"status": "1", "pois": [_poi(1)]})
        pois = AmapClient(key="k").place_text("Chengdu 博物馆", "028")
        assert pois == [_poi(1)]
        params = mock_get.call_args.kwargs["params"]
        assert params["key"] == "k"
        assert params["city"] == "028"
        assert params["citylimit"] == "true"
        assert params["extensions"] == "all"
        assert params["offset"] == "20"
        assert params["page"] == "1"

    @patch("agents.PoiAgent.requests.get")
    def test_transport_error_is_unavailable(self, mock_get):
        mock_get.side_effect = requests.ConnectionError("down")
        with pytest.raises(ProviderError) as exc:
            AmapClient(key="k").place_text("x")
        assert exc.value.kind == "unavailable"

    @patch("agents.PoiAgent.requests.get")
    def test_http_error_is_unavailable(self, mock_get):
        mock_get.return_value = _response({}, status=500)
        with pytest.raises(ProviderError) as exc:
            AmapClient(key="k").geocode("Chengdu")
        assert exc.value.kind == "unavailable"

    @patch("agents.PoiAgent.requests.get")
    def test_status_zero_is_unavailable(self, mock_get):
        mock_get.return_value = _response({"status": "0", "info": "INVALID_USER_KEY"})
        with pytest.raises(ProviderError) as exc:
            AmapClient(key="k").place_text("x")
        assert exc.value.kind == "unavailable"
        assert "INVALID_USER_KEY" in str(exc.value)

    @patch("agents.PoiAgent.requests.get")
    def test_invalid_json_is_malformed(self, mock_get):
        resp = _response(None)
        resp.json.side_effect = ValueError("no json")
        mock_get.return_value = resp
        with pytest.raises(ProviderError) as exc:
            AmapClient(key="k").place_text("x")
        assert exc.value.kind == "malformed"

    @patch("agents.PoiAgent.requests.get")
    def test_results_are_cached(self, mock_get, cache):
        mock_get.return_value = _response({"status": "1", "geocodes": [{"citycode": "028"}]})
        client = AmapClient(key="k", cache=cache)
        assert client.geocode("Chengdu") == {"citycode": "028"}
        assert client.geocode("Chengdu") == {"citycode": "028"}
        assert mock_get.call_count == 1


# ---------------------------------------------------------------------------
# PoiCollector
# ---------------------------------------------------------------------------

class TestPoiCollector:
    def _client(self, pages, geocode=None):
        client = MagicMock(spec=AmapClient)
        client.configured = True
        client.geocode.return_value = geocode
        client.place_text.side_effect = pages
        return client

    def test_unconfigured_is_failure(self):
        result = collect_poi_candidates("Chengdu", ["history"])
        assert result.ok is False
        assert result.error.kind == "unconfigured"

    def test_city_scope_and_keyword_order(self):
        client = self._client([[] for _ in range(18)], geocode={"citycode": "028", "city": "成都市"})
        PoiCollector(client=client).collect("Chengdu", ["history", " ", "博物馆"])
        calls = client.place_text.call_args_list
        assert calls[0].args == ("Chengdu history", "028")
        assert calls[1].args == ("Chengdu 博物馆", "028")
        # preferences + baseline, de-duplicated, capped
        assert len(calls) == 16

    def test_geocode_failure_searches_unscoped(self):
        client = self._client([[] for _ in range(18)])
        client.geocode.side_effect = ProviderError("unavailable")
        result = PoiCollector(client=client).collect("Chengdu")
        assert result.ok
        assert client.place_text.call_args_list[0].args[1] is None

    def test_dedupes_by_id(self):
        client = self._client([[_poi(1), _poi(2)], [_poi(2), _poi(3)]] + [[] for _ in range(16)])
        result = PoiCollector(client=client).collect("Chengdu")
        assert [c.poi_id for c in result.value] == ["B001", "B002", "B003"]

    def test_stops_at_cap(self):
        pages = [[_poi(i * 20 + j) for j in range(20)] for i in range(18)]
        client = self._client(pages)
        result = PoiCollector(client=client).collect("Chengdu")
        assert len(result.value) == 90
        assert client.place_text.call_count == 5

    def test_partial_failure_is_success(self):
        pages = [ProviderError("unavailable")] + [[_poi(1)]] + [[] for _ in range(16)]
        client = self._client(pages)
        result = PoiCollector(client=client).collect("Chengdu")
        assert result.ok
        assert [c.poi_id for c in result.value] == ["B001"]

    def test_keyword_failure_is_logged(self, caplog):
        pages = [ProviderError("unavailable", "down")] + [[] for _ in range(17)]
        client = self._client(pages)
        with caplog.at_level("WARNING", logger=PoiAgent.logger.name):
            PoiCollector(client=client).collect("Chengdu")
        assert "AMap search for" in caplog.text

    def test_total_failure_is_error(self):
        client = self._client([ProviderError("unavailable", "down")] * 18)
        result = PoiCollector(client=client).collect("Chengdu")
        assert result.ok is False
        assert result.error.kind == "unavailable"

    def test_provider_result_helpers(self):
        assert ProviderResult.success([1]).ok
        failed = ProviderResult.failure("malformed", "bad body")
        assert not failed.ok
        assert failed.error.kind == "malformed"

    def test_constants(self):
        assert PoiAgent.MAX_CANDIDATES == 90
        assert PoiAgent.MAX_KEYWORDS == 18
