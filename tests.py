"""Tests for Accept* header negotiation and the negotiation middleware.
"""

import functools
from concurrent.futures import ThreadPoolExecutor
from dataclasses import FrozenInstanceError

import pytest
from hypothesis import given
from hypothesis import strategies as st

from starlette.applications import Starlette
from starlette.datastructures import Headers
from starlette.responses import JSONResponse
from starlette.routing import Route
from starlette.testclient import TestClient

from negotiation_asgi import (
    ContentNegotiator,
    NegotiationMiddleware,
    NoAcceptableRepresentation,
    PriorityTable,
    PriorityTables,
    get_negotiation,
)
from negotiation_asgi.headers import parse_header, parse_quality
from negotiation_asgi.matching import STRATEGIES, find_best_match
from negotiation_asgi.negotiator import Negotiator


@pytest.fixture
def test_client_factory(anyio_backend_name, anyio_backend_options):
    return functools.partial(
        TestClient,
        backend=anyio_backend_name,
        backend_options=anyio_backend_options,
    )


def negotiate(family, header, values, supply_defaults=False):
    table = PriorityTable.from_values(family, values)
    return Negotiator(family).negotiate(header, table, supply_defaults)


# --- Header parsing ---


def test_parse_header_orders_by_quality_then_position():
    entries = parse_header("a;q=0.5, b, c;q=0.5, d")
    assert [entry.value for entry in entries] == ["b", "d", "a", "c"]
    assert [entry.quality for entry in entries] == [1.0, 1.0, 0.5, 0.5]
    assert [entry.position for entry in entries] == [1, 3, 0, 2]


def test_parse_header_keeps_quoted_separators():
    entries = parse_header('text/html;foo="a,b;c";q=0.5, text/plain')
    assert [entry.value for entry in entries] == ["text/plain", "text/html"]
    assert entries[1].parameters == {"foo": "a,b;c"}
    assert entries[1].quality == 0.5


def test_parse_header_keeps_parameters_without_q():
    (entry,) = parse_header(' text/html ; Level = 1 ; q=0.7 ; charset="utf-8" ')
    assert entry.value == "text/html"
    assert entry.quality == 0.7
    assert entry.parameters == {"level": "1", "charset": "utf-8"}


@pytest.mark.parametrize("header", [None, "", " , ,, ", ";q=0.5"])
def test_parse_header_without_entries(header):
    assert parse_header(header) == []


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("1", 1.0),
        ("1.000", 1.0),
        ("1.", 1.0),
        ("0", 0.0),
        ("0.8", 0.8),
        ("0.125", 0.125),
        (" 0.5 ", 0.5),
        # invalid values mean "not acceptable"
        ("1.5", 0.0),
        ("1.001", 0.0),
        ("0.1234", 0.0),
        ("-0.5", 0.0),
        ("foo", 0.0),
        ("", 0.0),
        (".5", 0.0),
    ],
)
def test_parse_quality(raw, expected):
    assert parse_quality(raw) == expected


qvalues = st.one_of(
    st.sampled_from(["0", "1", "0.5", "1.000", "0.001", "2", "-1", "abc", "", "0.5555"]),
    st.text(max_size=8),
)
header_parts = st.builds(
    lambda value, q, extra: f"{value};q={q}{extra}",
    st.text(max_size=12),
    qvalues,
    st.text(max_size=8),
)


@given(st.lists(st.one_of(header_parts, st.text(max_size=20)), max_size=8))
def test_parse_header_never_raises(parts):
    entries = parse_header(",".join(parts))
    assert all(0.0 <= entry.quality <= 1.0 for entry in entries)
    assert all(entry.value for entry in entries)
    qualities = [entry.quality for entry in entries]
    assert qualities == sorted(qualities, reverse=True)


@given(st.text(max_size=40))
def test_negotiation_is_deterministic(header):
    negotiator = ContentNegotiator(
        {
            "accept": ["application/json", "text/html"],
            "accept-language": ["en", "fr"],
            "accept-encoding": ["gzip", "identity"],
            "accept-charset": ["utf-8"],
        },
    )
    headers = {
        "accept": header,
        "accept-language": header,
        "accept-encoding": header,
        "accept-charset": header,
    }
    first = negotiator.negotiate(headers).as_dict()
    assert negotiator.negotiate(headers).as_dict() == first


# --- Priority tables ---


def test_priority_table_from_values():
    table = PriorityTable.from_values("accept", ["text/html; charset=UTF-8", "application/json"])
    assert [entry.value for entry in table] == ["text/html", "application/json"]
    assert [entry.rank for entry in table] == [0, 1]
    assert dict(table.default.parameters) == {"charset": "UTF-8"}


def test_priority_table_drops_parameters_outside_media_types():
    table = PriorityTable.from_values("accept-charset", ["utf-8;q=0.5"])
    assert dict(table.default.parameters) == {}


def test_priority_table_must_not_be_empty():
    with pytest.raises(ValueError):
        PriorityTable.from_values("accept", [])


def test_priority_tables_from_config():
    tables = PriorityTables.from_config(
        {"Accept": ["application/json"], "accept-language": [], "accept-charset": "utf-8"}
    )
    assert tables.get("accept").default.value == "application/json"
    assert tables.get("accept-language") is None
    assert tables.get("accept-encoding") is None
    assert tables.get("accept-charset").default.value == "utf-8"


def test_priority_tables_reject_unknown_headers():
    with pytest.raises(ValueError):
        PriorityTables.from_config({"content-type": ["application/json"]})


def test_priority_tables_are_read_only():
    table = PriorityTable.from_values("accept", ["text/html; charset=utf-8"])
    with pytest.raises(FrozenInstanceError):
        table.entries[0].value = "application/json"
    with pytest.raises(FrozenInstanceError):
        table.entries = ()
    with pytest.raises(TypeError):
        table.entries[0].parameters["charset"] = "latin-1"


def test_priority_tables_copy_their_config():
    languages = ["en", "fr"]
    tables = PriorityTables.from_config({"accept-language": languages})
    languages.insert(0, "de")
    languages.append("it")
    assert [entry.value for entry in tables.get("accept-language")] == ["en", "fr"]


# --- Matching ---


@pytest.mark.parametrize(
    "family, header, values, expected",
    [
        # wildcard picks the server's first choice
        ("accept", "*/*", ["application/json", "text/html"], "application/json"),
        ("accept", "text/html, */*;q=0.1", ["application/json", "text/html"], "text/html"),
        # exact subtype outranks a wildcard at equal quality
        ("accept", "text/*;q=0.9, text/html;q=0.9", ["text/plain", "text/html"], "text/html"),
        ("accept", "text/*", ["application/json", "text/plain"], "text/plain"),
        ("accept", "TEXT/HTML", ["text/html"], "text/html"),
        ("accept", "*", ["application/xml"], "application/xml"),
        # equal quality and specificity: server order decides
        ("accept", "text/html, application/json", ["application/json", "text/html"], "application/json"),
        ("accept", "application/json, text/html", ["text/html", "application/json"], "text/html"),
        # most specific range decides quality of a type
        ("accept", "text/*;q=0.9, text/html;q=0", ["text/html", "text/plain"], "text/plain"),
        ("accept-encoding", "gzip;q=0, *;q=0.5", ["gzip", "deflate"], "deflate"),
        ("accept-encoding", "gzip;q=0.5, deflate", ["gzip", "deflate"], "deflate"),
        ("accept-encoding", "GZIP", ["gzip"], "gzip"),
        ("accept-encoding", "gzip;q=abc, deflate;q=0.1", ["gzip", "deflate"], "deflate"),
        ("accept-charset", "iso-8859-1;q=0.5, utf-8", ["iso-8859-1", "utf-8"], "utf-8"),
        ("accept-charset", "*", ["utf-8", "iso-8859-1"], "utf-8"),
        ("accept-language", "en-GB", ["en-US", "en"], "en"),
        ("accept-language", "de", ["en-US", "de-DE"], "de-DE"),
        ("accept-language", "fr-CH, fr;q=0.9, en;q=0.8", ["en", "fr"], "fr"),
        ("accept-language", "en-us", ["fr", "en-US"], "en-US"),
        ("accept-language", "*;q=0.5, fr", ["en", "fr"], "fr"),
    ],
)
def test_negotiated_value(family, header, values, expected):
    assert negotiate(family, header, values).value == expected


def test_match_result_traces_its_source():
    table = PriorityTable.from_values("accept", ["text/plain", "text/html"])
    result = find_best_match(parse_header("text/*;q=0.9, text/html;q=0.9"), table, STRATEGIES["accept"])
    assert result.priority is table.entries[1]
    assert result.client.value == "text/html"
    assert result.quality == 0.9
    assert result.is_default is False


def test_media_type_parameters():
    values = ["text/html; charset=utf-8", "text/html; charset=iso-8859-1"]
    result = negotiate("accept", "text/html;charset=iso-8859-1", values)
    assert result.value == "text/html"
    assert result.get_parameter("Charset") == "iso-8859-1"
    assert result.has_parameter("charset")
    assert (result.type, result.subtype) == ("text", "html")
    assert str(result) == "text/html; charset=iso-8859-1"


def test_media_type_parameters_must_be_offered():
    with pytest.raises(NoAcceptableRepresentation):
        negotiate("accept", "text/html;level=1", ["text/html"])


def test_language_accessors():
    result = negotiate("accept-language", "en-GB", ["en-GB"])
    assert (result.type, result.subtype) == ("en", "gb")


@pytest.mark.parametrize(
    "header, value, expected",
    [
        ("*", "en-GB", 0),
        ("*", "en", 0),
        ("en", "en-GB", 10),
        ("en-GB", "en", 10),
        ("en-gb", "en-GB", 11),
        ("en-US", "en-GB", None),
        ("fr", "en", None),
    ],
)
def test_language_specificity(header, value, expected):
    (client,) = parse_header(header)
    (entry,) = PriorityTable.from_values("accept-language", [value])
    assert STRATEGIES["accept-language"].specificity(client, entry) == expected


@pytest.mark.parametrize(
    "family, value",
    [
        ("accept-charset", "iso-8859-1"),
        ("accept-encoding", "x-gzip"),
    ],
)
def test_token_accessors(family, value):
    result = negotiate(family, value, [value])
    assert result.family == family
    assert (result.type, result.subtype) == (value, None)

    default = negotiate(family, None, [value], supply_defaults=True)
    assert (default.type, default.subtype) == (value, None)


def test_quoted_media_type_parameters():
    result = negotiate(
        "accept",
        'text/html;foo="a,b", application/json;q=0.1',
        ["application/json", 'text/html;foo="a,b"'],
    )
    assert result.value == "text/html"
    assert result.is_default is False
    assert result.get_parameter("foo") == "a,b"


# --- Negotiator ---


def test_quality_zero_is_never_selected():
    with pytest.raises(NoAcceptableRepresentation) as exc_info:
        negotiate("accept-encoding", "gzip;q=0", ["gzip"])
    assert exc_info.value.family == "accept-encoding"


def test_no_match_falls_back_to_default():
    result = negotiate("accept-language", "de", ["en", "fr"], supply_defaults=True)
    assert result.value == "en"
    assert result.is_default is True
    assert result.client is None


@pytest.mark.parametrize("header", [None, "", " , "])
def test_missing_header(header):
    assert negotiate("accept-language", header, ["en", "fr"], supply_defaults=True).value == "en"
    with pytest.raises(NoAcceptableRepresentation):
        negotiate("accept-language", header, ["en", "fr"], supply_defaults=False)


def test_default_keeps_media_type_parameters():
    result = negotiate("accept", None, ["text/html; charset=utf-8"], supply_defaults=True)
    assert result.get_parameter("charset") == "utf-8"


def test_unconfigured_family_is_not_applicable():
    assert Negotiator("accept").negotiate("foo/bar", None, supply_defaults=False) is None

    negotiator = ContentNegotiator({}, supply_defaults=False)
    result = negotiator.negotiate({"accept": "foo/bar", "accept-language": "xx"})
    assert result.media_type is None
    assert result.language is None
    assert result.as_dict() == {
        "accept": None,
        "accept-language": None,
        "accept-encoding": None,
        "accept-charset": None,
    }


def test_content_negotiator_result():
    negotiator = ContentNegotiator(
        {
            "accept": ["application/json", "text/html"],
            "accept-language": ["en", "fr"],
            "accept-encoding": ["gzip"],
        },
    )
    result = negotiator.negotiate(
        {"Accept": "text/html", "Accept-Language": "fr-CA", "Accept-Charset": "utf-8"}
    )
    assert result.media_type.value == "text/html"
    assert result.get("accept-language").value == "fr"
    assert result.encoding.is_default is True
    assert result.charset is None


def test_repeated_headers_are_combined():
    negotiator = ContentNegotiator({"accept": ["text/plain", "application/json"]}, supply_defaults=False)
    headers = Headers(raw=[(b"accept", b"text/plain;q=0.1"), (b"accept", b"application/json")])
    assert negotiator.negotiate(headers).media_type.value == "application/json"


def test_first_failure_stops_negotiation():
    negotiator = ContentNegotiator(
        {"accept": ["application/json"], "accept-language": ["en"]},
        supply_defaults=False,
    )
    with pytest.raises(NoAcceptableRepresentation) as exc_info:
        negotiator.negotiate({"accept": "text/html", "accept-language": "de"})
    assert exc_info.value.families == ("accept",)


def test_report_all_failures():
    negotiator = ContentNegotiator(
        {"accept": ["application/json"], "accept-language": ["en"], "accept-charset": ["utf-8"]},
        supply_defaults=False,
        report_all_failures=True,
    )
    with pytest.raises(NoAcceptableRepresentation) as exc_info:
        negotiator.negotiate({"accept": "text/html", "accept-language": "de", "accept-charset": "*"})
    assert exc_info.value.families == ("accept", "accept-language")
    assert "accept, accept-language" in str(exc_info.value)


def test_concurrent_negotiation_matches_serial():
    negotiator = ContentNegotiator(
        {
            "accept": ["application/json", "text/html", "text/plain"],
            "accept-language": ["en", "fr", "de-DE"],
            "accept-encoding": ["gzip", "deflate", "identity"],
            "accept-charset": ["utf-8", "iso-8859-1"],
        },
    )
    requests = [
        {"accept": "text/*;q=0.9, text/html", "accept-language": "de"},
        {"accept": "*/*", "accept-encoding": "gzip;q=0, *;q=0.5"},
        {"accept-language": "fr-CA, en;q=0.1", "accept-charset": "iso-8859-1"},
        {"accept": "text/plain", "accept-encoding": "identity"},
    ] * 50

    serial = [negotiator.negotiate(headers).as_dict() for headers in requests]
    with ThreadPoolExecutor(max_workers=8) as executor:
        concurrent = list(executor.map(lambda h: negotiator.negotiate(h).as_dict(), requests))
    assert concurrent == serial


# --- Middleware ---


def negotiation_app(attribute_name="negotiation"):
    def homepage(request):
        result = get_negotiation(request, attribute_name)
        return JSONResponse(result.as_dict() if result is not None else None)

    return Starlette(routes=[Route("/", homepage), Route("/excluded", homepage)])


def test_negotiation_middleware(test_client_factory):
    app = negotiation_app()
    app.add_middleware(
        NegotiationMiddleware,
        priorities={
            "accept": ["application/json", "text/html; charset=utf-8"],
            "accept-language": ["en", "de"],
        },
    )

    client = test_client_factory(app)
    response = client.get(
        "/", headers={"accept": "text/html", "accept-language": "de-AT, en;q=0.5"}
    )
    assert response.status_code == 200
    assert response.json() == {
        "accept": "text/html; charset=utf-8",
        "accept-language": "de",
        "accept-encoding": None,
        "accept-charset": None,
    }


def test_negotiation_middleware_supplies_defaults(test_client_factory):
    app = negotiation_app()
    app.add_middleware(NegotiationMiddleware, priorities={"accept-charset": ["utf-8"]})

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-charset": "iso-8859-1"})
    assert response.status_code == 200
    assert response.json()["accept-charset"] == "utf-8"


def test_not_acceptable(test_client_factory):
    app = negotiation_app()
    app.add_middleware(
        NegotiationMiddleware,
        priorities={"accept": ["application/json"]},
        supply_defaults=False,
    )

    client = test_client_factory(app)
    response = client.get("/", headers={"accept": "text/html"})
    assert response.status_code == 406
    assert response.content == b""


def test_not_acceptable_for_missing_header(test_client_factory):
    app = negotiation_app()
    app.add_middleware(
        NegotiationMiddleware,
        priorities={"accept-language": ["en"]},
        supply_defaults=False,
    )

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-language": ""})
    assert response.status_code == 406


def test_custom_attribute_name(test_client_factory):
    app = negotiation_app(attribute_name="conneg")
    app.add_middleware(
        NegotiationMiddleware,
        priorities={"accept-encoding": ["br", "gzip"]},
        attribute_name="conneg",
    )

    client = test_client_factory(app)
    response = client.get("/", headers={"accept-encoding": "gzip, br;q=0.5"})
    assert response.status_code == 200
    assert response.json()["accept-encoding"] == "gzip"


def test_excluded_handlers(test_client_factory):
    app = negotiation_app()
    app.add_middleware(
        NegotiationMiddleware,
        priorities={"accept": ["application/json"]},
        supply_defaults=False,
        excluded_handlers=["/excluded"],
    )

    client = test_client_factory(app)
    response = client.get("/excluded", headers={"accept": "text/html"})
    assert response.status_code == 200
    assert response.json() is None

    response = client.get("/", headers={"accept": "text/html"})
    assert response.status_code == 406


def test_lifespan_passes_through(test_client_factory):
    app = negotiation_app()
    app.add_middleware(
        NegotiationMiddleware,
        priorities={"accept": ["application/json"]},
        supply_defaults=False,
    )

    with test_client_factory(app) as client:
        response = client.get("/", headers={"accept": "application/*"})
    assert response.status_code == 200
    assert response.json()["accept"] == "application/json"


def test_invalid_priorities_fail_at_startup():
    with pytest.raises(ValueError):
        NegotiationMiddleware(negotiation_app(), priorities={"accept-ranges": ["bytes"]})
