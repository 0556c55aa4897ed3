"""Tests for gust.response — the per-request patch log."""

from __future__ import annotations

import pytest

from tests.conftest import FakeRenderer, FakeSession, make_request
from gust._errors import (
    AccumulatorClosed,
    InvalidOption,
    NavigationError,
    TemplateRenderError,
    ValidationFailed,
)
from gust.encoder import KEEPALIVE, decode_stream, event_names
from gust.observability import PatchCollector, PatchEmitted, ResponseFinalized
from gust.patches import PatchKind, PatchMode
from gust.request import RequestScope
from gust.response import PatchBody, PatchResponse, ResponseState

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _body(response: PatchResponse) -> str:
    result = response.to_response()
    assert isinstance(result, PatchBody)
    return result.body


def _renderer() -> FakeRenderer:
    return FakeRenderer(
        {
            "cart.html": "<div id='cart'>{total}</div>",
            "cart.html#total": "<b id='total'>{total}</b>",
            "cart.html#count": "<i id='count'>{count}</i>",
        }
    )


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


class TestOrdering:
    """Operations are delivered in append order."""

    def test_fifo_across_kinds(self, response: PatchResponse) -> None:
        response.state("a", 1).html("#x", "<p/>").dispatch("done")
        assert [op.kind for op in response.operations] == [
            PatchKind.STATE_MERGE,
            PatchKind.HTML_PATCH,
            PatchKind.CUSTOM_EVENT,
        ]
        assert event_names(_body(response)) == ["state-patch", "elements-patch", "event-dispatch"]

    def test_counter_body(self, response: PatchResponse) -> None:
        response.state("count", 0).state("count", 1)
        assert _body(response) == (
            KEEPALIVE
            + 'event: state-patch\ndata: state {"count":0}\n\n'
            + 'event: state-patch\ndata: state {"count":1}\n\n'
        )

    def test_headers(self, response: PatchResponse) -> None:
        result = response.state("a", 1).to_response()
        assert result.status == 200
        assert result.content_type == "text/event-stream"
        assert result.headers["Cache-Control"] == "no-cache"
        assert result.headers["X-Gust-Response"] == "true"

    def test_empty_response_is_valid(self, response: PatchResponse) -> None:
        assert _body(response) == KEEPALIVE

    def test_keepalive_can_be_disabled(self) -> None:
        from gust.config import GustConfig

        response = PatchResponse(config=GustConfig(keepalive=False))
        assert _body(response.state("a", 1)) == 'event: state-patch\ndata: state {"a":1}\n\n'


class TestLifecycle:
    """building -> finalizing -> closed."""

    def test_phases(self, response: PatchResponse) -> None:
        assert response.phase is ResponseState.BUILDING
        response.to_response()
        assert response.phase is ResponseState.CLOSED

    def test_append_after_finalize(self, response: PatchResponse) -> None:
        response.to_response()
        with pytest.raises(AccumulatorClosed, match="closed"):
            response.state("a", 1)

    def test_finalize_twice(self, response: PatchResponse) -> None:
        response.to_response()
        with pytest.raises(AccumulatorClosed):
            response.to_response()

    def test_failed_call_appends_nothing(self, response: PatchResponse) -> None:
        response.state("a", 1)
        with pytest.raises(InvalidOption):
            response.html("#x", "<p/>", mode="sideways")
        assert len(response) == 1

    def test_unserializable_state_appends_nothing(self, response: PatchResponse) -> None:
        from gust._errors import SerializationError

        with pytest.raises(SerializationError):
            response.state("a", object())
        assert len(response) == 0

    def test_request_scope_shares_one_response(self) -> None:
        scope = RequestScope(make_request())
        assert scope.response is scope.response
        assert scope.response.request is scope.request


class TestState:
    """state / forget / messages."""

    def test_state_mapping(self, response: PatchResponse) -> None:
        response.state({"a": 1, "b": {"c": 2}})
        assert response.operations[0].payload == {"a": 1, "b": {"c": 2}}

    def test_only_if_missing(self, response: PatchResponse) -> None:
        response.state("a", 1, only_if_missing=True)
        assert response.operations[0].options == {"only_if_missing": True}

    def test_forget_keys(self, response: PatchResponse) -> None:
        response.forget(["x", "y"])
        (decoded,) = decode_stream(_body(response))
        assert decoded.payload == {"x": None, "y": None}

    def test_forget_single_key(self, response: PatchResponse) -> None:
        response.forget("x")
        assert response.operations[0].payload == {"x": None}

    def test_forget_messages_resets(self, response: PatchResponse) -> None:
        response.forget(["messages", "x"])
        assert response.operations[0].payload == {"messages": {}, "x": None}

    def test_forget_none_is_noop(self, response: PatchResponse) -> None:
        response.forget(None)
        assert len(response) == 0

    def test_messages(self, response: PatchResponse) -> None:
        response.messages({"email": "Required"}).clear_messages()
        assert [op.payload for op in response.operations] == [
            {"messages": {"email": "Required"}},
            {"messages": {}},
        ]

    def test_reject(self, response: PatchResponse) -> None:
        response.reject(ValidationFailed({"email": "Invalid"}))
        assert response.operations[0].payload == {"messages": {"email": "Invalid"}}


class TestElements:
    """html and the mode shortcuts."""

    def test_default_mode_is_morph(self, response: PatchResponse) -> None:
        response.html("#x", "<p>1</p>")
        op = response.operations[0]
        assert op.mode is PatchMode.MORPH
        assert op.selector == "#x"

    def test_selectorless_patch(self, response: PatchResponse) -> None:
        response.html(None, "<p id='a'>1</p>")
        assert response.operations[0].selector is None

    @pytest.mark.parametrize(
        ("method", "mode"),
        [
            ("morph", PatchMode.MORPH),
            ("inner", PatchMode.INNER),
            ("outer", PatchMode.OUTER),
            ("replace", PatchMode.REPLACE),
            ("append", PatchMode.APPEND),
            ("prepend", PatchMode.PREPEND),
            ("before", PatchMode.BEFORE),
            ("after", PatchMode.AFTER),
        ],
    )
    def test_shortcuts(self, response: PatchResponse, method: str, mode: PatchMode) -> None:
        getattr(response, method)("#x", "<p/>", settle=5)
        op = response.operations[0]
        assert op.mode is mode
        assert op.options["settle"] == 5

    def test_shortcut_rejects_mode(self, response: PatchResponse) -> None:
        with pytest.raises(InvalidOption, match="mode"):
            response.append("#x", "<p/>", mode="inner")

    def test_remove(self, response: PatchResponse) -> None:
        response.remove("#gone")
        op = response.operations[0]
        assert op.mode is PatchMode.REMOVE
        assert op.payload == ""

    def test_component(self, response: PatchResponse) -> None:
        response.component("cart", "<div/>", mode="inner")
        op = response.operations[0]
        assert op.selector == '[x-component="cart"]'
        assert op.mode is PatchMode.INNER


class TestTemplates:
    """view / fragment / fragments."""

    def test_view(self, push_request) -> None:
        response = PatchResponse(push_request, renderer=_renderer())
        response.view("cart.html", {"total": 3}, selector="#cart")
        op = response.operations[0]
        assert op.kind is PatchKind.VIEW_RENDER
        assert op.payload == "<div id='cart'>3</div>"
        assert op.source == "cart.html"
        assert op.selector == "#cart"

    def test_fragment(self, push_request) -> None:
        response = PatchResponse(push_request, renderer=_renderer())
        response.fragment("cart.html", "total", {"total": 4})
        op = response.operations[0]
        assert op.kind is PatchKind.FRAGMENT_RENDER
        assert op.payload == "<b id='total'>4</b>"
        assert op.source == "cart.html#total"

    def test_fragments_in_order(self, push_request) -> None:
        response = PatchResponse(push_request, renderer=_renderer())
        response.fragments(
            [
                {"view": "cart.html", "fragment": "total", "data": {"total": 1}},
                {"view": "cart.html", "fragment": "count", "data": {"count": 2}},
            ]
        )
        assert [op.payload for op in response.operations] == [
            "<b id='total'>1</b>",
            "<i id='count'>2</i>",
        ]

    def test_fragments_all_or_nothing(self, push_request) -> None:
        response = PatchResponse(push_request, renderer=_renderer())
        with pytest.raises(TemplateRenderError):
            response.fragments(
                [
                    {"view": "cart.html", "fragment": "total", "data": {"total": 1}},
                    {"view": "cart.html", "fragment": "missing"},
                ]
            )
        assert len(response) == 0

    def test_fragment_spec_needs_names(self, push_request) -> None:
        response = PatchResponse(push_request, renderer=_renderer())
        with pytest.raises(InvalidOption, match="fragment"):
            response.fragments([{"view": "cart.html"}])

    def test_no_renderer(self, response: PatchResponse) -> None:
        with pytest.raises(TemplateRenderError, match="No template renderer"):
            response.view("cart.html")
        assert len(response) == 0


class TestComponents:
    """component_state / component_method."""

    def test_component_state(self, response: PatchResponse) -> None:
        response.component_state("cart", {"open": True})
        assert event_names(_body(response)) == ["component-patch"]

    def test_component_method(self, response: PatchResponse) -> None:
        response.component_method("cart", "refresh", [1])
        (decoded,) = decode_stream(_body(response))
        assert decoded.payload == {"component": "cart", "method": "refresh", "args": [1]}


class TestNavigation:
    """navigate and its variants."""

    def test_navigate(self, response: PatchResponse) -> None:
        response.navigate("/items?page=3")
        op = response.operations[0]
        assert op.kind is PatchKind.NAVIGATE
        assert op.payload == "/items?page=3"
        assert op.options == {"key": "true"}

    def test_query_mapping_targets_current_path(self, response: PatchResponse) -> None:
        response.navigate({"page": 3, "tags": ["a", "b"]}, key="filters")
        assert response.operations[0].payload == "/items?page=3&tags%5B%5D=a&tags%5B%5D=b"

    def test_same_host_absolute_url(self, response: PatchResponse) -> None:
        response.navigate("https://example.com/other")
        assert response.operations[0].payload == "https://example.com/other"

    def test_cross_origin_rejected(self, response: PatchResponse) -> None:
        with pytest.raises(NavigationError, match="current host"):
            response.navigate("https://evil.example/steal")
        assert len(response) == 0

    def test_javascript_url_rejected(self, response: PatchResponse) -> None:
        with pytest.raises(NavigationError, match="scheme"):
            response.navigate("javascript:alert(1)")

    def test_one_navigate_per_response(self, response: PatchResponse) -> None:
        response.navigate("/a")
        with pytest.raises(NavigationError, match="Only one"):
            response.navigate("/b")
        assert len(response) == 1

    def test_variants(self, push_request) -> None:
        cases = [
            ("navigate_merge", ("/a",), {"key": "true", "merge_query": True}),
            ("navigate_clean", ("/a",), {"key": "true", "merge_query": False}),
            ("navigate_replace", ("/a",), {"key": "true", "replace": True}),
            ("navigate_only", ("/a", ["page"]), {"key": "true", "merge_query": True, "only": ["page"]}),
            (
                "navigate_except",
                ("/a", ["sort"]),
                {"key": "true", "merge_query": True, "except_": ["sort"]},
            ),
        ]
        for method, args, options in cases:
            response = PatchResponse(push_request)
            getattr(response, method)(*args)
            assert response.operations[0].options == options, method

    def test_update_queries(self, response: PatchResponse) -> None:
        response.update_queries({"q": "shoes", "page": None})
        op = response.operations[0]
        assert op.payload == "/items?q=shoes"
        assert op.options == {"key": "filters", "merge_query": True, "except_": ["page"]}

    def test_clear_queries(self, response: PatchResponse) -> None:
        response.clear_queries(["page", "sort"])
        op = response.operations[0]
        assert op.payload == "/items"
        assert op.options == {"key": "clear", "merge_query": True, "except_": ["page", "sort"]}


class TestScriptsAndEvents:
    """dispatch / js / reload."""

    def test_dispatch(self, response: PatchResponse) -> None:
        response.dispatch("saved", {"id": 1}, selector=".card")
        op = response.operations[0]
        assert op.payload == {"name": "saved", "detail": {"id": 1}}
        assert op.options["window"] is False

    def test_js(self, response: PatchResponse) -> None:
        response.js("console.log(1)", attributes={"nonce": "n1"})
        (decoded,) = decode_stream(_body(response))
        assert decoded.kind is PatchKind.EXECUTE_SCRIPT
        assert decoded.payload == "console.log(1)"
        assert decoded.options["attributes"] == {"nonce": "n1"}

    def test_reload(self, response: PatchResponse) -> None:
        response.reload()
        assert response.operations[0].payload == "window.location.reload()"


class TestNonPush:
    """Plain browser requests get the web() fallback."""

    def test_mutators_are_noops(self, plain_request) -> None:
        response = PatchResponse(plain_request)
        response.state("a", 1).html("#x", "<p/>").navigate("/a")
        assert len(response) == 0

    def test_empty_fallback(self, plain_request) -> None:
        result = PatchResponse(plain_request).state("a", 1).to_response()
        assert result == PatchBody(status=204)

    def test_fallback_value(self, plain_request) -> None:
        page = PatchBody(status=200, headers={"Content-Type": "text/html"}, body="<html></html>")
        assert PatchResponse(plain_request).web(page).to_response() is page

    def test_fallback_callable(self, plain_request) -> None:
        response = PatchResponse(plain_request).web(lambda: "rendered page")
        assert response.to_response() == "rendered page"

    def test_producer_never_runs(self, plain_request) -> None:
        calls: list[PatchResponse] = []
        result = PatchResponse(plain_request).stream(calls.append).to_response()
        assert result == PatchBody(status=204)
        assert calls == []

    def test_templates_not_rendered(self, plain_request) -> None:
        renderer = _renderer()
        response = PatchResponse(plain_request, renderer=renderer)
        response.view("cart.html", {"total": 1}).fragment("cart.html", "total", {"total": 1})
        response.fragments([{"view": "cart.html", "fragment": "count", "data": {"count": 2}}])
        assert renderer.calls == []
        assert len(response) == 0

    def test_view_without_renderer_does_not_raise(self, plain_request) -> None:
        result = PatchResponse(plain_request).view("cart.html").to_response()
        assert result == PatchBody(status=204)

    def test_view_web_fallback(self, plain_request) -> None:
        response = PatchResponse(plain_request, renderer=_renderer())
        result = response.view("cart.html", {"total": 3}, web=True).to_response()
        assert result == PatchBody(
            status=200,
            headers={"Content-Type": "text/html; charset=utf-8"},
            body="<div id='cart'>3</div>",
        )

    def test_html_web_fallback(self, plain_request) -> None:
        result = PatchResponse(plain_request).html("#x", "<p>hi</p>", web=True).to_response()
        assert result.status == 200
        assert result.body == "<p>hi</p>"
        assert result.content_type == "text/html; charset=utf-8"

    def test_web_flag_still_patches_push_requests(self, push_request) -> None:
        response = PatchResponse(push_request, renderer=_renderer())
        response.html("#x", "<p/>", web=True).view("cart.html", {"total": 1}, web=True)
        assert [op.kind for op in response.operations] == [PatchKind.HTML_PATCH, PatchKind.VIEW_RENDER]
        assert "web" not in response.operations[0].options
        assert isinstance(response.to_response(), PatchBody)

    def test_navigate_ignored(self, plain_request) -> None:
        response = PatchResponse(plain_request)
        response.navigate("/a").navigate("/b").navigate("https://evil.example/")
        assert len(response) == 0


class TestControlFlow:
    """when / unless / when_push / when_navigate."""

    def test_when(self, response: PatchResponse) -> None:
        response.when(True, lambda r: r.state("a", 1), lambda r: r.state("b", 1))
        response.when(lambda r: False, lambda r: r.state("c", 1), lambda r: r.state("d", 1))
        assert [op.payload for op in response.operations] == [{"a": 1}, {"d": 1}]

    def test_unless(self, response: PatchResponse) -> None:
        response.unless(False, lambda r: r.state("a", 1))
        response.unless(lambda r: True, lambda r: r.state("b", 1))
        assert [op.payload for op in response.operations] == [{"a": 1}]

    def test_when_push(self, response: PatchResponse) -> None:
        response.when_push(lambda r: r.state("push", True))
        response.when_not_push(lambda r: r.state("plain", True))
        assert [op.payload for op in response.operations] == [{"push": True}]

    def test_when_navigate(self) -> None:
        request = make_request({"Gust-Navigate": "true", "Gust-Navigate-Key": "filters,sidebar"})
        response = PatchResponse(request)
        response.when_navigate(lambda r: r.state("any", 1))
        response.when_navigate("sidebar", lambda r: r.state("sidebar", 1))
        response.when_navigate("footer", lambda r: r.state("footer", 1), lambda r: r.state("other", 1))
        assert [op.payload for op in response.operations] == [
            {"any": 1},
            {"sidebar": 1},
            {"other": 1},
        ]

    def test_branch_redirect_takes_precedence(self, response: PatchResponse) -> None:
        response.state("a", 1)
        response.when(True, lambda r: r.redirect("/login"))
        body = _body(response)
        ops = decode_stream(body)
        assert [op.kind for op in ops] == [PatchKind.STATE_MERGE, PatchKind.EXECUTE_SCRIPT]
        assert ops[-1].payload == 'window.location.href = "/login"'


class TestFrameOptions:
    """with_event_id / with_retry."""

    def test_event_id_applies_to_later_frames(self, response: PatchResponse) -> None:
        response.state("a", 1).with_event_id("42").state("b", 2)
        first, second = response.frames
        assert not first.startswith("id:")
        assert second.startswith("id: 42\n")

    def test_retry(self, response: PatchResponse) -> None:
        response.with_retry(2000).state("a", 1)
        assert response.frames[0].startswith("retry: 2000\n")

    def test_invalid_values(self, response: PatchResponse) -> None:
        with pytest.raises(InvalidOption):
            response.with_event_id("a\nb")
        with pytest.raises(InvalidOption):
            response.with_retry(-1)


class TestDiagnosticsAndEvents:
    """Pending diagnostics and collector events on finalize."""

    def test_diagnostics_drained_on_finalize(self, response: PatchResponse) -> None:
        response.state("a", 1)
        response.diagnostics.dump({"debug": True})
        ops = decode_stream(_body(response))
        assert ops[-1].kind is PatchKind.EXECUTE_SCRIPT
        assert ops[-1].payload == 'console.log({"debug":true});'

    def test_collector_records_frames(self, push_request, collector: PatchCollector) -> None:
        response = PatchResponse(push_request, collector=collector)
        response.state("a", 1).html("#x", "<p/>").to_response()
        emitted = collector.log.query(event_type=PatchEmitted)
        assert [e.event for e in reversed(emitted)] == ["state-patch", "elements-patch"]
        assert all(e.delivery == "buffered" for e in emitted)
        (finalized,) = collector.log.query(event_type=ResponseFinalized)
        assert finalized.events == 2
        assert finalized.push is True

    def test_collector_records_fallback(self, plain_request, collector: PatchCollector) -> None:
        PatchResponse(plain_request, collector=collector).to_response()
        (finalized,) = collector.log.query(event_type=ResponseFinalized)
        assert finalized.push is False


class TestRedirectEntry:
    """redirect() from the response."""

    def test_redirect_body(self, response: PatchResponse) -> None:
        session = FakeSession()
        response.session = session
        result = response.redirect("/done").with_flash("status", "saved").to_response()
        assert isinstance(result, PatchBody)
        assert decode_stream(result.body)[-1].payload == 'window.location.href = "/done"'
        assert session.flashed == {"status": "saved"}
        assert response.phase is ResponseState.CLOSED
