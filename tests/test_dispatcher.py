import json
import anyio
from types import SimpleNamespace
import httpx
import pytest
from lenny_listens.errors import ConfigurationError, MissingResultError, UpstreamError
from lenny_listens.models import GenerationResult, IntakeRecord
from lenny_listens.services.dispatcher import (
    AgentStrategy, DelegateStrategy, DirectStrategy, Dispatcher, StreamStrategy,
    build_strategy, extract_from_text, parse_event_frame, result_from_dict, scan_event_frames)

INTAKE = IntakeRecord(conversation_id="c1", company_domain="acme.io", problem_to_solve="too slow")

def mcp_frame(payload):
    return "data: " + json.dumps(payload)

def nested_frame(data):
    return mcp_frame({"jsonrpc": "2.0", "id": 1,
                      "result": {"content": [{"type": "text", "text": json.dumps(data)}]}})

# ---------- event frames ----------
def test_parse_event_frame_markers_and_garbage():
    assert parse_event_frame("event: message") is None
    assert parse_event_frame("") is None
    assert parse_event_frame("data: {not json") is None
    assert parse_event_frame('data: {"a": 1}') == {"a": 1}
    assert parse_event_frame('{"a": 1}') == {"a": 1}

def test_scan_picks_nested_text_from_third_frame():
    lines = [
        "event: message",
        mcp_frame({"jsonrpc": "2.0", "method": "notifications/progress", "params": {"progress": 1}}),
        "data: {broken",
        nested_frame({"perspective_id": "abc123def456abc123def456",
                      "preview_url": "https://pv.getperspective.ai/share/x?mode=preview",
                      "share_url": "https://getperspective.ai/share/x"}),
    ]
    result = scan_event_frames(lines)
    assert result.perspective_id == "abc123def456abc123def456"
    assert result.preview_url == "https://pv.getperspective.ai/share/x?mode=preview"
    assert result.share_url == "https://getperspective.ai/share/x"

def test_scan_first_complete_frame_wins():
    lines = [
        mcp_frame({"perspective_id": "first", "preview_url": "https://pv/1"}),
        mcp_frame({"result": {"id": "second", "preview_url": "https://pv/2"}}),
    ]
    assert scan_event_frames(lines).perspective_id == "first"

def test_scan_result_wrapper_and_id_alias():
    result = scan_event_frames([mcp_frame({"result": {"id": "p9", "preview_url": "https://pv/9"}})])
    assert result == GenerationResult(perspective_id="p9", preview_url="https://pv/9")

def test_scan_without_result_raises():
    with pytest.raises(MissingResultError):
        scan_event_frames([mcp_frame({"result": {"content": [{"type": "text", "text": "Workspace not found"}]}}),
                           mcp_frame({"preview_url": "https://pv/only"})])

def test_scan_reports_rpc_error():
    with pytest.raises(MissingResultError, match="invalid token"):
        scan_event_frames([mcp_frame({"jsonrpc": "2.0", "error": {"code": -32000, "message": "invalid token"}})])

# ---------- free text ----------
def test_extract_from_text():
    text = ("Done! Preview it at https://pv.getperspective.ai/share/k2?mode=preview and share "
            "https://getperspective.ai/share/k2. Perspective ID: 0123456789abcdef01234567")
    result = extract_from_text(text, "pv.getperspective.ai", "getperspective.ai")
    assert result.preview_url == "https://pv.getperspective.ai/share/k2?mode=preview"
    assert result.share_url == "https://getperspective.ai/share/k2"
    assert result.perspective_id == "0123456789abcdef01234567"

def test_extract_from_text_nothing():
    assert extract_from_text("sorry, it failed", "pv.getperspective.ai", "getperspective.ai") == GenerationResult()

# ---------- direct ----------
@pytest.mark.anyio
async def test_direct_strategy_posts_prompt(settings):
    seen = {}

    def handler(request):
        seen["auth"] = request.headers["authorization"]
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"id": "p1", "preview_url": "https://pv/1", "share_url": "https://s/1"})

    strategy = DirectStrategy(settings, httpx.MockTransport(handler))
    result = await Dispatcher(strategy).dispatch(INTAKE)
    assert result == GenerationResult(perspective_id="p1", preview_url="https://pv/1", share_url="https://s/1")
    assert seen["auth"] == "Bearer test-token"
    assert seen["body"]["agentContext"] == "research"
    assert "Lenny Listens: acme" in seen["body"]["userPrompt"]

@pytest.mark.anyio
async def test_direct_strategy_non_success_is_upstream_error(settings):
    strategy = DirectStrategy(settings, httpx.MockTransport(lambda r: httpx.Response(500, text="boom")))
    with pytest.raises(UpstreamError) as err:
        await strategy.generate("prompt", INTAKE)
    assert err.value.status_code == 500
    assert "boom" in str(err.value)

@pytest.mark.anyio
async def test_direct_strategy_transport_failure(settings):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(UpstreamError):
        await DirectStrategy(settings, httpx.MockTransport(handler)).generate("prompt", INTAKE)

# ---------- stream ----------
@pytest.mark.anyio
async def test_stream_strategy_reads_event_stream(settings):
    seen = {}

    def handler(request):
        seen["body"] = json.loads(request.content)
        body = "\n".join([
            "event: message",
            mcp_frame({"jsonrpc": "2.0", "method": "notifications/message"}),
            "",
            nested_frame({"perspective_id": "p2", "preview_url": "https://pv/2", "share_url": "https://s/2"}),
            "",
        ])
        return httpx.Response(200, text=body, headers={"content-type": "text/event-stream"})

    result = await StreamStrategy(settings, httpx.MockTransport(handler)).generate("the prompt", INTAKE)
    assert result.perspective_id == "p2"
    assert seen["body"]["method"] == "tools/call"
    assert seen["body"]["params"]["name"] == "perspective_create"
    assert seen["body"]["params"]["arguments"]["description"] == "the prompt"

@pytest.mark.anyio
async def test_stream_strategy_non_success(settings):
    transport = httpx.MockTransport(lambda r: httpx.Response(401, text="unauthorized"))
    with pytest.raises(UpstreamError, match="401"):
        await StreamStrategy(settings, transport).generate("p", INTAKE)

@pytest.mark.anyio
async def test_stream_strategy_empty_stream(settings):
    transport = httpx.MockTransport(lambda r: httpx.Response(200, text="event: message\n\n"))
    with pytest.raises(MissingResultError):
        await StreamStrategy(settings, transport).generate("p", INTAKE)

@pytest.mark.anyio
async def test_stream_strategy_deadline_is_upstream_error(settings):
    async def handler(request):
        await anyio.sleep(1)
        return httpx.Response(200, text="event: message\n\n")

    slow = settings.model_copy(update={"STREAM_TIMEOUT_SECONDS": 0.05})
    with pytest.raises(UpstreamError, match="exceeded"):
        await StreamStrategy(slow, httpx.MockTransport(handler)).generate("p", INTAKE)

def test_result_values_are_coerced_to_text():
    result = result_from_dict({"id": 12345, "preview_url": "https://pv/1", "share_url": {"bad": 1}})
    assert result == GenerationResult(perspective_id="12345", preview_url="https://pv/1")

# ---------- agent ----------
class FakeCompletions:
    def __init__(self, responses):
        self.responses = list(responses)
        self.requests = []

    async def create(self, **kwargs):
        self.requests.append(kwargs)
        return self.responses.pop(0)

def completion(finish_reason, content=None, tool_calls=None):
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(finish_reason=finish_reason, message=message)])

def tool_call(name="perspective_create", arguments=None):
    return SimpleNamespace(id="call_1", function=SimpleNamespace(
        name=name, arguments=json.dumps(arguments or {"description": "from the model"})))

def fake_openai(responses):
    completions = FakeCompletions(responses)
    return SimpleNamespace(chat=SimpleNamespace(completions=completions)), completions

@pytest.mark.anyio
async def test_agent_strategy_uses_tool_result(settings):
    descriptions = []

    async def tool(description):
        descriptions.append(description)
        return GenerationResult(perspective_id="p3", preview_url="https://pv/3", share_url="https://s/3")

    client, completions = fake_openai([completion("tool_calls", tool_calls=[tool_call()])])
    result = await AgentStrategy(settings, client=client, tool=tool).generate("prompt", INTAKE)
    assert result.perspective_id == "p3"
    assert descriptions == ["from the model"]
    assert completions.requests[0]["tools"][0]["function"]["name"] == "perspective_create"

@pytest.mark.anyio
async def test_agent_strategy_falls_back_to_final_text(settings):
    async def tool(description):
        raise MissingResultError("no data")

    final = ("Here you go: https://pv.getperspective.ai/share/zz?mode=preview / "
             "https://getperspective.ai/share/zz (Perspective ID: aaaaaaaaaaaaaaaaaaaaaaaa)")
    client, _ = fake_openai([completion("tool_calls", tool_calls=[tool_call()]),
                             completion("stop", content=final)])
    result = await AgentStrategy(settings, client=client, tool=tool).generate("prompt", INTAKE)
    assert result.share_url == "https://getperspective.ai/share/zz"
    assert result.perspective_id == "aaaaaaaaaaaaaaaaaaaaaaaa"

@pytest.mark.anyio
async def test_agent_strategy_is_bounded(settings):
    async def tool(description):
        return GenerationResult()

    responses = [completion("tool_calls", tool_calls=[tool_call()]) for _ in range(settings.AGENT_MAX_TURNS)]
    client, completions = fake_openai(responses)
    with pytest.raises(MissingResultError):
        await AgentStrategy(settings, client=client, tool=tool).generate("prompt", INTAKE)
    assert len(completions.requests) == settings.AGENT_MAX_TURNS

# ---------- delegate ----------
@pytest.mark.anyio
async def test_delegate_strategy_posts_intake(settings):
    conf = settings.model_copy(update={"GENERATOR_URL": "http://generator.local/"})
    seen = {}

    def handler(request):
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "perspective_id": "p4",
                                         "preview_url": "https://pv/4", "share_url": "https://s/4"})

    result = await DelegateStrategy(conf, httpx.MockTransport(handler)).generate("prompt", INTAKE)
    assert result.perspective_id == "p4"
    assert seen["url"] == "http://generator.local/generate"
    assert seen["body"]["conversation_id"] == "c1"
    assert seen["body"]["intake"]["company_domain"] == "acme.io"

def test_build_strategy_rejects_unknown(settings):
    with pytest.raises(ConfigurationError):
        build_strategy("carrier-pigeon", settings)
    assert isinstance(build_strategy("stream", settings), StreamStrategy)
