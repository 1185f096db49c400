"""Perspective generation backends.

Each strategy turns a compiled prompt into a GenerationResult. Exactly one is
configured per deployment (GENERATION_STRATEGY); the Dispatcher compiles the
prompt and hands it over. No strategy retries.
"""
import json
import logging
import re
import time
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional

import anyio
import httpx
import openai

from lenny_listens.config import Settings
from lenny_listens.errors import ConfigurationError, MissingResultError, UpstreamError
from lenny_listens.models import GenerationResult, IntakeRecord
from lenny_listens.services.prompts import build_perspective_description

logger = logging.getLogger(__name__)

TOOL_NAME = "perspective_create"

def _scalar(value: Any) -> Optional[str]:
    # upstream ids are sometimes numeric; nested objects are not usable
    if value is None or value == "" or isinstance(value, (dict, list)):
        return None
    return value if isinstance(value, str) else str(value)

def result_from_dict(data: Dict[str, Any]) -> GenerationResult:
    return GenerationResult(
        perspective_id=_scalar(data.get("perspective_id")) or _scalar(data.get("id")),
        preview_url=_scalar(data.get("preview_url")),
        share_url=_scalar(data.get("share_url")),
    )

def _json_object(raw: str) -> Optional[dict]:
    try:
        data = json.loads(raw)
    except (TypeError, ValueError):
        return None
    return data if isinstance(data, dict) else None

# ---------- streamed events ----------
def parse_event_frame(line: str) -> Optional[dict]:
    """JSON payload of one event-stream line, or None for markers and malformed frames."""
    line = line.strip()
    if not line or line.startswith((":", "event:", "id:", "retry:")):
        return None
    if line.startswith("data:"):
        line = line[5:].strip()
    return _json_object(line)

def result_from_payload(payload: dict) -> Optional[GenerationResult]:
    result = payload.get("result")
    if isinstance(result, dict) and isinstance(result.get("content"), list):
        for item in result["content"]:
            if isinstance(item, dict) and item.get("type") == "text":
                data = _json_object(item.get("text"))
                if data is not None:
                    return result_from_dict(data)
                logger.debug("tool content text is not JSON: %.200s", item.get("text"))
        return None
    if payload.get("perspective_id") or payload.get("preview_url"):
        return result_from_dict(payload)
    if isinstance(result, dict):
        return result_from_dict(result)
    return None

class EventScanner:
    """Feeds event-stream lines until one frame yields an id and a preview URL."""

    def __init__(self):
        self.frames = 0
        self.rpc_error: Optional[str] = None

    def feed(self, line: str) -> Optional[GenerationResult]:
        payload = parse_event_frame(line)
        if payload is None:
            return None
        self.frames += 1
        if isinstance(payload.get("error"), dict):
            self.rpc_error = str(payload["error"].get("message") or payload["error"])
        candidate = result_from_payload(payload)
        if candidate and candidate.perspective_id and candidate.preview_url:
            return candidate
        return None

    def missing(self) -> MissingResultError:
        detail = f" ({self.rpc_error})" if self.rpc_error else ""
        return MissingResultError(
            f"Failed to get perspective data from MCP response after {self.frames} frames{detail}")

def scan_event_frames(lines: Iterable[str]) -> GenerationResult:
    scanner = EventScanner()
    for line in lines:
        found = scanner.feed(line)
        if found:
            return found
    raise scanner.missing()

# ---------- free text ----------
_URL_TAIL = r"""[^\s)\]>"'`]+"""
_PERSPECTIVE_ID = re.compile(r"Perspective ID\W*([a-f0-9]{24})\b", re.IGNORECASE)

def extract_from_text(text: str, preview_host: str, share_host: str) -> GenerationResult:
    def url(host):
        m = re.search(rf"https://{re.escape(host)}/share/{_URL_TAIL}", text or "")
        return m.group(0).rstrip(".,;:") if m else None
    pid = _PERSPECTIVE_ID.search(text or "")
    return GenerationResult(perspective_id=pid.group(1) if pid else None,
                            preview_url=url(preview_host), share_url=url(share_host))

# ---------- strategies ----------
class GenerationStrategy:
    name = "base"

    def __init__(self, settings: Settings, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.transport = transport

    def _client(self, timeout: float) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=timeout, transport=self.transport)

    def _auth(self) -> Dict[str, str]:
        return {"Authorization": f"Bearer {self.settings.PERSPECTIVE_API_TOKEN}"}

    async def generate(self, prompt: str, intake: IntakeRecord) -> GenerationResult:
        raise NotImplementedError

class DirectStrategy(GenerationStrategy):
    """One REST call to the Perspective API."""
    name = "direct"

    async def generate(self, prompt, intake):
        url = f"{self.settings.PERSPECTIVE_API_URL.rstrip('/')}/perspective/create"
        body = {"workspaceSlug": self.settings.PERSPECTIVE_WORKSPACE_SLUG,
                "userPrompt": prompt, "agentContext": "research"}
        try:
            async with self._client(self.settings.HTTP_TIMEOUT_SECONDS) as client:
                resp = await client.post(url, json=body, headers=self._auth())
        except httpx.HTTPError as exc:
            raise UpstreamError(f"Perspective API unreachable: {exc}") from exc
        if not resp.is_success:
            raise UpstreamError(f"Perspective API error {resp.status_code}: {resp.text}", resp.status_code)
        data = _json_object(resp.text)
        if data is None:
            raise MissingResultError("Perspective API returned a non-JSON body")
        logger.info("Perspective API response: %s", json.dumps(data)[:500])
        return result_from_dict(data)

class StreamStrategy(GenerationStrategy):
    """JSON-RPC tools/call against the Perspective MCP endpoint, answered as an event stream."""
    name = "stream"

    async def generate(self, prompt, intake):
        return await self.create(prompt)

    async def create(self, description: str) -> GenerationResult:
        body = {
            "jsonrpc": "2.0",
            "id": int(time.time() * 1000),
            "method": "tools/call",
            "params": {"name": TOOL_NAME,
                       "arguments": {"workspace_id": self.settings.PERSPECTIVE_WORKSPACE_ID,
                                     "description": description,
                                     "agent_context": "research"}},
        }
        headers = {**self._auth(), "Accept": "application/json, text/event-stream"}
        scanner = EventScanner()
        try:
            with anyio.fail_after(self.settings.STREAM_TIMEOUT_SECONDS):
                async with self._client(self.settings.STREAM_TIMEOUT_SECONDS) as client:
                    async with client.stream("POST", self.settings.PERSPECTIVE_MCP_URL,
                                             json=body, headers=headers) as resp:
                        if not resp.is_success:
                            text = (await resp.aread()).decode("utf-8", errors="replace")
                            raise UpstreamError(f"MCP call failed {resp.status_code}: {text}", resp.status_code)
                        async for line in resp.aiter_lines():
                            found = scanner.feed(line)
                            if found:
                                return found
        except TimeoutError as exc:
            raise UpstreamError(
                f"MCP stream exceeded {self.settings.STREAM_TIMEOUT_SECONDS:g}s without a result") from exc
        except httpx.HTTPError as exc:
            raise UpstreamError(f"MCP request failed: {exc}") from exc
        raise scanner.missing()

ToolRunner = Callable[[str], Awaitable[GenerationResult]]

AGENT_SYSTEM = (
    "You create customer research interviews on Perspective. "
    f"Call the {TOOL_NAME} tool exactly once, passing the description you are given unchanged. "
    "Then reply with the preview URL, the share URL and the Perspective ID from the tool result."
)

AGENT_TOOLS = [{
    "type": "function",
    "function": {
        "name": TOOL_NAME,
        "description": "Create a Perspective research interview from a description.",
        "parameters": {
            "type": "object",
            "properties": {"description": {"type": "string"}},
            "required": ["description"],
        },
    },
}]

class AgentStrategy(GenerationStrategy):
    """OpenAI tool-calling session that drives the perspective_create tool."""
    name = "agent"

    def __init__(self, settings, transport=None, client=None, tool: Optional[ToolRunner] = None):
        super().__init__(settings, transport)
        self.client = client or openai.AsyncOpenAI(api_key=settings.OPENAI_API_KEY)
        self.tool = tool or StreamStrategy(settings, transport).create

    async def _run_tool(self, call, prompt: str) -> Dict[str, Any]:
        if call.function.name != TOOL_NAME:
            return {"error": f"unknown tool {call.function.name}"}
        args = _json_object(call.function.arguments) or {}
        try:
            result = await self.tool(args.get("description") or prompt)
        except (UpstreamError, MissingResultError) as exc:
            logger.warning("%s tool failed: %s", TOOL_NAME, exc)
            return {"error": str(exc)}
        return result.model_dump(exclude_none=True)

    async def generate(self, prompt, intake):
        messages: list = [
            {"role": "system", "content": AGENT_SYSTEM},
            {"role": "user", "content": f"Create a perspective with this description:\n\n{prompt}"},
        ]
        final_text = ""
        for _ in range(self.settings.AGENT_MAX_TURNS):
            try:
                response = await self.client.chat.completions.create(
                    model=self.settings.OPENAI_MODEL, messages=messages, tools=AGENT_TOOLS)
            except openai.OpenAIError as exc:
                raise UpstreamError(f"agent session failed: {exc}") from exc
            choice = response.choices[0]
            message = choice.message
            if choice.finish_reason == "tool_calls" and message.tool_calls:
                messages.append(message)
                for call in message.tool_calls:
                    payload = await self._run_tool(call, prompt)
                    messages.append({"role": "tool", "tool_call_id": call.id, "content": json.dumps(payload)})
                    if call.function.name == TOOL_NAME and payload.get("preview_url"):
                        return result_from_dict(payload)
                continue
            final_text = message.content or ""
            break
        else:
            logger.warning("agent stopped after %d turns without a final answer", self.settings.AGENT_MAX_TURNS)

        found = extract_from_text(final_text, self.settings.PREVIEW_HOST, self.settings.SHARE_HOST)
        if not (found.preview_url or found.share_url):
            raise MissingResultError("agent session ended without perspective URLs")
        return found

class DelegateStrategy(GenerationStrategy):
    """Hands the intake to a sibling generator service's /generate endpoint."""
    name = "delegate"

    async def generate(self, prompt, intake):
        url = f"{self.settings.GENERATOR_URL.rstrip('/')}/generate"
        body = {"conversation_id": intake.conversation_id, "intake": intake.model_dump(mode="json")}
        try:
            async with self._client(self.settings.STREAM_TIMEOUT_SECONDS) as client:
                resp = await client.post(url, json=body)
        except httpx.HTTPError as exc:
            raise UpstreamError(f"generator service unreachable: {exc}") from exc
        if not resp.is_success:
            raise UpstreamError(f"generator service error {resp.status_code}: {resp.text}", resp.status_code)
        data = _json_object(resp.text)
        if data is None:
            raise MissingResultError("generator service returned a non-JSON body")
        return result_from_dict(data)

STRATEGY_CLASSES = {cls.name: cls for cls in (DirectStrategy, StreamStrategy, AgentStrategy, DelegateStrategy)}

def build_strategy(name: str, settings: Settings, transport=None) -> GenerationStrategy:
    try:
        cls = STRATEGY_CLASSES[name]
    except KeyError:
        raise ConfigurationError(f"unknown generation strategy {name!r}") from None
    return cls(settings, transport)

class Dispatcher:
    def __init__(self, strategy: GenerationStrategy):
        self.strategy = strategy

    async def dispatch(self, intake: IntakeRecord) -> GenerationResult:
        prompt = build_perspective_description(intake)
        logger.info("Dispatching %s via %s strategy: %.200s",
                    intake.conversation_id, self.strategy.name, prompt)
        return await self.strategy.generate(prompt, intake)
