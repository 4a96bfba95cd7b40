"""
title: Free AI Proxy - an OpenAI compatible proxy with provider fallback
version: 1.0.0
license: AGPL
"""
# -------------------------------------------------------------
import json, time, asyncio, yaml, openai, os, re, sys, aiohttp, ssl, datetime, random, math, uvicorn
from pathlib import Path
from typing import Awaitable, Callable, Dict, List, Literal, Optional, Tuple
from fastapi import FastAPI, Request, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.responses import StreamingResponse, JSONResponse, PlainTextResponse
from pydantic import Field, BaseModel
from pydantic_settings import BaseSettings, SettingsConfigDict
from dotenv import load_dotenv
from loguru import logger

# Load environment variables from .env file
load_dotenv()

VERSION = "1.0.0"

BROWSER_UA = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"

# Fixed creation stamp reported for every model card
MODEL_CREATED = 1686935002

# loguru level names and the uvicorn level each one runs at
UVICORN_LOG_LEVELS = {
    "trace": "trace",
    "debug": "debug",
    "info": "info",
    "success": "info",
    "warning": "warning",
    "error": "error",
    "critical": "critical",
}

# ------------------------------------------------------------------
# Shared aiohttp session and process start time
# ------------------------------------------------------------------
app_state = {
    "session": None,
    "connector": None,
    "started_at": time.time(),
}

# -------------------------------------------------------------
# 1. Configuration loader
# -------------------------------------------------------------
ProviderKind = Literal["openai", "huggingface", "phind", "blackbox", "cohere"]

class ProviderConfig(BaseModel):
    name: str
    # Wire dialect of the upstream endpoint, see `payload` and `extract`
    kind: ProviderKind
    # Full URL, or base URL for the openai kind. `{model}` is substituted.
    url: str
    models: List[str] = Field(default_factory=list)
    enabled: bool = True
    priority: int = 100
    default_model: Optional[str] = None
    api_key: Optional[str] = None
    headers: Dict[str, str] = Field(default_factory=dict)

DEFAULT_PROVIDERS: List[dict] = [
    {
        "name": "DeepInfra",
        "kind": "openai",
        "url": "https://api.deepinfra.com/v1/openai",
        "models": [
            "meta-llama/Meta-Llama-3.1-70B-Instruct",
            "meta-llama/Meta-Llama-3.1-8B-Instruct",
            "mistralai/Mixtral-8x7B-Instruct-v0.1",
            "mistralai/Mistral-7B-Instruct-v0.3",
        ],
        "priority": 1,
        "headers": {"User-Agent": BROWSER_UA},
    },
    {
        "name": "Together",
        "kind": "openai",
        "url": "https://api.together.xyz/v1",
        "models": [
            "mistralai/Mixtral-8x7B-Instruct-v0.1",
            "meta-llama/Llama-2-70b-chat-hf",
            "NousResearch/Nous-Hermes-2-Mixtral-8x7B-DPO",
        ],
        "priority": 2,
    },
    {
        "name": "HuggingFace",
        "kind": "huggingface",
        "url": "https://api-inference.huggingface.co/models/{model}",
        "models": [
            "mistralai/Mixtral-8x7B-Instruct-v0.1",
            "meta-llama/Llama-2-70b-chat-hf",
            "microsoft/phi-2",
        ],
        "priority": 3,
    },
    {
        "name": "Groq",
        "kind": "openai",
        "url": "https://api.groq.com/openai/v1",
        "models": [
            "llama-3.1-70b-versatile",
            "llama-3.1-8b-instant",
            "mixtral-8x7b-32768",
            "gemma-7b-it",
        ],
        "priority": 4,
    },
    {
        "name": "Phind",
        "kind": "phind",
        "url": "https://https.extension.phind.com/agent/",
        "models": ["Phind-70B", "gpt-4", "gpt-3.5-turbo"],
        "priority": 5,
        "headers": {"User-Agent": BROWSER_UA, "Origin": "https://phind.com"},
    },
    {
        "name": "Blackbox",
        "kind": "blackbox",
        "url": "https://www.blackbox.ai/api/chat",
        "models": ["blackbox", "gpt-4o", "claude-3.5-sonnet"],
        "priority": 6,
        "headers": {"User-Agent": "Mozilla/5.0"},
    },
    {
        "name": "Cohere",
        "kind": "cohere",
        "url": "https://api.cohere.ai/v1/generate",
        "models": ["command", "command-light", "command-nightly"],
        "priority": 7,
    },
]

class Config(BaseSettings):
    # Values read from `config.yaml` win over env variables
    model_config = SettingsConfigDict(env_prefix="FREE_PROXY_", env_file=".env", env_ignore_empty=True, extra="ignore")

    providers: List[ProviderConfig] = Field(
        default_factory=lambda: [ProviderConfig(**p) for p in DEFAULT_PROVIDERS]
    )
    # "priority" walks providers by ascending priority, "shuffle" in random order
    routing: Literal["priority", "shuffle"] = "priority"
    # Seconds a single provider attempt may take before the next one is tried
    attempt_timeout: float = 25.0
    # Echoed back when the client does not name a model
    default_model: str = "gpt-3.5-turbo"
    temperature: float = 0.7
    max_tokens: int = 4096

    host: str = "0.0.0.0"
    port: int = Field(default_factory=lambda: int(os.getenv("PORT", "3000")))
    log_level: str = "INFO"

    @classmethod
    def _expand_env_refs(cls, obj):
        """Recursively replace `${VAR}` with os.getenv('VAR')."""
        if isinstance(obj, dict):
            return {k: cls._expand_env_refs(v) for k, v in obj.items()}
        if isinstance(obj, list):
            return [cls._expand_env_refs(v) for v in obj]
        if isinstance(obj, str):
            # Only expand if it is exactly ${VAR}
            m = re.fullmatch(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}", obj)
            if m:
                return os.getenv(m.group(1), "")
        return obj

    @classmethod
    def _merge_providers(cls, entries: list) -> list:
        """
        Entries that name a built-in provider only need the fields they
        override, e.g. `{name: Groq, api_key: ...}` or `{name: Cohere, enabled: false}`.
        """
        builtin = {p["name"].lower(): p for p in DEFAULT_PROVIDERS}
        merged = []
        for entry in entries:
            if isinstance(entry, str):
                entry = {"name": entry}
            if not isinstance(entry, dict):
                continue  # Skip invalid entries
            base = builtin.get(str(entry.get("name", "")).lower())
            if base is None:
                merged.append(entry)
            else:
                merged.append({**base, **entry, "name": base["name"]})
        return merged

    @classmethod
    def from_yaml(cls, path: Path) -> "Config":
        """Load the YAML file and create the Config instance."""
        if path.exists():
            with path.open("r", encoding="utf-8") as fp:
                data = yaml.safe_load(fp) or {}
                cleaned = cls._expand_env_refs(data)
            if "providers" in cleaned:
                cleaned["providers"] = cls._merge_providers(cleaned["providers"] or [])
            return cls(**cleaned)
        return cls()

def config_path() -> Path:
    return Path(os.getenv("FREE_PROXY_CONFIG", "config.yaml"))

# Create the global config object – it will be overwritten on startup
config = Config()

def init_log(level: str = "INFO"):
    logger.remove()
    logger.add(sink=sys.stdout, level=level.upper())
    return logger

# -------------------------------------------------------------
# 2. FastAPI application
# -------------------------------------------------------------
app = FastAPI(title="Free AI Proxy", version=VERSION)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)
default_headers = {
    "Content-Type": "application/json",
}

# -------------------------------------------------------------
# 3. Errors
# -------------------------------------------------------------
class ProviderError(RuntimeError):
    """An upstream provider answered with an error status or an unusable body."""

class AllProvidersFailed(RuntimeError):
    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(
            f"All {len(self.errors)} providers failed:\n" + "\n".join(self.errors)
        )

def error_response(message: str, status_code: int) -> JSONResponse:
    """Render an error in the OpenAI envelope."""
    error_type = "invalid_request_error" if status_code < 500 else "api_error"
    return JSONResponse(
        content={"error": {"message": message, "type": error_type}},
        status_code=status_code,
    )

@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return error_response(str(exc.detail), exc.status_code)

# -------------------------------------------------------------
# 4. Helperfunctions
# -------------------------------------------------------------
async def _ensure_success(resp: aiohttp.ClientResponse) -> None:
    if resp.status >= 400:
        raise ProviderError(f"HTTP {resp.status}")

def _load_json(text: str):
    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise ProviderError(f"Invalid JSON body: {e}") from e

def dedupe_on_keys(dicts, key_fields):
    """
    Helper function to deduplicate model cards based on given dict keys.
    A key keeps the position of its first occurrence and the value of its last.
    """
    merged = {}
    for d in dicts:
        # Build a tuple of the values for the chosen keys
        key = tuple(d.get(k) for k in key_fields)
        merged[key] = d
    return list(merged.values())

def flatten_content(content) -> str:
    """Collapse OpenAI content parts into plain text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        texts: List[str] = []
        for part in content:
            if isinstance(part, str):
                texts.append(part)
            elif isinstance(part, dict) and isinstance(part.get("text"), str):
                texts.append(part["text"])
        return "\n".join(texts)
    return str(content)

def normalize_messages(messages: list) -> List[Dict[str, str]]:
    normalized = []
    for i, msg in enumerate(messages):
        if not isinstance(msg, dict):
            raise HTTPException(
                status_code=400, detail=f"messages[{i}] must be an object"
            )
        normalized.append({
            "role": str(msg.get("role") or "user"),
            "content": flatten_content(msg.get("content")),
        })
    return normalized

def messages_to_prompt(messages: list) -> str:
    """Convert OpenAI messages to a plain prompt for text-generation endpoints."""
    lines = [f"{m.get('role', 'user')}: {m.get('content', '')}" for m in messages]
    return "\n".join(lines) + "\nassistant:"

def estimate_tokens(text: str) -> int:
    # Rough heuristic, four characters per token
    return math.ceil(len(text) / 4)

def iso8601_now() -> str:
    return datetime.datetime.now(tz=datetime.timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")

# -------------------------------------------------------------
# 5. Provider adapters
# -------------------------------------------------------------
class payload:
    """Request bodies, one builder per provider kind."""

    def openai(messages: list, model: str) -> dict:
        return {
            "model": model,
            "messages": messages,
            "temperature": config.temperature,
            "max_tokens": config.max_tokens,
        }

    def huggingface(messages: list, model: str) -> dict:
        return {
            "inputs": messages_to_prompt(messages),
            "parameters": {
                "max_new_tokens": 2048,
                "temperature": config.temperature,
                "top_p": 0.95,
                "return_full_text": False,
            },
        }

    def phind(messages: list, model: str) -> dict:
        return {
            "additional_extension_context": "",
            "allow_magic_buttons": True,
            "is_vscode_extension": True,
            "message_history": messages,
            "requested_model": model,
            "user_input": messages[-1]["content"] if messages else "",
        }

    def blackbox(messages: list, model: str) -> dict:
        return {
            "messages": messages,
            "previewToken": None,
            "userId": None,
            "codeModelMode": True,
            "agentMode": {},
            "trendingAgentMode": {},
            "isMicMode": False,
            "isChromeExt": False,
            "githubToken": None,
        }

    def cohere(messages: list, model: str) -> dict:
        return {
            "prompt": "\n".join(m.get("content", "") for m in messages),
            "max_tokens": 2048,
            "temperature": config.temperature,
            "model": model,
        }

class extract:
    """Pull the answer text out of a provider response. Missing text yields ''."""

    def openai(data: dict) -> str:
        choices = (data.get("choices") or []) if isinstance(data, dict) else []
        first = choices[0] if choices else {}
        message = first.get("message") or {}
        return flatten_content(message.get("content"))

    def huggingface(data) -> str:
        if isinstance(data, list):
            first = data[0] if data else {}
            return (first.get("generated_text") or "") if isinstance(first, dict) else ""
        if isinstance(data, dict):
            if data.get("error"):
                raise ProviderError(str(data["error"]))
            return data.get("generated_text") or ""
        return ""

    def phind(text: str) -> str:
        return text

    def blackbox(text: str) -> str:
        return text

    def cohere(data: dict) -> str:
        generations = (data.get("generations") or []) if isinstance(data, dict) else []
        first = generations[0] if generations else {}
        return first.get("text") or ""

# Providers whose answer is the raw response body
TEXT_KINDS = {"phind", "blackbox"}

async def _openai_handler(provider: ProviderConfig, messages: list, model: str) -> str:
    try:
        async with openai.AsyncOpenAI(
            base_url=provider.url,
            api_key=provider.api_key or "sk-free-proxy",
            default_headers=provider.headers or None,
            max_retries=0,
            timeout=config.attempt_timeout,
        ) as oclient:
            response = await oclient.chat.completions.create(**payload.openai(messages, model))
    except openai.APIStatusError as e:
        raise ProviderError(f"HTTP {e.status_code}") from e
    except openai.APIConnectionError as e:
        raise ProviderError(str(e)) from e
    return extract.openai(response.model_dump())

async def _http_handler(provider: ProviderConfig, messages: list, model: str) -> str:
    headers = {**default_headers, **provider.headers}
    if provider.api_key:
        headers["Authorization"] = "Bearer " + provider.api_key
    url = provider.url.replace("{model}", model or "")
    body = getattr(payload, provider.kind)(messages, model)

    client: aiohttp.ClientSession = app_state["session"]
    if client is None:
        raise ProviderError("HTTP session is not initialised")
    async with client.post(url, json=body, headers=headers) as resp:
        await _ensure_success(resp)
        text = await resp.text()

    parse = getattr(extract, provider.kind)
    if provider.kind in TEXT_KINDS:
        return parse(text)
    return parse(_load_json(text))

HANDLERS: Dict[str, Callable[[ProviderConfig, list, str], Awaitable[str]]] = {
    "openai": _openai_handler,
    "huggingface": _http_handler,
    "phind": _http_handler,
    "blackbox": _http_handler,
    "cohere": _http_handler,
}

# -------------------------------------------------------------
# 6. Provider registry
# -------------------------------------------------------------
class Provider:
    def __init__(
        self,
        name: str,
        models: List[str],
        handler: Callable[[list, str], Awaitable[str]],
        enabled: bool = True,
        priority: int = 100,
        default_model: Optional[str] = None,
    ):
        self.name = name
        self.models = list(models)
        self.handler = handler
        self.enabled = enabled
        self.priority = priority
        self.default_model = default_model or (self.models[0] if self.models else None)

    @classmethod
    def from_config(cls, cfg: ProviderConfig) -> "Provider":
        handler = HANDLERS[cfg.kind]

        async def call(messages: list, model: str) -> str:
            return await handler(cfg, messages, model)

        return cls(
            name=cfg.name,
            models=cfg.models,
            handler=call,
            enabled=cfg.enabled,
            priority=cfg.priority,
            default_model=cfg.default_model,
        )

    def resolve_model(self, requested: Optional[str]) -> Optional[str]:
        """Use the requested model when advertised, else this provider's default."""
        if requested and requested in self.models:
            return requested
        return self.default_model

    async def __call__(self, messages: list, requested_model: Optional[str] = None) -> str:
        return await self.handler(messages, self.resolve_model(requested_model))

    def __repr__(self) -> str:
        return f"Provider(name={self.name!r}, priority={self.priority}, enabled={self.enabled})"

class ProviderRegistry:
    def __init__(self, providers: List[Provider]):
        self.providers = list(providers)

    @classmethod
    def from_config(cls, cfg: Config) -> "ProviderRegistry":
        return cls([Provider.from_config(p) for p in cfg.providers])

    def enabled(self) -> List[Provider]:
        return [p for p in self.providers if p.enabled]

    def ordered(self, strategy: str = "priority") -> List[Provider]:
        providers = self.enabled()
        if strategy == "shuffle":
            random.shuffle(providers)
            return providers
        # sorted() is stable, equal priorities keep registry order
        return sorted(providers, key=lambda p: p.priority)

    def find_model(self, model: str) -> Optional[Provider]:
        for provider in self.enabled():
            if model in provider.models:
                return provider
        return None

    def models(self) -> List[dict]:
        cards = [
            envelope.model_card(model, provider.name)
            for provider in self.enabled()
            for model in provider.models
        ]
        return dedupe_on_keys(cards, ["id"])

registry = ProviderRegistry.from_config(config)

# -------------------------------------------------------------
# 7. Fallback router
# -------------------------------------------------------------
async def try_providers(messages: list, requested_model: Optional[str] = None) -> Tuple[str, str]:
    """
    Walk the enabled providers in the configured order and return the first
    non-empty answer together with the name of the provider that gave it.

    Every attempt is bounded by `config.attempt_timeout`. Exceptions, timeouts
    and empty answers are collected as "<provider>: <reason>"; when nothing
    succeeds they are raised together as `AllProvidersFailed`.
    """
    errors: List[str] = []

    for provider in registry.ordered(config.routing):
        logger.info(f"Trying {provider.name}...")
        try:
            result = await asyncio.wait_for(
                provider(messages, requested_model), timeout=config.attempt_timeout
            )
        except asyncio.TimeoutError:
            reason = "Timeout"
        except Exception as e:
            reason = str(e) or e.__class__.__name__
        else:
            if isinstance(result, str) and result.strip():
                logger.success(f"Success with {provider.name}")
                return result, provider.name
            reason = "Empty response"

        error = f"{provider.name}: {reason}"
        logger.error(error)
        errors.append(error)

    raise AllProvidersFailed(errors)

# -------------------------------------------------------------
# 8. Response formatter
# -------------------------------------------------------------
class envelope:
    """OpenAI shaped response bodies."""

    def _ids(prefix: str) -> Tuple[str, int]:
        now = time.time()
        return f"{prefix}-{int(now * 1000)}", int(now)

    def usage(prompt_text: str, content: str) -> dict:
        return {
            "prompt_tokens": estimate_tokens(prompt_text),
            "completion_tokens": estimate_tokens(content),
            "total_tokens": estimate_tokens(prompt_text + content),
        }

    def chat_completion(content: str, model: str, messages: list) -> dict:
        completion_id, created = envelope._ids("chatcmpl")
        return {
            "id": completion_id,
            "object": "chat.completion",
            "created": created,
            "model": model,
            "choices": [{
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }],
            "usage": envelope.usage(json.dumps(messages, separators=(",", ":"), ensure_ascii=False), content),
        }

    def chat_chunks(content: str, model: str) -> List[str]:
        """The whole answer as one delta, a closing delta, then [DONE]."""
        completion_id, created = envelope._ids("chatcmpl")

        def chunk(delta: dict, finish_reason: Optional[str]) -> str:
            data = {
                "id": completion_id,
                "object": "chat.completion.chunk",
                "created": created,
                "model": model,
                "choices": [{"index": 0, "delta": delta, "finish_reason": finish_reason}],
            }
            return f"data: {json.dumps(data)}\n\n"

        return [
            chunk({"role": "assistant", "content": content}, None),
            chunk({}, "stop"),
            "data: [DONE]\n\n",
        ]

    def text_completion(content: str, model: str, prompt: str) -> dict:
        completion_id, created = envelope._ids("cmpl")
        return {
            "id": completion_id,
            "object": "text_completion",
            "created": created,
            "model": model,
            "choices": [{
                "text": content,
                "index": 0,
                "logprobs": None,
                "finish_reason": "stop",
            }],
            "usage": envelope.usage(prompt, content),
        }

    def model_card(model: str, owner: str) -> dict:
        return {
            "id": model,
            "object": "model",
            "created": MODEL_CREATED,
            "owned_by": owner.lower(),
        }

# -------------------------------------------------------------
# 9. Request parsing
# -------------------------------------------------------------
async def _read_json(request: Request) -> dict:
    try:
        body_bytes = await request.body()
        data = json.loads(body_bytes.decode("utf-8") or "{}")
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        raise HTTPException(status_code=400, detail=f"Invalid JSON: {e}") from e
    if not isinstance(data, dict):
        raise HTTPException(status_code=400, detail="Request body must be a JSON object")
    return data

# -------------------------------------------------------------
# 10. API route – OpenAI compatible Chat Completions
# -------------------------------------------------------------
@app.post("/v1/chat/completions")
async def chat_completions(request: Request):
    """
    Answer an OpenAI chat completions request from the first provider that
    replies. With `stream: true` the answer is replayed as server-sent events.
    """
    # 1. Parse and validate request
    data = await _read_json(request)
    messages = data.get("messages")
    if not isinstance(messages, list) or not messages:
        raise HTTPException(
            status_code=400, detail="messages array is required and cannot be empty"
        )
    messages = normalize_messages(messages)
    model = data.get("model")
    stream = data.get("stream") is True

    logger.info(f"New chat request: {len(messages)} messages, model: {model or 'auto'}")

    # 2. Fallback over providers
    try:
        content, provider_name = await try_providers(messages, model)
    except AllProvidersFailed as e:
        logger.error(f"Error: {e}")
        return error_response(str(e), 500)

    response_model = model or config.default_model
    headers = {"X-Free-Proxy-Provider": provider_name}

    # 3. Fake stream, the whole answer goes out as a single delta
    if stream:
        async def stream_chat_response():
            for event in envelope.chat_chunks(content, response_model):
                yield event.encode("utf-8")

        return StreamingResponse(
            stream_chat_response(),
            media_type="text/event-stream",
            headers={**headers, "Cache-Control": "no-cache"},
        )

    return JSONResponse(
        content=envelope.chat_completion(content, response_model, messages),
        headers=headers,
    )

# -------------------------------------------------------------
# 11. API route – OpenAI compatible Completions (legacy)
# -------------------------------------------------------------
@app.post("/v1/completions")
async def completions(request: Request):
    data = await _read_json(request)
    prompt = data.get("prompt")
    if isinstance(prompt, list):
        prompt = "\n".join(str(p) for p in prompt)
    if not prompt or not isinstance(prompt, str):
        raise HTTPException(status_code=400, detail="prompt is required")
    model = data.get("model")

    try:
        content, provider_name = await try_providers([{"role": "user", "content": prompt}], model)
    except AllProvidersFailed as e:
        logger.error(f"Error: {e}")
        return error_response(str(e), 500)

    return JSONResponse(
        content=envelope.text_completion(content, model or config.default_model, prompt),
        headers={"X-Free-Proxy-Provider": provider_name},
    )

# -------------------------------------------------------------
# 12. API route – models
# -------------------------------------------------------------
@app.get("/v1/models")
async def list_models():
    return JSONResponse(content={"object": "list", "data": registry.models()})

@app.get("/v1/models/{model:path}")
async def retrieve_model(model: str):
    provider = registry.find_model(model)
    if provider is None:
        raise HTTPException(status_code=404, detail=f"Model {model} not found")
    return JSONResponse(content=envelope.model_card(model, provider.name))

# -------------------------------------------------------------
# 13. Health, ping and banner
# -------------------------------------------------------------
@app.get("/health")
async def health():
    enabled = registry.enabled()
    return JSONResponse(content={
        "status": "healthy",
        "timestamp": iso8601_now(),
        "uptime": time.time() - app_state["started_at"],
        "providers": [
            {"name": p.name, "priority": p.priority, "models": len(p.models)}
            for p in enabled
        ],
        "totalProviders": len(enabled),
        "totalModels": sum(len(p.models) for p in enabled),
    })

@app.get("/ping")
async def ping():
    return PlainTextResponse("pong")

@app.get("/")
async def index():
    return JSONResponse(content={
        "name": "Free AI Proxy",
        "version": VERSION,
        "description": f"OpenAI-compatible API with {len(registry.enabled())} free providers",
        "endpoints": {
            "chat": "POST /v1/chat/completions",
            "completions": "POST /v1/completions",
            "models": "GET /v1/models",
            "model": "GET /v1/models/:model",
            "health": "GET /health",
        },
        "providers": [p.name for p in registry.enabled()],
    })

# Registered last so every known route matches first
@app.api_route("/{path:path}", methods=["GET", "POST", "PUT", "PATCH", "DELETE"])
async def route_not_found(request: Request, path: str):
    raise HTTPException(
        status_code=404, detail=f"Route {request.method} {request.url.path} not found"
    )

# -------------------------------------------------------------
# 14. FastAPI startup/shutdown events
# -------------------------------------------------------------
@app.on_event("startup")
async def startup_event() -> None:
    global config, registry
    # Load YAML config (or use defaults if not present)
    config = Config.from_yaml(config_path())
    init_log(config.log_level)
    registry = ProviderRegistry.from_config(config)

    ssl_context = ssl.create_default_context()
    connector = aiohttp.TCPConnector(limit=0, limit_per_host=64, ssl=ssl_context)
    timeout = aiohttp.ClientTimeout(total=config.attempt_timeout, sock_connect=10)
    session = aiohttp.ClientSession(connector=connector, timeout=timeout)

    app_state["connector"] = connector
    app_state["session"] = session
    app_state["started_at"] = time.time()

    enabled = registry.enabled()
    logger.info(f"Free AI Proxy {VERSION} listening on {config.host}:{config.port}, API base /v1")
    logger.info(f"Routing: {config.routing}, attempt timeout: {config.attempt_timeout}s")
    for i, p in enumerate(registry.ordered("priority"), start=1):
        logger.info(f"  {i}. {p.name} ({len(p.models)} models)")
    logger.info(f"Active providers: {len(enabled)}, total models: {sum(len(p.models) for p in enabled)}")

@app.on_event("shutdown")
async def shutdown_event() -> None:
    session: Optional[aiohttp.ClientSession] = app_state["session"]
    if session is not None:
        await session.close()
    app_state["session"] = None
    app_state["connector"] = None

def uvicorn_log_level(level: str) -> str:
    """Map a loguru level name onto one uvicorn accepts."""
    return UVICORN_LOG_LEVELS.get(level.lower(), "info")

def main() -> None:
    settings = Config.from_yaml(config_path())
    uvicorn.run("free_proxy:app", host=settings.host, port=settings.port, log_level=uvicorn_log_level(settings.log_level))

if __name__ == "__main__":
    main()
