# empath/utils/request.py async client for OpenAI-compatible chat completions
import asyncio
import json
import logging
import re
import time
from typing import Any, Dict, List, Optional, Tuple

import aiohttp

import empath.core.config as config
import empath.utils.exception as exception

logger = logging.getLogger(__name__)

# shared session
_session: Optional[aiohttp.ClientSession] = None
_session_lock: Optional[asyncio.Lock] = None

_FENCED_JSON = re.compile(r"```(?:json)?(.*?)```", re.DOTALL)


class Request:
    def __init__(self, url, model, api_key, temperature=config.temperature, top_p=config.top_p,
                 max_tokens=config.max_tokens):
        self.url = url
        self.model = model
        self.api_key = api_key
        self.temperature = temperature
        self.top_p = top_p
        self.max_tokens = max_tokens

    @classmethod
    def chat(cls, base_url: str, model: str, api_key: str, **kwargs) -> "Request":
        """Request against the /chat/completions route of an OpenAI-compatible base url."""
        return cls(f"{base_url.rstrip('/')}/chat/completions", model, api_key, **kwargs)

    def to_str(self):
        return f"Request(url={self.url}, model={self.model}, temperature={self.temperature}, top_p={self.top_p})"


async def get_session() -> aiohttp.ClientSession:
    """Return the shared aiohttp session, creating it on first use."""
    global _session, _session_lock
    if _session_lock is None:
        _session_lock = asyncio.Lock()
    async with _session_lock:
        if _session is None or _session.closed:
            _session = aiohttp.ClientSession()
    return _session


async def close_session():
    """Close the shared session; called on application shutdown."""
    global _session
    if _session is not None and not _session.closed:
        await _session.close()
    _session = None


def extract_json(text: Optional[str]) -> Dict[str, Any]:
    """
    Pull a JSON object out of a model reply.

    Handles bare JSON, ```json fenced blocks and prose around a {...} block.

    Raises:
        TransientServiceError: no JSON object could be found
    """
    if not text:
        raise exception.TransientServiceError("empty model response")
    candidate = text.strip()
    match = _FENCED_JSON.search(candidate)
    if match:
        candidate = match.group(1).strip()
    start, end = candidate.find("{"), candidate.rfind("}")
    if start >= 0 and end > start:
        candidate = candidate[start:end + 1]
    try:
        result = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise exception.TransientServiceError(f"model response is not valid JSON: {e}") from e
    if not isinstance(result, dict):
        raise exception.TransientServiceError("model response is not a JSON object")
    return result


async def _send_request_async(messages: List, request: Request, timeout=config.wait_timeout,
                              json_mode: bool = True) -> Tuple[str, int, int]:
    """
    Send one chat completion request.
    :param messages: chat messages
    :param request: endpoint, model and sampling settings
    :return: model output, total tokens, completion tokens
    """
    if config.debug_request:
        print(f"Sending request: {messages}")

    payload = {
        "messages": messages,
        "model": request.model,
        "response_format": {"type": "json_object" if json_mode else "text"},
        "stream": False,
        "temperature": request.temperature,
        "top_p": request.top_p,
        "max_tokens": request.max_tokens,
    }
    headers = {
        'Content-Type': 'application/json',
        'Accept': 'application/json',
        'Authorization': f'Bearer {request.api_key}'
    }

    start_time = time.time()
    try:
        session = await get_session()
        async with session.post(request.url, headers=headers, json=payload,
                                timeout=aiohttp.ClientTimeout(total=timeout)) as response:
            if response.status != 200:
                detail = (await response.text())[:500]
                raise exception.TransientServiceError(f"HTTP {response.status} {response.reason} - {detail}")

            response_json = await response.json(content_type=None)
            content = response_json['choices'][0]['message']['content']
            usage = response_json.get('usage') or {}
            logger.debug(f"{request.model} answered in {(time.time() - start_time) * 1000:.0f}ms")

            if config.debug_request:
                print(f"Response: {content}")
            return content, usage.get('total_tokens', 0), usage.get('completion_tokens', 0)

    except asyncio.TimeoutError as e:
        raise exception.TransientServiceError("request timed out") from e
    except aiohttp.ClientError as e:
        raise exception.TransientServiceError(f"HTTP request failed: {e}") from e
    except (KeyError, IndexError, TypeError, ValueError) as e:
        raise exception.TransientServiceError(f"malformed completion response: {e}") from e


async def send_request_async(messages: List[Dict[str, str]], request: Request, max_retries=config.max_retries,
                             timeout=config.wait_timeout, json_mode: bool = True) -> Tuple[str, int, int]:
    """
    Send a chat request, retrying transient failures with growing delay.
    :param messages: chat messages
    :param request: endpoint, model and sampling settings
    :param max_retries: retries after the first attempt
    :param timeout: per-attempt timeout in seconds
    :return: model output, total tokens, completion tokens
    """
    retries = 0
    delay = config.cool_down_time

    while True:
        try:
            return await _send_request_async(messages, request, timeout=timeout, json_mode=json_mode)
        except exception.TransientServiceError as e:
            if "HTTP 401" in str(e) or "HTTP 402" in str(e) or retries >= max_retries:
                raise
            retries += 1
            exception.print_warning(
                send_request_async,
                f"{e}. Retrying {retries}/{max_retries} in {delay:.1f}s",
                "low"
            )
            await asyncio.sleep(delay)
            delay *= 2
