"""
Model service interface used by the scheduler.

The language model is an opaque collaborator: given the conversation and
the declared tools it returns one AIMessage, whose tool_calls (if any) the
scheduler executes. ChatModelService adapts any LangChain chat model.
"""

from __future__ import annotations

import ipaddress
import logging
from abc import ABC, abstractmethod
from typing import Any, Mapping, Sequence
from urllib.parse import urlparse

from langchain_core.language_models import BaseChatModel
from langchain_core.messages import AIMessage, BaseMessage, HumanMessage

from mcp_loop.errors import SecurityError
from mcp_loop.tools import Tool

logger = logging.getLogger(__name__)

SUPPORTED_MIME_PREFIXES = ("image/", "audio/", "video/", "text/")
SUPPORTED_MIME_TYPES = {"application/pdf", "application/json"}
BLOCKED_HOSTS = {"localhost", "metadata.google.internal"}


class ModelService(ABC):
    """complete(messages, tools) -> AIMessage"""

    @abstractmethod
    async def complete(self, messages: Sequence[BaseMessage], tools: Sequence[Tool]) -> AIMessage:
        ...


class ChatModelService(ModelService):
    """
    ModelService backed by a LangChain chat model.

        from langchain.chat_models import init_chat_model
        service = ChatModelService(init_chat_model("anthropic:claude-sonnet-4-5"))
    """

    def __init__(self, chat_model: BaseChatModel):
        self.chat_model = chat_model

    async def complete(self, messages: Sequence[BaseMessage], tools: Sequence[Tool]) -> AIMessage:
        model: Any = self.chat_model
        if tools:
            model = model.bind_tools([tool.as_langchain_tool() for tool in tools])
        return await model.ainvoke(list(messages))


def is_supported_mime_type(mime_type: str) -> bool:
    return mime_type in SUPPORTED_MIME_TYPES or mime_type.startswith(SUPPORTED_MIME_PREFIXES)


def validate_file_uri(uri: str, allow_file_uris: bool = False) -> str:
    """
    Check that a file reference is safe to hand to the model provider.

    Allowed: https:// URLs whose host is not local or private, and file://
    URIs when allow_file_uris is set. Raises SecurityError otherwise.
    """
    if not isinstance(uri, str):
        raise SecurityError(f"File URI must be a string, got {type(uri).__name__}")
    try:
        parsed = urlparse(uri)
        hostname = parsed.hostname
    except ValueError as e:
        raise SecurityError(f"Malformed file URI {uri[:200]!r}: {e}") from e

    if parsed.scheme == "file":
        if not allow_file_uris:
            raise SecurityError(
                "file:// URIs are not allowed. Enable allow_file_uris "
                "(only for CLI environments)"
            )
        return uri
    if parsed.scheme != "https":
        raise SecurityError(f"Only https:// file URIs are allowed, got {uri[:200]!r}")

    host = (hostname or "").lower()
    if not host:
        raise SecurityError(f"File URI has no host: {uri[:200]!r}")
    if host in BLOCKED_HOSTS or host.endswith(".localhost"):
        raise SecurityError(f"File URI points at a local host: {host}")

    try:
        address = ipaddress.ip_address(host)
    except ValueError:
        return uri
    if (
        address.is_private
        or address.is_loopback
        or address.is_link_local
        or address.is_reserved
        or address.is_multicast
        or address.is_unspecified
    ):
        raise SecurityError(f"File URI points at a non-public address: {host}")
    return uri


def _block_type(mime_type: str) -> str:
    for kind in ("image", "audio", "video"):
        if mime_type.startswith(kind + "/"):
            return kind
    return "file"


def _content_block(part: Mapping[str, Any], allow_file_uris: bool) -> list[dict[str, Any]]:
    blocks: list[dict[str, Any]] = []
    if part.get("text"):
        blocks.append({"type": "text", "text": part["text"]})

    inline = part.get("inlineData")
    if inline:
        mime_type = inline.get("mimeType", "")
        if not is_supported_mime_type(mime_type):
            logger.warning(f"Unsupported MIME type: {mime_type}. Including anyway.")
        blocks.append({
            "type": _block_type(mime_type),
            "source_type": "base64",
            "data": inline.get("data", ""),
            "mime_type": mime_type,
        })

    file_data = part.get("fileData")
    if file_data:
        mime_type = file_data.get("mimeType", "")
        uri = validate_file_uri(file_data.get("fileUri", ""), allow_file_uris)
        if not is_supported_mime_type(mime_type):
            logger.warning(f"Unsupported MIME type: {mime_type}. Including anyway.")
        blocks.append({
            "type": _block_type(mime_type),
            "source_type": "url",
            "url": uri,
            "mime_type": mime_type,
        })
    return blocks


def build_user_message(
    prompt: str,
    parts: Sequence[Mapping[str, Any]] | None = None,
    allow_file_uris: bool = False,
) -> HumanMessage:
    """
    Build the user message for the first turn.

    Without multimodal parts this is a plain text message. With parts, the
    prompt becomes the first text block followed by one block per part.
    Raises SecurityError for an unsafe file reference.
    """
    if not parts:
        return HumanMessage(content=prompt)

    content: list[Any] = []
    if prompt:
        content.append({"type": "text", "text": prompt})
    for part in parts:
        content.extend(_content_block(part, allow_file_uris))
    return HumanMessage(content=content)
