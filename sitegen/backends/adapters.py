"""Request builders and response parsers for each model family.

Every family the runtime hosts speaks its own JSON dialect. A request
variant knows how to render its payload, and a parser per family turns the
raw response body into ``(content, usage)``. Family detection goes by the
model id, the same way the runtime names its models.

Examples
--------
>>> detect_family("anthropic.claude-3-haiku-20240307-v1:0")
<ModelFamily.CLAUDE: 'claude'>
>>> build_text_request("amazon.titan-text-express-v1", "hi").to_payload()["inputText"]
'hi'
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Union

from sitegen.config import (
    ANTHROPIC_BEDROCK_VERSION,
    DEFAULT_TOP_P,
    IMAGE_CFG_SCALE,
    IMAGE_HEIGHT,
    IMAGE_NEGATIVE_PROMPT,
    IMAGE_WIDTH,
)
from sitegen.exceptions import ResponseValidationError
from sitegen.models import GenerationOptions


class ModelFamily(str, Enum):
    CLAUDE = "claude"
    TITAN_TEXT = "titan_text"
    LLAMA = "llama"
    GENERIC = "generic"
    TITAN_IMAGE = "titan_image"


def detect_family(model_id: str) -> ModelFamily:
    lowered = model_id.lower()
    if "claude" in lowered:
        return ModelFamily.CLAUDE
    if "titan-image" in lowered:
        return ModelFamily.TITAN_IMAGE
    if "titan" in lowered:
        return ModelFamily.TITAN_TEXT
    if "llama" in lowered:
        return ModelFamily.LLAMA
    return ModelFamily.GENERIC


@dataclass(frozen=True)
class ClaudeRequest:
    prompt: str
    max_tokens: int
    temperature: float
    system: str | None = None

    def to_payload(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "anthropic_version": ANTHROPIC_BEDROCK_VERSION,
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "messages": [{"role": "user", "content": self.prompt}],
        }
        if self.system:
            payload["system"] = self.system
        return payload


@dataclass(frozen=True)
class TitanTextRequest:
    prompt: str
    max_tokens: int
    temperature: float
    top_p: float = DEFAULT_TOP_P

    def to_payload(self) -> dict[str, Any]:
        return {
            "inputText": self.prompt,
            "textGenerationConfig": {
                "maxTokenCount": self.max_tokens,
                "temperature": self.temperature,
                "topP": self.top_p,
            },
        }


@dataclass(frozen=True)
class LlamaRequest:
    prompt: str
    max_tokens: int
    temperature: float
    top_p: float = DEFAULT_TOP_P

    def to_payload(self) -> dict[str, Any]:
        return {
            "prompt": self.prompt,
            "max_gen_len": self.max_tokens,
            "temperature": self.temperature,
            "top_p": self.top_p,
        }


@dataclass(frozen=True)
class GenericRequest:
    prompt: str
    max_tokens: int

    def to_payload(self) -> dict[str, Any]:
        return {"prompt": self.prompt, "max_tokens": self.max_tokens}


@dataclass(frozen=True)
class TitanImageRequest:
    """Text-to-image request; ``seed`` is drawn at random when not given."""

    prompt: str
    negative_prompt: str = IMAGE_NEGATIVE_PROMPT
    width: int = IMAGE_WIDTH
    height: int = IMAGE_HEIGHT
    cfg_scale: float = IMAGE_CFG_SCALE
    seed: int | None = None

    def to_payload(self) -> dict[str, Any]:
        seed = self.seed if self.seed is not None else random.randint(0, 999_999)
        return {
            "taskType": "TEXT_IMAGE",
            "textToImageParams": {
                "text": self.prompt,
                "negativeText": self.negative_prompt,
            },
            "imageGenerationConfig": {
                "numberOfImages": 1,
                "height": self.height,
                "width": self.width,
                "cfgScale": self.cfg_scale,
                "seed": seed,
            },
        }


TextRequest = Union[ClaudeRequest, TitanTextRequest, LlamaRequest, GenericRequest]


def build_text_request(
    model_id: str, prompt: str, options: GenerationOptions | None = None
) -> TextRequest:
    """Return the request variant matching ``model_id``'s family."""
    opts = options or GenerationOptions()
    family = detect_family(model_id)
    if family is ModelFamily.CLAUDE:
        return ClaudeRequest(prompt, opts.max_tokens, opts.temperature, opts.system)
    # Families without a system field get it prepended to the prompt.
    text = f"{opts.system}\n\n{prompt}" if opts.system else prompt
    if family is ModelFamily.TITAN_TEXT:
        return TitanTextRequest(text, opts.max_tokens, opts.temperature)
    if family is ModelFamily.LLAMA:
        return LlamaRequest(text, opts.max_tokens, opts.temperature)
    return GenericRequest(text, opts.max_tokens)


def _first(items: Any) -> Mapping[str, Any]:
    if isinstance(items, list) and items and isinstance(items[0], Mapping):
        return items[0]
    return {}


def _parse_claude(body: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    return str(_first(body.get("content")).get("text") or ""), dict(body.get("usage") or {})


def _parse_titan_text(body: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    first = _first(body.get("results"))
    usage = {
        "input_tokens": body.get("inputTextTokenCount", 0),
        "output_tokens": first.get("tokenCount", 0),
    }
    return str(first.get("outputText") or ""), usage


def _parse_llama(body: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    usage = {
        "input_tokens": body.get("prompt_token_count", 0),
        "output_tokens": body.get("generation_token_count", 0),
    }
    return str(body.get("generation") or ""), usage


def _parse_generic(body: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    content = body.get("text") or body.get("content") or ""
    return (content if isinstance(content, str) else ""), dict(body.get("usage") or {})


def _parse_titan_image(body: Mapping[str, Any]) -> tuple[str, dict[str, Any]]:
    images = body.get("images")
    image = images[0] if isinstance(images, list) and images else ""
    return (image if isinstance(image, str) else ""), {"images": 1 if image else 0}


_PARSERS: dict[ModelFamily, Callable[[Mapping[str, Any]], tuple[str, dict[str, Any]]]] = {
    ModelFamily.CLAUDE: _parse_claude,
    ModelFamily.TITAN_TEXT: _parse_titan_text,
    ModelFamily.LLAMA: _parse_llama,
    ModelFamily.GENERIC: _parse_generic,
    ModelFamily.TITAN_IMAGE: _parse_titan_image,
}


def parse_response(model_id: str, body: Any) -> tuple[str, dict[str, Any]]:
    """Extract ``(content, usage)`` from a raw response body.

    Raises
    ------
    ResponseValidationError
        If the body is not an object or holds no content.
    """
    if not isinstance(body, Mapping):
        raise ResponseValidationError(
            f"Response from {model_id} is not a JSON object",
            context={"backend_id": model_id},
        )
    content, usage = _PARSERS[detect_family(model_id)](body)
    if not content.strip():
        raise ResponseValidationError(
            f"Response from {model_id} has no content",
            context={"backend_id": model_id},
        )
    return content, usage
