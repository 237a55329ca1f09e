# backend/docgen/integrations/prose_client.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

import httpx

from ..config import settings
from ..domain.catalog import doc_type_label, required_prose_keys
from ..errors import ProseGenerationError

log = logging.getLogger(__name__)

ProseValue = Union[str, list[str]]


@dataclass(frozen=True)
class ProseResult:
    sections: Dict[str, ProseValue] = field(default_factory=dict)
    model: Optional[str] = None


class ProseClient:
    """
    Provider interface for AI-authored narrative sections.
    Implementations return named sections; they never render documents.
    """

    def generate_prose(
        self,
        doc_type: str,
        project_data: Dict[str, Any],
        feedback: Optional[str] = None,
    ) -> ProseResult:
        raise NotImplementedError


SYSTEM_PROMPT = (
    "You draft narrative sections of legal and financial documents. "
    "Numeric deal terms are rendered by the template; reference them exactly as given when you mention them. "
    "Respond with a single JSON object whose keys are the requested section names. "
    "Each value is a string, or a list of strings for enumerated clauses."
)


def build_user_prompt(doc_type: str, project_data: Dict[str, Any], feedback: Optional[str]) -> str:
    module = str(project_data.get("module") or "")
    keys = required_prose_keys(module, doc_type)
    lines = [
        f"Document: {doc_type_label(doc_type)} ({doc_type})",
        f"Required sections: {', '.join(keys) if keys else 'none'}",
        "Project data:",
        json.dumps(project_data, default=str, sort_keys=True),
    ]
    if feedback:
        lines += ["", "Reviewer feedback on the previous version (address every point):", feedback]
    return "\n".join(lines)


def _coerce_sections(raw: Any) -> Dict[str, ProseValue]:
    if not isinstance(raw, dict):
        raise ProseGenerationError("prose response is not a JSON object")
    out: Dict[str, ProseValue] = {}
    for k, v in raw.items():
        if isinstance(v, list):
            out[str(k)] = [str(x) for x in v if x is not None]
        elif v is None:
            continue
        else:
            out[str(k)] = str(v)
    return out


class OpenAICompatibleProseClient(ProseClient):
    """
    OpenAI-compatible chat completions (LM Studio, vLLM, hosted APIs).
    Transport failures and malformed output raise ProseGenerationError.
    """

    def __init__(
        self,
        *,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> None:
        self.base_url = (base_url or settings.prose_base_url).rstrip("/")
        self.model = model or settings.prose_model
        self.api_key = api_key if api_key is not None else settings.prose_api_key
        self.timeout = timeout or settings.prose_request_timeout_seconds
        self.transport = transport

    def _headers(self) -> dict[str, str]:
        if not self.api_key:
            return {}
        return {"Authorization": f"Bearer {self.api_key}"}

    def generate_prose(
        self,
        doc_type: str,
        project_data: Dict[str, Any],
        feedback: Optional[str] = None,
    ) -> ProseResult:
        body = {
            "model": self.model,
            "temperature": settings.prose_temperature,
            "response_format": {"type": "json_object"},
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": build_user_prompt(doc_type, project_data, feedback)},
            ],
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                r = client.post(f"{self.base_url}/chat/completions", json=body, headers=self._headers())
                r.raise_for_status()
                data = r.json()
        except httpx.HTTPError as e:
            raise ProseGenerationError(f"prose request failed for {doc_type}: {e}") from e
        except ValueError as e:
            raise ProseGenerationError(f"prose response for {doc_type} is not JSON") from e

        try:
            content = data["choices"][0]["message"]["content"]
            parsed = json.loads(content)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ProseGenerationError(f"unparseable prose payload for {doc_type}") from e

        sections = _coerce_sections(parsed)
        log.info("prose_generated", extra={"doc_type": doc_type, "sections": len(sections)})
        return ProseResult(sections=sections, model=data.get("model") or self.model)
