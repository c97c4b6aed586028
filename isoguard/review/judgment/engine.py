"""
Drawing analyst backed by the OpenAI API.

Everything that needs the hosted model lives here: component recognition,
design-error detection, annotated and corrected drawing generation, and the
function-calling chat. Provider failures are re-raised as
ExternalCollaboratorError with the provider's message kept intact.
"""
import json
import logging
from typing import Any, Dict, List, Optional, Protocol

from pydantic import BaseModel, Field

from ...config import Settings
from ...models_loader import ClientRegistry
from ...utils import decode_data_url, to_data_url
from ..chat.tools import TOOL_DECLARATIONS
from ..errors import ExternalCollaboratorError
from ..ingestion.models import Component, Finding

logger = logging.getLogger("isoguard.analyst")

RECOGNITION_PROMPT = """Analyze this industrial piping isometric drawing.
Identify key components: pipes, valves, flanges, pumps, and instruments.

OUTPUT FORMAT (JSON):
{
    "components": [
        {"type": "valve", "name": "tag or short name", "description": "one sentence"}
    ]
}"""

DETECTION_PROMPT = """Act as a senior piping design engineer.
Examine this isometric drawing for design errors, compliance issues, or safety hazards.
Look for: disconnected segments, missing vents/drains, incorrect flow orientations, or missing supports.

OUTPUT FORMAT (JSON):
{
    "findings": [
        {
            "severity": "Critical | Warning | Info",
            "description": "What is wrong",
            "recommendation": "How to fix it",
            "confidence": 0.0-1.0,
            "affected_references": ["equipment tags or line numbers"],
            "location": "where on the drawing",
            "detection_reason": "why this was flagged"
        }
    ]
}"""

CHAT_SYSTEM_PROMPT = """You are IsoGuard, a piping design review assistant.
You help an engineer curate the list of design issues found in an isometric drawing.

RULES:
- Answer questions about the drawing, the components and the issues concisely.
- To add, change or remove issues, call the matching function. Never claim a change
  was made; the engineer confirms every proposal.
- Refer to issues by their id when editing or deleting.

RECOGNIZED COMPONENTS:
{components}

CURRENT ISSUES:
{findings}"""


class FunctionCall(BaseModel):
    name: str
    args: Dict[str, Any] = Field(default_factory=dict)


class ChatTurn(BaseModel):
    reply_text: Optional[str] = None
    function_call: Optional[FunctionCall] = None


class ChatConversation:
    """Message history for one review's chat."""

    def __init__(self, system_prompt: str):
        self.messages: List[Dict[str, Any]] = [{"role": "system", "content": system_prompt}]

    def set_context(self, system_prompt: str) -> None:
        self.messages[0] = {"role": "system", "content": system_prompt}


class DrawingAnalyst(Protocol):
    async def recognize_components(self, image: str) -> List[Dict[str, Any]]: ...

    async def detect_findings(self, image: str) -> List[Dict[str, Any]]: ...

    async def generate_annotated_artifact(self, image: str, findings: List[Finding]) -> str: ...

    async def generate_corrected_artifact(self, image: str, findings: List[Finding]) -> str: ...

    def start_conversation(self, components: List[Component], findings: List[Finding]) -> ChatConversation: ...

    async def chat_propose(self, conversation: ChatConversation, user_text: str) -> ChatTurn: ...

    async def refresh_chat_context(
        self,
        conversation: ChatConversation,
        components: List[Component],
        findings: List[Finding],
        images: Dict[str, Optional[str]],
    ) -> None: ...


def chat_context_prompt(components: List[Component], findings: List[Finding]) -> str:
    comp_text = "\n".join(f"- {c.type}: {c.name} ({c.description})" for c in components) or "- none"
    finding_text = "\n".join(
        f"- [{f.id}] {f.severity.value}: {f.description} (fix: {f.recommendation})" for f in findings
    ) or "- none"
    return CHAT_SYSTEM_PROMPT.format(components=comp_text, findings=finding_text)


def _fix_list(findings: List[Finding]) -> str:
    return "\n".join(f"- {f.description} (Recommended fix: {f.recommendation})" for f in findings)


def _parse_json(content: Optional[str], key: str) -> List[Dict[str, Any]]:
    if not content:
        raise ValueError("empty response")
    # Strip markdown if present
    if "```" in content:
        content = content.replace("```json", "").replace("```", "")
    data = json.loads(content)
    items = data.get(key, [])
    if not isinstance(items, list):
        raise ValueError(f"'{key}' is not a list")
    return [item for item in items if isinstance(item, dict)]


class OpenAIDrawingAnalyst:
    def __init__(self, registry: ClientRegistry, settings: Settings):
        self.registry = registry
        self.settings = settings

    def _client(self, operation: str):
        client = self.registry.get_openai()
        if client is None:
            raise ExternalCollaboratorError(operation, "OpenAI client not initialized. Check your API key.")
        return client

    async def _vision_json(self, operation: str, prompt: str, image: str, key: str) -> List[Dict[str, Any]]:
        client = self._client(operation)
        try:
            response = await client.chat.completions.create(
                model=self.settings.vision_model,
                messages=[
                    {"role": "system", "content": prompt},
                    {"role": "user", "content": [
                        {"type": "text", "text": "Analyze this drawing."},
                        {"type": "image_url", "image_url": {"url": image}},
                    ]},
                ],
                response_format={"type": "json_object"},
                temperature=0.2,
            )
            return _parse_json(response.choices[0].message.content, key)
        except Exception as e:
            logger.exception("%s failed", operation)
            raise ExternalCollaboratorError(operation, str(e), e) from e

    async def recognize_components(self, image: str) -> List[Dict[str, Any]]:
        return await self._vision_json("component recognition", RECOGNITION_PROMPT, image, "components")

    async def detect_findings(self, image: str) -> List[Dict[str, Any]]:
        return await self._vision_json("error detection", DETECTION_PROMPT, image, "findings")

    async def _edit_image(self, operation: str, image: str, prompt: str) -> str:
        client = self._client(operation)
        try:
            response = await client.images.edit(
                model=self.settings.image_model,
                image=("drawing.png", decode_data_url(image), "image/png"),
                prompt=prompt,
                n=1,
                size=self.settings.image_size,
            )
        except Exception as e:
            logger.exception("%s failed", operation)
            raise ExternalCollaboratorError(operation, str(e), e) from e

        data = response.data or []
        if data and data[0].b64_json:
            return to_data_url(decode_data_url(data[0].b64_json))
        if data and data[0].url:
            return data[0].url
        raise ExternalCollaboratorError(operation, "Provider returned no image.")

    async def generate_annotated_artifact(self, image: str, findings: List[Finding]) -> str:
        prompt = f"""Here is an isometric piping drawing. Mark each of these design issues directly on it:
{_fix_list(findings)}

STYLE:
- Keep the drawing itself unchanged
- Circle each problem area in RED and add a short numbered callout
- Technical blueprint aesthetic, no new geometry"""
        return await self._edit_image("annotated drawing generation", image, prompt)

    async def generate_corrected_artifact(self, image: str, findings: List[Finding]) -> str:
        prompt = f"""Here is an isometric piping drawing with several design errors.
ERRORS TO FIX:
{_fix_list(findings)}

Please generate a clean, updated version of this isometric drawing that incorporates all recommended fixes.
Keep the same perspective, industrial style, and technical blueprint aesthetic."""
        return await self._edit_image("corrected drawing generation", image, prompt)

    def start_conversation(self, components: List[Component], findings: List[Finding]) -> ChatConversation:
        return ChatConversation(chat_context_prompt(components, findings))

    async def chat_propose(self, conversation: ChatConversation, user_text: str) -> ChatTurn:
        client = self._client("chat")
        conversation.messages.append({"role": "user", "content": user_text})
        try:
            response = await client.chat.completions.create(
                model=self.settings.chat_model,
                messages=conversation.messages,
                tools=TOOL_DECLARATIONS,
            )
            message = response.choices[0].message
            call = None
            if message.tool_calls:
                # One proposal per turn; extra calls are dropped
                fn = message.tool_calls[0].function
                call = FunctionCall(name=fn.name, args=json.loads(fn.arguments or "{}"))
        except Exception as e:
            conversation.messages.pop()
            logger.exception("chat failed")
            raise ExternalCollaboratorError("chat", str(e), e) from e

        # History stays plain text so it never carries dangling tool_call ids
        summary = message.content or ""
        if call is not None:
            summary = (summary + f"\n[proposed {call.name}: {json.dumps(call.args)}]").strip()
        conversation.messages.append({"role": "assistant", "content": summary})
        return ChatTurn(reply_text=message.content or None, function_call=call)

    async def refresh_chat_context(
        self,
        conversation: ChatConversation,
        components: List[Component],
        findings: List[Finding],
        images: Dict[str, Optional[str]],
    ) -> None:
        conversation.set_context(chat_context_prompt(components, findings))
        parts: List[Dict[str, Any]] = [{
            "type": "text",
            "text": "For visual reference, here are the drawings in this order: "
            + ", ".join(label for label, url in images.items() if url),
        }]
        parts.extend(
            {"type": "image_url", "image_url": {"url": url}} for url in images.values() if url
        )
        conversation.messages.append({"role": "user", "content": parts})

        client = self._client("chat context")
        try:
            response = await client.chat.completions.create(
                model=self.settings.chat_model,
                messages=conversation.messages,
                max_tokens=200,
            )
        except Exception as e:
            conversation.messages.pop()
            raise ExternalCollaboratorError("chat context", str(e), e) from e
        conversation.messages.append(
            {"role": "assistant", "content": response.choices[0].message.content or ""}
        )
