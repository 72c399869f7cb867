"""
Domain models shared by the orchestrator, the connectors and the clients.

Defines the supported AI models, prompts, issues, rules and the structured
replacement response returned by the AI vendors.
"""

import json
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .errors import ConfigurationError
from .usage import UsageMetadata


class Vendor(Enum):
    """AI vendors with a connector implementation."""
    GOOGLE = "Google"
    OPENAI = "OpenAI"
    ANTHROPIC = "Anthropic"
    MISTRAL = "MistralAI"
    DEEPSEEK = "DeepSeek"
    OLLAMA = "Ollama (Local)"

    @property
    def slug(self) -> str:
        """Vendor name usable as a git branch path segment."""
        return self.value.replace("(", "_").replace(")", "_").replace(" ", "-")


class AIModel(Enum):
    """Supported AI models.

    The value is the model name used by the vendor API. Every member carries
    its vendor and the maximum number of output tokens requested.
    """
    GEMINI_FLASH_LITE = ("gemini-2.0-flash-lite", Vendor.GOOGLE, 8192)
    GEMINI_25_FLASH = ("gemini-2.5-flash", Vendor.GOOGLE, 65536)
    GPT41_NANO = ("gpt-4.1-nano", Vendor.OPENAI, 32768)
    GPT41_MINI = ("gpt-4.1-mini", Vendor.OPENAI, 32768)
    GPT41 = ("gpt-4.1", Vendor.OPENAI, 32768)
    GPT4O = ("gpt-4o", Vendor.OPENAI, 16384)
    O3 = ("o3", Vendor.OPENAI, 100000)
    O3_MINI = ("o3-mini", Vendor.OPENAI, 100000)
    O4_MINI = ("o4-mini", Vendor.OPENAI, 100000)
    CLAUDE_HAIKU_3 = ("claude-3-haiku-20240307", Vendor.ANTHROPIC, 4096)
    CLAUDE_HAIKU_35 = ("claude-3-5-haiku-20241022", Vendor.ANTHROPIC, 8192)
    DEVSTRAL_SMALL = ("devstral-small-2505", Vendor.MISTRAL, 32768)
    MISTRAL_LARGE = ("mistral-large-latest", Vendor.MISTRAL, 32768)
    DEEPSEEK_CHAT = ("deepseek-chat", Vendor.DEEPSEEK, 8192)
    DEEPSEEK_REASONER = ("deepseek-reasoner", Vendor.DEEPSEEK, 32768)
    PHI4_LOCAL = ("phi4", Vendor.OLLAMA, 8192)
    DEVSTRAL_LOCAL = ("devstral", Vendor.OLLAMA, 8192)
    CODELLAMA_LOCAL = ("codellama", Vendor.OLLAMA, 8192)
    GEMMA3_LOCAL = ("gemma3", Vendor.OLLAMA, 8192)
    DEEPSEEK_R1_LOCAL = ("deepseek-r1", Vendor.OLLAMA, 8192)

    def __new__(cls, model_name: str, vendor: Vendor, max_output_tokens: int):
        member = object.__new__(cls)
        member._value_ = model_name
        member.vendor = vendor
        member.max_output_tokens = max_output_tokens
        return member

    @property
    def model_name(self) -> str:
        """Model name as expected by the vendor API."""
        return self.value

    @classmethod
    def from_name(cls, name: str) -> "AIModel":
        """Resolve a configured model name.

        Accepts either the vendor model name (``gpt-4.1-nano``) or the enum
        member name (``GPT41_NANO``).

        Raises:
            ConfigurationError: If the name does not match a supported model
        """
        if not name or not name.strip():
            raise ConfigurationError("AI model is not configured")
        name = name.strip()
        for model in cls:
            if name == model.value or name.upper() == model.name:
                return model
        supported = ", ".join(model.value for model in cls)
        raise ConfigurationError(f"Unsupported AI model '{name}'. Supported models: {supported}")


@dataclass(frozen=True)
class ResponseSchema:
    """JSON schema template with an ``additionalProperties`` placeholder.

    Some vendors require ``"additionalProperties": false`` on every object
    of a structured-output schema, others reject the keyword. The template
    is therefore rendered in one of two modes:

    - lenient: the placeholder is removed
    - strict: the placeholder is replaced with ``"additionalProperties": false,``
    """
    template: str

    PLACEHOLDER: ClassVar[str] = "{{ADDITIONAL_PROPERTIES}}"
    ADDITIONAL_PROPERTIES: ClassVar[str] = '"additionalProperties": false,'

    def render(self, strict: bool) -> str:
        replacement = self.ADDITIONAL_PROPERTIES if strict else ""
        return self.template.replace(self.PLACEHOLDER, replacement)

    def lenient(self) -> str:
        return self.render(strict=False)

    def strict(self) -> str:
        return self.render(strict=True)

    def as_dict(self, strict: bool) -> Dict[str, Any]:
        """Rendered schema parsed into a JSON object for request bodies."""
        return json.loads(self.render(strict))


@dataclass(frozen=True)
class Prompt:
    """Provider-neutral prompt for one issue.

    ``rule_id`` is the short rule identifier (``S1234``) which is also used
    to select the relevant source files.
    """
    text: str
    rule_id: str
    system_prompt: Optional[str] = None
    response_schema: Optional[ResponseSchema] = None


@dataclass(frozen=True)
class AiResponse:
    """Raw text returned by a vendor, not yet decoded."""
    text: str
    usage: UsageMetadata


@dataclass(frozen=True)
class SourceFile:
    """A source file of the checked out repository."""
    file_path: str
    content: str


@dataclass(frozen=True)
class TextRange:
    start_line: int
    end_line: int


@dataclass(frozen=True)
class RuleIdentifier:
    """Identifier of an analysis rule, e.g. ``csharpsquid:S1234``."""
    rule_id: str

    @property
    def short_identifier(self) -> str:
        """Rule id without the rule repository prefix (``S1234``)."""
        return self.rule_id.rsplit(":", 1)[-1]


@dataclass(frozen=True)
class Rule:
    rule_id: str
    title: str
    description: str


@dataclass(frozen=True)
class Issue:
    """A finding reported by the static-analysis service."""
    rule: RuleIdentifier
    file_path: str
    range: TextRange


@dataclass(frozen=True)
class Project:
    project_key: str
    language: str


class Replacement(BaseModel):
    """Full-file rewrite proposed by the model for one file."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    new_code: str = Field(alias="newCode")
    file_path: str = Field(alias="filePath")


class ReplacementResponse(BaseModel):
    """Structured result every AI request has to produce."""
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    replacements: List[Replacement]


@dataclass
class RunMetadata:
    """Identity of the current run, shared by the orchestrator and the ledger."""
    correlation_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    branch_name: str = ""
    model_name: str = ""
    cache_name: Optional[str] = None
