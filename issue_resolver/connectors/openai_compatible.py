"""Response envelope shared by chat-completion style APIs."""

from typing import List, Optional

from pydantic import BaseModel


class ChatMessage(BaseModel):
    role: Optional[str] = None
    content: Optional[str] = None


class ChatChoice(BaseModel):
    index: int = 0
    message: Optional[ChatMessage] = None
    finish_reason: Optional[str] = None


class CompletionTokensDetails(BaseModel):
    reasoning_tokens: Optional[int] = None


class ChatUsage(BaseModel):
    prompt_tokens: Optional[int] = None
    completion_tokens: Optional[int] = None
    total_tokens: Optional[int] = None
    prompt_cache_hit_tokens: Optional[int] = None
    completion_tokens_details: Optional[CompletionTokensDetails] = None


class ChatCompletionResponse(BaseModel):
    choices: List[ChatChoice] = []
    usage: Optional[ChatUsage] = None

    def assistant_choice(self) -> Optional[ChatChoice]:
        """First assistant choice by index."""
        for choice in sorted(self.choices, key=lambda item: item.index):
            if choice.message is not None and choice.message.role == "assistant":
                return choice
        return None
