"""
供应商通信数据结构

定义 Chat Completions、图片生成以及 Gemini generateContent 的请求/响应格式。
"""

from typing import List, Optional

from pydantic import BaseModel, Field


# ==================== Chat Completions ====================

class ChatMessage(BaseModel):
    role: str
    content: Optional[str] = None


class ChatCompletionRequest(BaseModel):
    model: str
    messages: List[ChatMessage]
    temperature: float = 0.7
    max_tokens: int = 200


class ChatChoice(BaseModel):
    message: ChatMessage


class ChatCompletionResponse(BaseModel):
    choices: List[ChatChoice] = Field(default_factory=list)

    def first_text(self) -> Optional[str]:
        if not self.choices:
            return None
        return self.choices[0].message.content


# ==================== 图片生成 ====================

class ImageGenerationRequest(BaseModel):
    prompt: str
    model: str
    size: str = "1024x1024"
    quality: str = "hd"
    n: int = 1
    style: str = "vivid"


class ImageData(BaseModel):
    url: Optional[str] = None
    b64_json: Optional[str] = None
    revised_prompt: Optional[str] = None


class ImageGenerationResponse(BaseModel):
    data: List[ImageData] = Field(default_factory=list)


# ==================== Gemini ====================

class GeminiPart(BaseModel):
    text: Optional[str] = None


class GeminiContent(BaseModel):
    parts: List[GeminiPart] = Field(default_factory=list)


class GeminiGenerateContentRequest(BaseModel):
    contents: List[GeminiContent]


class GeminiCandidate(BaseModel):
    content: GeminiContent


class GeminiGenerateContentResponse(BaseModel):
    candidates: Optional[List[GeminiCandidate]] = None

    def first_text(self) -> Optional[str]:
        if not self.candidates:
            return None
        parts = self.candidates[0].content.parts
        return parts[0].text if parts else None
