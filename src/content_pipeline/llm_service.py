"""Language-model service for chat completions and educational content."""

import json
import re
from typing import Any

from openai import AsyncOpenAI, OpenAIError
from pydantic import ValidationError as SchemaValidationError

from src.utils.logging import get_logger

from .config import ContentPipelineConfig
from .errors import ExternalServiceError, short_reason
from .schemas import EducationalContent, QuizQuestion

logger = get_logger(__name__)

_CODE_FENCE = re.compile(r"```(?:json)?\s*")

EDUCATIONAL_CONTENT_PROMPT = """You are an educational content creator. From a lecture video transcription, produce a JSON object with exactly these keys:
{{
  "summary": "structured summary with section headings and bullet points, under 400 words",
  "objectives": ["3 learning objectives"],
  "recommendedQuestions": ["5 questions a learner might ask"],
  "quiz": [{{"question": "...", "options": ["A", "B", "C", "D"], "answer": 0, "explanation": "..."}}]
}}
Write 10-20 quiz questions depending on content length. Respond in {language_name}. Return only the JSON object."""

LANGUAGE_NAMES = {"ko": "Korean", "en": "English", "ja": "Japanese", "zh": "Chinese"}


def parse_educational_content(raw: str) -> EducationalContent:
    """Parse the model's JSON reply, tolerating markdown code fences.

    Unparseable replies produce placeholder content with empty lists rather
    than an error; a transcript with a poor summary is still a usable result.
    """
    cleaned = _CODE_FENCE.sub("", raw.strip()).strip()
    try:
        data: Any = json.loads(cleaned)
    except json.JSONDecodeError:
        logger.warning("educational_content_unparseable", response_length=len(raw))
        return EducationalContent(
            summary="Educational content generation failed - please try again"
        )

    if not isinstance(data, dict):
        logger.warning("educational_content_not_object", response_type=type(data).__name__)
        return EducationalContent(
            summary="Educational content generation failed - please try again"
        )

    quiz = []
    for item in data.get("quiz") or []:
        try:
            quiz.append(QuizQuestion.model_validate(item))
        except SchemaValidationError:
            logger.warning("quiz_question_skipped")

    return EducationalContent(
        summary=data.get("summary") or "Summary generation failed",
        objectives=[str(o) for o in data.get("objectives") or [] if o],
        recommended_questions=[str(q) for q in data.get("recommendedQuestions") or [] if q],
        quiz=quiz,
    )


class LLMService:
    """Chat completion client over an OpenAI-compatible API."""

    def __init__(self, config: ContentPipelineConfig, client: AsyncOpenAI | None = None):
        self.config = config
        self.client = client or AsyncOpenAI(
            base_url=config.llm_base_url,
            api_key=config.llm_api_key or "ollama",
        )
        logger.info("llm_service_initialized", model=config.llm_model)

    async def chat_complete(
        self,
        messages: list[dict[str, str]],
        model: str | None = None,
        max_tokens: int | None = None,
        temperature: float | None = None,
    ) -> str:
        """Run a non-streaming chat completion.

        Args:
            messages: Chat messages with ``role`` and ``content``.
            model: Model override.
            max_tokens: Completion token cap override.
            temperature: Sampling temperature override.

        Returns:
            The assistant message text.

        Raises:
            ExternalServiceError: If the call fails or returns no content.
        """
        try:
            response = await self.client.chat.completions.create(
                model=model or self.config.llm_model,
                messages=messages,
                max_tokens=max_tokens or self.config.llm_max_tokens,
                temperature=(
                    temperature if temperature is not None else self.config.llm_temperature
                ),
            )
        except OpenAIError as e:
            logger.exception("chat_completion_failed", error_type=type(e).__name__)
            raise ExternalServiceError(
                f"Chat completion failed: {short_reason(str(e))}"
            ) from e

        if not response.choices or response.choices[0].message.content is None:
            raise ExternalServiceError("Chat completion returned no content")
        return response.choices[0].message.content

    async def generate_educational_content(
        self, text: str, language: str
    ) -> EducationalContent:
        """Produce summary, objectives, recommended questions and quiz.

        Args:
            text: Plain transcript text.
            language: Caption language code, used for the reply language.

        Returns:
            EducationalContent parsed from the model reply.
        """
        language_name = LANGUAGE_NAMES.get(language, "English")
        messages = [
            {
                "role": "system",
                "content": EDUCATIONAL_CONTENT_PROMPT.format(language_name=language_name),
            },
            {
                "role": "user",
                "content": f"Create educational content from this transcription:\n\n{text}",
            },
        ]
        raw = await self.chat_complete(messages)
        content = parse_educational_content(raw)
        logger.info(
            "educational_content_generated",
            summary_length=len(content.summary),
            objectives=len(content.objectives),
            recommended_questions=len(content.recommended_questions),
            quiz_questions=len(content.quiz),
        )
        return content
