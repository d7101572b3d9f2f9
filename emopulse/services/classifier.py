"""
Emotion classifier backed by a hosted Claude model.

Both calls force a single tool so the model answers with structured JSON:

  print_emotion_scores           → EmotionScores (seven floats in [0, 1])
  print_advice_recommendation    → DailyAdvice   (one sentence + a song)

Any SDK error or unusable tool output is raised as ClassifierError, which
the scoring worker treats as transient.
"""
from __future__ import annotations

import json
import logging
from typing import Any, Protocol, Sequence

from anthropic import Anthropic, AnthropicBedrock, APIError
from pydantic import BaseModel, ValidationError

from emopulse.core.config import Settings
from emopulse.core.errors import ClassifierError
from emopulse.models.emotion_event import EMOTIONS
from emopulse.schemas.pipeline import DailyAdvice, EmotionScores

logger = logging.getLogger(__name__)


class EmotionClassifier(Protocol):
    def score(self, text: str) -> EmotionScores: ...

    def advise(self, scores: Sequence[EmotionScores]) -> DailyAdvice: ...


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------

EMOTION_SCORES_TOOL = {
    "name": "print_emotion_scores",
    "description": "Print emotion score of a given text.",
    "input_schema": {
        "type": "object",
        "properties": {
            name: {
                "type": "number",
                "description": f"Score for {name}, ranging from 0.0 to 1.0.",
            }
            for name in EMOTIONS
        },
        "required": list(EMOTIONS),
    },
}

DAILY_ADVICE_TOOL = {
    "name": "print_advice_recommendation",
    "description": "Print advice and song recommendation.",
    "input_schema": {
        "type": "object",
        "properties": {
            "advice": {"type": "string", "description": "The one sentence advice."},
            "song": {"type": "string", "description": "The name of the song."},
        },
        "required": ["advice", "song"],
    },
}

SCORING_PROMPT = (
    "You will be acting as an AI Empath. "
    "You are an expert at reading emotions within text messages and chats. "
    "The text given will be a message sent to a Slack channel of a company. "
    "The target text will be surrounded by <text></text>. "
    "Use the {tool} tool to print out the score for each emotion."
)

ADVICE_PROMPT = (
    "You are a mental health professional. "
    "You give advice to employees based on the emotion scores evaluated for the "
    "text messages they sent to Slack throughout the day. "
    "Scores are given one JSON object per line between <scores></scores>, "
    "earliest message first, each score in the range 0.0 to 1.0. "
    "Give a one sentence advice and recommend a song to listen to. "
    "Use the {tool} tool to print out the advice and the recommended song."
)


# ---------------------------------------------------------------------------
# Claude-backed classifier
# ---------------------------------------------------------------------------

class ClaudeEmotionClassifier:
    def __init__(self, client: Any, model: str, max_tokens: int = 512):
        self.client = client
        self.model = model
        self.max_tokens = max_tokens

    def _invoke_tool(self, tool: dict, system: str, content: str) -> dict:
        try:
            response = self.client.messages.create(
                model=self.model,
                max_tokens=self.max_tokens,
                system=system.format(tool=tool["name"]),
                messages=[{"role": "user", "content": content}],
                tools=[tool],
                tool_choice={"type": "tool", "name": tool["name"]},
            )
        except APIError as exc:
            raise ClassifierError(
                message=f"Model invocation failed: {exc}",
                details={"model": self.model, "tool": tool["name"]},
            ) from exc

        for block in response.content:
            if getattr(block, "type", None) == "tool_use" and block.name == tool["name"]:
                return dict(block.input)
        raise ClassifierError(
            message=f"Model returned no {tool['name']} tool call.",
            details={"model": self.model, "stop_reason": getattr(response, "stop_reason", None)},
        )

    @staticmethod
    def _parse(model_cls: type[BaseModel], payload: dict, tool_name: str):
        try:
            return model_cls.model_validate(payload)
        except ValidationError as exc:
            raise ClassifierError(
                message=f"Unusable {tool_name} output: {exc.error_count()} invalid field(s).",
                details={"payload": payload},
            ) from exc

    def score(self, text: str) -> EmotionScores:
        payload = self._invoke_tool(
            EMOTION_SCORES_TOOL, SCORING_PROMPT, f"<text>{text}</text>"
        )
        scores = self._parse(EmotionScores, payload, EMOTION_SCORES_TOOL["name"])
        logger.debug("scored %d chars: %s", len(text), scores.model_dump())
        return scores

    def advise(self, scores: Sequence[EmotionScores]) -> DailyAdvice:
        lines = "\n".join(json.dumps(s.model_dump()) for s in scores)
        payload = self._invoke_tool(
            DAILY_ADVICE_TOOL, ADVICE_PROMPT, f"<scores>\n{lines}\n</scores>"
        )
        return self._parse(DailyAdvice, payload, DAILY_ADVICE_TOOL["name"])


def build_classifier(settings: Settings) -> ClaudeEmotionClassifier:
    if settings.CLASSIFIER_BACKEND == "bedrock":
        client = AnthropicBedrock(aws_region=settings.AWS_REGION)
    elif settings.CLASSIFIER_BACKEND == "anthropic":
        client = Anthropic(api_key=settings.ANTHROPIC_API_KEY or None)
    else:
        raise ValueError(f"Unknown CLASSIFIER_BACKEND {settings.CLASSIFIER_BACKEND!r}")
    return ClaudeEmotionClassifier(
        client=client,
        model=settings.CHAT_MODEL,
        max_tokens=settings.CLASSIFIER_MAX_TOKENS,
    )
