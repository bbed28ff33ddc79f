"""Review agent: asks an LLM for advisory feedback on a finished quest attempt."""

from __future__ import annotations

from pathlib import Path

from owlquest.config import Config
from owlquest.models import QuestAttempt
from owlquest.prompts import REVIEW_SYSTEM, review_user_prompt


class ReviewAgent:
    def __init__(self, config: Config) -> None:
        self.config = config
        self._client = config.create_openai_client()

    def review(
        self,
        problem_text: str,
        source: str,
        attempt: QuestAttempt,
        language: str,
    ) -> str:
        user_prompt = review_user_prompt(problem_text, source, attempt, language)
        response = self._client.chat.completions.create(
            model=self.config.review_model,
            messages=[
                {"role": "system", "content": REVIEW_SYSTEM},
                {"role": "user", "content": user_prompt},
            ],
            temperature=self.config.review_temperature,
        )
        return response.choices[0].message.content or ""

    def review_file(self, problem_text: str, attempt: QuestAttempt) -> str:
        source = Path(attempt.submission.source).read_text(encoding="utf-8", errors="replace")
        return self.review(problem_text, source, attempt, attempt.submission.language)
