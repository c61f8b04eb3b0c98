"""Attribute extraction — structured fields from content text via LiteLLM."""

from __future__ import annotations

import json
from typing import Any

import litellm

from quarry.db.models import Content, ExtractedAttributes
from quarry.db.store import Store
from quarry.extract.llm import ExtractionError, validate_api_key

_ATTRIBUTES_PROMPT = """\
Extract attributes from the following text. Reply with a single JSON object \
that conforms to this JSON schema and nothing else.

Schema:
{schema}

Text (first 8000 characters):
{text}

JSON:"""


class AttributeExtractor:
    """Extract a JSON object matching *schema* from content and upsert it.

    Args:
        store: Open Store instance.
        model: LiteLLM model string.
    """

    def __init__(self, store: Store, model: str = "openai/gpt-4o-mini") -> None:
        self._store = store
        self._model = model

    def extract(
        self, content: Content, extractor_name: str, index_name: str, schema: str
    ) -> ExtractedAttributes:
        validate_api_key(self._model)
        attributes = self._generate(content.text, schema)
        extracted = ExtractedAttributes.new(content.id, attributes, extractor_name)
        self._store.add_attributes(content.corpus, index_name, extracted)
        return extracted

    def _generate(self, text: str, schema: str) -> Any:
        prompt = _ATTRIBUTES_PROMPT.format(schema=schema, text=text[:8000])
        response = litellm.completion(
            model=self._model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0.0,
        )
        raw = (response.choices[0].message.content or "").strip()
        try:
            return json.loads(raw)
        except json.JSONDecodeError as exc:
            raise ExtractionError(f"model did not return JSON: {raw[:80]!r}") from exc
