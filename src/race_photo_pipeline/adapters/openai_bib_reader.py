"""OpenAI Responses API bib reader."""

import base64
import json
from dataclasses import dataclass

from openai import AsyncOpenAI

from race_photo_pipeline.domain.pipeline import BibDetection
from race_photo_pipeline.services.ocr import BibReader, extract_bib_numbers

PROVIDER = "openai"

BIB_SCHEMA: dict[str, object] = {
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "numbers": {"type": "array", "items": {"type": "string"}},
        "confidence": {"type": "number"},
    },
    "required": ["numbers", "confidence"],
}

BIB_PROMPT = (
    "List every race bib number visible on runners in this photo. "
    "Return digits only, one entry per bib. Ignore clocks, dates, "
    "sponsor logos and advertising. Give an overall confidence from 0 to 100."
)


@dataclass
class OpenAIBibReader(BibReader):
    """Bib reader backed by OpenAI structured outputs."""

    client: AsyncOpenAI
    model: str

    @classmethod
    def create(cls, api_key: str, model: str) -> "OpenAIBibReader":
        """Create an OpenAI bib reader."""
        return cls(client=AsyncOpenAI(api_key=api_key), model=model)

    async def detect_bibs(
        self, image_bytes: bytes, hints: frozenset[str] | None = None
    ) -> BibDetection:
        """Ask the model for bib numbers and filter them like other engines."""
        encoded = base64.b64encode(image_bytes).decode("ascii")
        response = await self.client.responses.create(
            model=self.model,
            input=[
                {
                    "role": "user",
                    "content": [
                        {"type": "input_text", "text": BIB_PROMPT},
                        {
                            "type": "input_image",
                            "image_url": f"data:image/jpeg;base64,{encoded}",
                        },
                    ],
                }
            ],
            text={
                "format": {
                    "type": "json_schema",
                    "name": "bib_numbers",
                    "strict": True,
                    "schema": BIB_SCHEMA,
                }
            },
            store=False,
        )
        output_text = response.output_text
        if not output_text:
            raise RuntimeError("OpenAI returned an empty response")
        payload = json.loads(output_text)
        numbers = extract_bib_numbers(payload.get("numbers", []), hints)
        confidence = float(payload.get("confidence") or 0.0) if numbers else 0.0
        return BibDetection(numbers=numbers, confidence=confidence, provider=PROVIDER)

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.client.close()
