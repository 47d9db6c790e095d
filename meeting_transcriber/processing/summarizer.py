"""Meeting summaries with an OpenAI chat model"""

from pathlib import Path
from typing import Dict, Optional

from openai import AsyncOpenAI

from ..config import BASE_DIR, SUMMARIZATION_MODEL, SUMMARIZATION_TEMPERATURE, MAX_SEGMENT_ATTEMPTS
from ..errors import PipelineError, ValidationError
from ..transcripts.backend import classify_error
from ..utils.helpers import Backoff, new_correlation_id, with_retry
from ..utils.logging import get_logger

logger = get_logger(__name__)

# Reasoning models reject the temperature parameter
NON_TEMPERATURE_MODELS = ('o1', 'o1-mini', 'o3-mini')

# Cost units per million tokens (input, output)
MODEL_PRICING = {
    'o3-mini': (0.000015, 0.000060),
    'gpt-4o-mini': (0.000015, 0.000060),
    'gpt-4o': (0.000050, 0.000150),
}

DEFAULT_SYSTEM_PROMPT = """Je bent een expert in het samenvatten van vergaderingen. Maak een beknopte maar volledige samenvatting van de volgende vergaderingstranscriptie in het Nederlands.

Structureer je samenvatting in de volgende secties:
1. Overzicht: Een korte introductie van het doel en de context van de vergadering
2. Belangrijkste discussiepunten: De hoofdonderwerpen die zijn besproken
3. Genomen beslissingen: Duidelijke beslissingen die tijdens de vergadering zijn genomen
4. Actiepunten: Specifieke taken die zijn toegewezen, inclusief wie verantwoordelijk is en deadlines indien vermeld
5. Vervolgstappen: Geplande volgende stappen of vergaderingen

Houd het professioneel, beknopt en actiegericht. Begin elke sectie met de sectienaam gevolgd door een dubbele punt, bijvoorbeeld "Overzicht: " of "Actiepunten: "."""


def count_tokens(text: str) -> int:
    """Rough token count, about four characters per token"""
    if not text:
        return 0
    return -(-len(text) // 4)


def estimate_text_cost(input_tokens: int, output_tokens: int, model: str) -> float:
    input_cost, output_cost = MODEL_PRICING.get(model, MODEL_PRICING['gpt-4o-mini'])
    return (input_tokens / 1_000_000) * input_cost + (output_tokens / 1_000_000) * output_cost


class Summarizer:
    """Summarize an assembled transcript"""

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str = SUMMARIZATION_MODEL,
        temperature: float = SUMMARIZATION_TEMPERATURE,
        prompts_dir: Optional[Path] = None,
        max_attempts: int = MAX_SEGMENT_ATTEMPTS,
        backoff: Optional[Backoff] = None,
        correlation_id: Optional[str] = None
    ):
        self.client = client
        self.model = model
        self.temperature = temperature
        self.prompts_dir = prompts_dir or BASE_DIR / "prompts"
        self.max_attempts = max_attempts
        self.backoff = backoff or Backoff()
        self.correlation_id = correlation_id or new_correlation_id()
        self.system_prompt = self._load_prompt("system_prompt.txt")
        self.last_usage: Dict[str, float] = {}

        logger.info(f"📝 Summarizer initialized with model: {self.model}")

    def _load_prompt(self, filename: str) -> str:
        """Load prompt from file with fallback to the default"""
        prompt_path = self.prompts_dir / filename
        if prompt_path.exists():
            content = prompt_path.read_text(encoding='utf-8').strip()
            if content:
                logger.debug(f"Loaded prompt from {filename}")
                return content
        return DEFAULT_SYSTEM_PROMPT

    def _request_options(self, transcript: str) -> dict:
        options = {
            'model': self.model,
            'messages': [
                {'role': 'system', 'content': self.system_prompt},
                {'role': 'user', 'content': transcript},
            ],
        }
        # Only add temperature for models that support it
        if self.model not in NON_TEMPERATURE_MODELS:
            options['temperature'] = self.temperature
        return options

    async def summarize(self, transcript: str) -> str:
        """Generate a summary; raises PipelineError subclasses on failure"""
        cid = self.correlation_id
        if not transcript or not transcript.strip():
            raise ValidationError("No transcript text to summarize")

        options = self._request_options(transcript)

        async def call():
            try:
                return await self.client.chat.completions.create(**options)
            except PipelineError:
                raise
            except Exception as e:
                raise classify_error(e) from e

        logger.info(f"[{cid}] 🤖 Generating summary with {self.model}...")
        response = await with_retry(call, max_attempts=self.max_attempts, backoff=self.backoff,
                                    correlation_id=cid, label="summary")

        summary = (response.choices[0].message.content or '').strip()
        input_tokens = count_tokens(transcript)
        usage = getattr(response, 'usage', None)
        output_tokens = getattr(usage, 'completion_tokens', None) or count_tokens(summary)
        self.last_usage = {
            'model': self.model,
            'input_tokens': input_tokens,
            'output_tokens': output_tokens,
            'cost': estimate_text_cost(input_tokens, output_tokens, self.model),
        }
        logger.info(f"[{cid}] ✅ Summary generated: {len(summary)} characters")
        return summary
