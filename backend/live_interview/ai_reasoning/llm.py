import asyncio
import logging
from openai import AsyncOpenAI
from live_interview.core.config import OPENAI_API_KEY, SUGGESTION_MODEL, SUGGESTION_TIMEOUT_SEC
from live_interview.core.errors import GenerationError

logger = logging.getLogger("live_interview.ai_reasoning.llm")

client = AsyncOpenAI(api_key=OPENAI_API_KEY or "missing-key")


async def call_llm(
    prompt: str,
    system_prompt: str = "You are a strict JSON generator. Output JSON only.",
    timeout_sec: float = SUGGESTION_TIMEOUT_SEC,
) -> str:
    """
    Sends prompt to the chat model in JSON mode and returns the raw text.
    Caller parses. Raises GenerationError on timeout or backend failure;
    there is no retry.
    """
    if not str(prompt or "").strip():
        return "{}"

    try:
        response = await asyncio.wait_for(
            client.chat.completions.create(
                model=SUGGESTION_MODEL,
                messages=[
                    {
                        "role": "system",
                        "content": system_prompt,
                    },
                    {
                        "role": "user",
                        "content": prompt,
                    },
                ],
                response_format={"type": "json_object"},
                temperature=0.7,
            ),
            timeout=timeout_sec,
        )
    except asyncio.TimeoutError as exc:
        logger.warning("call_llm timeout | timeout_sec=%s", timeout_sec)
        raise GenerationError("suggestion backend timed out") from exc
    except Exception as exc:
        logger.warning("call_llm failure | err=%s", exc)
        raise GenerationError(f"suggestion backend failed: {exc}") from exc

    message = response.choices[0].message.content
    return str(message or "{}").strip() or "{}"
