# prepstream/llm_client.py
# Server side of POST /api/questions/generate: asks an Ollama model for a
# batch of multiple-choice questions and validates what comes back.
import json
import logging
import os
from typing import Any, List

import httpx
from pydantic import ValidationError

from prepstream.schemas import SUBJECTS, Filters, RawQuestion, valid_raw_questions

logger = logging.getLogger(__name__)

# Read variables from environment, ensuring defaults are correct for Docker
OLLAMA_URL = os.environ.get("OLLAMA_URL", "http://host.docker.internal:11434")
OLLAMA_MODEL_NAME = os.environ.get("OLLAMA_MODEL_NAME", "mistral:7b")
LLM_TIMEOUT_SECONDS = float(os.environ.get("LLM_TIMEOUT_SECONDS", "30"))


def subject_text(filters: Filters) -> str:
    if not filters.is_mixed:
        return filters.subject
    names = SUBJECTS[filters.exam]
    return ", ".join(names[:-1]) + f", or {names[-1]}"


def build_prompt(filters: Filters, count: int) -> str:
    subjects = "|".join(sorted({s for names in SUBJECTS.values() for s in names}))
    return f"""You are an expert exam setter for {filters.exam} (India).
Generate {count} distinct multiple choice questions.
Subject: {subject_text(filters)}.
Difficulty Level: {filters.difficulty}/5.
Language: {filters.language}.

CRITICAL FORMATTING RULES:
1. DO NOT use LaTeX syntax (no \\frac, \\sum, \\int, \\left, \\right, etc.)
2. Write mathematical expressions in plain readable text:
   - Instead of "\\frac{{a}}{{b}}" write "(a/b)" or "a divided by b"
   - Instead of "\\sqrt{{x}}" write "sqrt(x)" or "square root of x"
   - Instead of Greek letters like "\\omega" write "omega" or "w"
3. Use simple notation: ^2 for squared, ^3 for cubed
4. Write fractions as (numerator)/(denominator)

Requirements:
1. Questions must be conceptual or numerical, appropriate for {filters.exam} exam preparation.
2. Return ONLY a raw JSON array, no markdown code blocks.
3. Format: [{{ "text": "Question String", "options": ["A", "B", "C", "D"], "correctIndex": 0-3 (number), "solution": "Detailed explanation in plain text", "subject": "{subjects}" }}]
4. Ensure exactly one option is correct.
5. Make questions challenging but fair for the difficulty level.
6. All text MUST be human-readable without any special rendering."""


def extract_items(data: Any) -> List[Any]:
    """Accepts a bare array or an object wrapping one under "questions"."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("questions"), list):
        return data["questions"]
    raise ValueError(f"LLM output is not a question array (got {type(data).__name__})")


async def call_llm_api(model_name: str, prompt: str, timeout: float) -> Any:
    """Handles the actual API call to the Ollama endpoint."""
    url = f"{OLLAMA_URL}/api/generate"
    payload = {
        "model": model_name,
        "prompt": prompt,
        "stream": False,
        "format": "json",
    }

    logger.info("Attempting LLM call to %s with model %s", url, model_name)
    async with httpx.AsyncClient(timeout=timeout) as client:
        resp = await client.post(url, json=payload)
        resp.raise_for_status()
        raw_response = resp.json()

    json_str = raw_response.get("response", "")
    if not isinstance(json_str, str):
        return json_str
    # format=json should prevent fences, but models still emit them
    cleaned = json_str.strip().removeprefix("```json").removeprefix("```").removesuffix("```").strip()
    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as json_err:
        logger.error("Failed to decode JSON from LLM response string: %s", json_str)
        raise ValueError(f"Invalid JSON output structure from LLM: {json_err}") from json_err


async def generate_questions(filters: Filters, count: int, timeout: float = LLM_TIMEOUT_SECONDS) -> List[RawQuestion]:
    """
    Produces `count` validated questions or raises.

    Raises httpx.RequestError / httpx.HTTPStatusError when the model is
    unreachable, ValueError when no usable question comes back.
    """
    data = await call_llm_api(OLLAMA_MODEL_NAME, build_prompt(filters, count), timeout)
    items = extract_items(data)
    questions = valid_raw_questions(items)
    if not questions:
        raise ValueError(f"LLM output held no usable question among {len(items)} item(s)")
    logger.info("Generated %d question(s) using %s", len(questions), OLLAMA_MODEL_NAME)
    return questions[:count]


GENERATION_ERRORS = (httpx.RequestError, httpx.HTTPStatusError, ValueError, ValidationError)
