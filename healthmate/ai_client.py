import asyncio
import logging
from dataclasses import dataclass
from typing import Any

import google.generativeai as genai
import requests
from google.generativeai.types import HarmBlockThreshold, HarmCategory

from healthmate.config import get_settings
from healthmate.parser import parse_analysis_text
from healthmate.schemas import AiSummary

logger = logging.getLogger(__name__)

# Medical reports routinely mention anatomy, injuries and medication doses;
# the default thresholds block too many of them.
SAFETY_SETTINGS = {
    HarmCategory.HARM_CATEGORY_HARASSMENT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_HATE_SPEECH: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_SEXUALLY_EXPLICIT: HarmBlockThreshold.BLOCK_NONE,
    HarmCategory.HARM_CATEGORY_DANGEROUS_CONTENT: HarmBlockThreshold.BLOCK_NONE,
}

MEDICAL_ANALYSIS_PROMPT = """
You are a medical AI assistant specializing in analyzing medical reports. Please analyze the provided medical report and provide a comprehensive response in the following format:

**ANALYSIS FORMAT:**
1. **English Summary**: Provide a clear, easy-to-understand summary of the medical report in English
2. **{language} Summary**: Translate the key findings into {language} for better accessibility
3. **Key Findings**: List the most important findings from the report
4. **Abnormal Values**: Highlight any values that are outside normal ranges
5. **Recommendations**: Provide general health recommendations based on the report
6. **Questions for Doctor**: Suggest specific questions the patient should ask their doctor

Put each section title on its own line and write every list item on a single line starting with "- ".

**IMPORTANT GUIDELINES:**
- Use simple, non-medical language that patients can understand
- Always emphasize that this is not a substitute for professional medical advice
- Be encouraging and supportive in your tone
- For {language}, use simple wording that's easy to read
- Focus on actionable insights and next steps
- If you notice any concerning values, mention them clearly but reassuringly

**DISCLAIMER**: Always include a disclaimer that this analysis is for informational purposes only and the patient should consult with a qualified healthcare professional for proper medical advice.

Please analyze the attached medical report now.
"""

CHAT_PROMPT = """
You are HealthMate, a friendly medical AI assistant.
User's question: {message}
Context: {context}

Provide your response in:
1. English (clear and informative)
2. {language} (simple transliteration)
Remind them to consult a qualified doctor.
"""


@dataclass(frozen=True)
class AnalysisResult:
    success: bool
    data: AiSummary | None = None
    raw_response: str | None = None
    error: str | None = None
    model: str | None = None


@dataclass(frozen=True)
class ChatResult:
    success: bool
    response: str | None = None
    error: str | None = None
    model: str | None = None


_configured_key: str | None = None


def _ensure_configured() -> None:
    global _configured_key
    api_key = get_settings().gemini_api_key
    if not api_key:
        raise RuntimeError("GEMINI_API_KEY is not configured")
    if api_key != _configured_key:
        genai.configure(api_key=api_key)
        _configured_key = api_key


def resolve_mime_type(mime_hint: str | None) -> str:
    hint = (mime_hint or "").lower()
    if "pdf" in hint:
        return "application/pdf"
    if hint in ("image/jpeg", "image/jpg"):
        return "image/jpeg"
    return "image/png"


def _fetch_file(file_url: str) -> bytes:
    response = requests.get(file_url, timeout=get_settings().file_fetch_timeout)
    response.raise_for_status()
    return response.content


async def _generate(model_name: str, contents: Any) -> str:
    _ensure_configured()
    model = genai.GenerativeModel(model_name)
    response = await model.generate_content_async(contents, safety_settings=SAFETY_SETTINGS)
    # `.text` raises ValueError when the candidate was blocked
    text = (response.text or "").strip()
    if not text:
        raise ValueError(f"Model {model_name} returned an empty response. Details: {response.prompt_feedback}")
    return text


async def _generate_with_fallback(contents: Any) -> tuple[str, str]:
    """Try the primary model once, then the fallback model with the same payload."""
    settings = get_settings()
    try:
        return await _generate(settings.gemini_model, contents), settings.gemini_model
    except Exception as primary_error:
        logger.warning(
            "Primary model %s failed (%s). Trying fallback model %s...",
            settings.gemini_model,
            primary_error,
            settings.gemini_fallback_model,
        )
    return await _generate(settings.gemini_fallback_model, contents), settings.gemini_fallback_model


async def analyze_report(file_url: str, mime_hint: str | None) -> AnalysisResult:
    """Fetch a stored report and ask Gemini for a structured, bilingual summary."""
    settings = get_settings()
    try:
        file_bytes = await asyncio.to_thread(_fetch_file, file_url)
        contents = [
            MEDICAL_ANALYSIS_PROMPT.format(language=settings.secondary_language),
            # The SDK base64-encodes inline blobs on the wire
            {"mime_type": resolve_mime_type(mime_hint), "data": file_bytes},
        ]
        text, model_name = await _generate_with_fallback(contents)
    except Exception as e:
        logger.error("Gemini analysis error for %s: %s", file_url, e)
        return AnalysisResult(success=False, error=str(e) or e.__class__.__name__)

    summary = parse_analysis_text(text, settings.secondary_language)
    return AnalysisResult(success=True, data=summary, raw_response=text, model=model_name)


async def generate_chat_response(user_message: str, context: str = "") -> ChatResult:
    settings = get_settings()
    prompt = CHAT_PROMPT.format(
        message=user_message,
        context=context,
        language=settings.secondary_language,
    )
    try:
        text, model_name = await _generate_with_fallback(prompt)
    except Exception as e:
        logger.error("Gemini chat error: %s", e)
        return ChatResult(success=False, error=str(e) or e.__class__.__name__)
    return ChatResult(success=True, response=text, model=model_name)
