# In scripts/check_gemini.py
# Quick manual check that the configured Gemini key and models respond.
# Usage: python scripts/check_gemini.py
import asyncio
import sys

from healthmate import ai_client
from healthmate.config import get_settings

settings = get_settings()

print("Checking Gemini connectivity...")
print(f"API key present: {'yes' if settings.gemini_api_key else 'no'}")
if not settings.gemini_api_key:
    print("Set GEMINI_API_KEY (or GOOGLE_API_KEY) in your .env file first.")
    sys.exit(1)

PROMPT = "Reply with a short greeting for a patient, first in English and then in " + settings.secondary_language + "."

failures = 0
for model_name in (settings.gemini_model, settings.gemini_fallback_model):
    print(f"\n--- {model_name} ---")
    try:
        text = asyncio.run(ai_client._generate(model_name, PROMPT))
        print(f"OK: {text[:200]}")
    except Exception as e:
        failures += 1
        print(f"FAILED: {e}")

print("\n--- chat round trip (with fallback) ---")
result = asyncio.run(ai_client.generate_chat_response("What does a normal hemoglobin level mean?"))
if result.success:
    print(f"OK via {result.model}: {result.response[:200]}")
else:
    failures += 1
    print(f"FAILED: {result.error}")

print("\nDone." if not failures else f"\nDone with {failures} failure(s).")
sys.exit(1 if failures else 0)
