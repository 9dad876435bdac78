import logging

import requests
from django.conf import settings
from rest_framework.exceptions import ValidationError

from clinic.exceptions import AICreditsExhausted, AIGatewayError, AIRateLimited

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """You are a medical assistant for doctors in Malaysia. Your role is to enhance consultation notes by:

GRAMMAR & SPELLING ONLY:
- Fix grammatical errors and typos
- Correct medical terminology spelling
- Maintain original medical context exactly
- Preserve all medical facts and observations

LANGUAGE REQUIREMENTS:
- Use proper Malaysian English medical terminology
- Include appropriate Malay medical terms when contextually correct
- NEVER use Indonesian language or terminology
- Maintain professional medical tone

STRICT CONSTRAINTS:
- DO NOT add new medical information
- DO NOT expand content beyond original scope
- DO NOT change medical meanings or diagnoses
- DO NOT add symptoms or findings not mentioned
- ONLY improve language clarity and correctness

OUTPUT: Return only the corrected text, maintaining original structure and length."""


def enhance_notes(notes: str) -> str:
    """Send ``notes`` through the chat-completions gateway for a grammar pass."""
    notes = (notes or '').strip()
    if not notes:
        raise ValidationError({'notes': 'Notes cannot be empty'})
    if not settings.AI_GATEWAY_API_KEY:
        logger.error('AI gateway API key is not configured')
        raise AIGatewayError('AI gateway is not configured')

    try:
        r = requests.post(
            settings.AI_GATEWAY_URL,
            headers={'Authorization': f'Bearer {settings.AI_GATEWAY_API_KEY}'},
            json={
                'model': settings.AI_GATEWAY_MODEL,
                'messages': [
                    {'role': 'system', 'content': SYSTEM_PROMPT},
                    {'role': 'user', 'content': notes},
                ],
            },
            timeout=settings.AI_GATEWAY_TIMEOUT,
        )
    except requests.RequestException as e:
        logger.error('AI gateway request failed: %s', e)
        raise AIGatewayError() from e

    if r.status_code == 429:
        raise AIRateLimited()
    if r.status_code == 402:
        raise AICreditsExhausted()
    if not r.ok:
        logger.error('AI gateway error: %s %s', r.status_code, r.text[:500])
        raise AIGatewayError()

    try:
        content = r.json()['choices'][0]['message']['content']
    except (ValueError, KeyError, IndexError, TypeError) as e:
        logger.error('unexpected AI gateway response: %s', r.text[:500])
        raise AIGatewayError() from e
    return (content or '').strip()
