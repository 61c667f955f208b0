import json
import os

import markdown
import nh3
import requests
from flask import current_app
from markupsafe import Markup

FALLBACK_REPLY = 'Sorry, I could not process that request.'


class AssistantError(Exception):
    """Upstream generative API failure or missing configuration."""


def _to_gemini_contents(messages):
    return [
        {
            'role': 'user' if msg.get('role') == 'user' else 'model',
            'parts': [{'text': msg.get('content', '')}],
        }
        for msg in messages
    ]


def generate_reply(system_prompt, messages):
    """Send the system prompt plus transcript to Gemini and return the reply text."""
    api_key = current_app.config.get('GEMINI_API_KEY')
    if not api_key:
        raise AssistantError('API key not configured.')

    model = current_app.config.get('GEMINI_MODEL', 'gemini-2.0-flash')
    api_url = f"{current_app.config['GEMINI_API_BASE']}/models/{model}:generateContent"
    contents = _to_gemini_contents([{'role': 'system', 'content': system_prompt}] + list(messages))
    try:
        response = requests.post(
            api_url,
            params={'key': api_key},
            json={'contents': contents},
            headers={'Content-Type': 'application/json'},
            timeout=30,
        )
    except requests.exceptions.RequestException as e:
        current_app.logger.error("Gemini API unreachable: %s", e)
        raise AssistantError('The AI service is unavailable.') from e

    if not response.ok:
        current_app.logger.error("Gemini API error: %s", response.text)
        raise AssistantError('Error from Gemini API: ' + response.text)

    result = response.json()
    candidates = result.get('candidates') or [{}]
    parts = (candidates[0].get('content') or {}).get('parts') or [{}]
    return parts[0].get('text') or FALLBACK_REPLY


def report_system_prompt(report_data):
    return (
        'You are a helpful business analyst for "Brankas Kita". '
        'Analyze this weekly report and answer questions.\n'
        f"Report Data: {json.dumps(report_data, default=str)}"
    )


def ask_report_assistant(report_data, messages):
    return generate_reply(report_system_prompt(report_data), messages)


def load_knowledge_base():
    path = os.path.join(current_app.root_path, 'data', 'helpuser.csv')
    try:
        with open(path, encoding='utf-8') as f:
            return f.read()
    except OSError:
        current_app.logger.warning("Knowledge base not found at %s", path)
        return ''


def ask_help_assistant(messages):
    """Customer help chatbot grounded on the bundled knowledge base."""
    system_prompt = (
        f"Here is the Brankas Kita knowledge base:\n{load_knowledge_base()}\n"
        'Learn this data and use it to answer user questions in the context they ask. '
        'Understand the context of each question first, then give a relevant answer '
        'based on the data above. Answer in clear, correct English.'
    )
    user_messages = [m for m in messages if m.get('role') != 'system']
    return generate_reply(system_prompt, user_messages)


REPLY_TAGS = {'p', 'br', 'strong', 'em', 'ul', 'ol', 'li', 'code', 'pre'}


def render_reply(text):
    """Render the reply's markdown and strip everything outside REPLY_TAGS."""
    html = markdown.markdown(text or '', extensions=['nl2br'])
    return Markup(nh3.clean(html, tags=REPLY_TAGS, attributes={}))
