"""Tests for services/prompt_builder.py -- the shared request builder."""

from studiogen.models import ProjectFile
from studiogen.services.prompt_builder import (
    EMPTY_PROJECT_TEXT,
    NO_ENV_TEXT,
    PromptOptions,
    build_prompt,
    build_system_prompt,
    render_files,
)
from tests.conftest import make_request


def test_render_files_blocks():
    text = render_files([ProjectFile(name="index.html", language="html", content="<p>hi</p>")])
    assert "--- FILE: index.html ---" in text
    assert "```html\n<p>hi</p>\n```" in text


def test_empty_project_and_env_sections():
    prompt = build_system_prompt([], {})
    assert EMPTY_PROJECT_TEXT in prompt
    assert NO_ENV_TEXT in prompt


def test_environment_rendered_as_json():
    prompt = build_system_prompt([], {"API_URL": "https://example.com"})
    assert '"API_URL": "https://example.com"' in prompt
    assert NO_ENV_TEXT not in prompt


def test_full_schema_lists_optional_fields():
    prompt = build_system_prompt([], {})
    assert '"environmentVariables"' in prompt
    assert '"supabaseAdminAction"' in prompt
    assert "STRIPE_PUBLIC_KEY" in prompt


def test_minimal_schema_for_reduced_backends():
    prompt = build_system_prompt([], {"SECRET": "x"}, PromptOptions(full_schema=False))
    assert "supabaseAdminAction" not in prompt
    assert "SECRET" not in prompt
    assert NO_ENV_TEXT not in prompt
    assert "Do not re-initialize the client." in prompt


def test_thought_instruction_only_when_requested():
    assert "separator '---'" not in build_system_prompt([], {})
    assert "separator '---'" in build_system_prompt([], {}, PromptOptions(thought_preamble=True))


def test_build_prompt_user_is_raw_prompt():
    parts = build_prompt(make_request("Add a dark mode toggle"))
    assert parts.user == "Add a dark mode toggle"
    assert "Current project files:" in parts.system
