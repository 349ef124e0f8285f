"""Request builder — one system prompt for every backend.

Each adapter asks for a ``PromptParts`` with the options its backend
needs and then translates it into the backend's own wire schema.  No
adapter builds prompt text on its own.
"""

from __future__ import annotations

import json
from dataclasses import dataclass

from studiogen.models import GenerationRequest, ProjectFile

THOUGHT_SENTINEL = "\n---\n"

EMPTY_PROJECT_TEXT = "No files exist yet."
NO_ENV_TEXT = "No environment variables are currently set."

_ROLE = (
    "You are an expert senior full-stack engineer specializing in creating "
    "complete, functional, and aesthetically pleasing web applications."
)

_GUIDELINES = [
    "Your primary goal is to generate all necessary code files based on the user's prompt. "
    "You are proficient in a wide range of web technologies including HTML, CSS, JavaScript, "
    "TypeScript, React, Vue, Svelte, Node.js, and more.",
    'Always generate complete, runnable code. Do not use placeholders like "// your code here".',
    "For standard web projects, create an 'index.html', a CSS file for styles (e.g., 'style.css'), "
    "and a JavaScript file for logic (e.g., 'script.js').",
    "For React projects, use functional components, TypeScript (.tsx), and hooks.",
    "For styling, you can use Tailwind CSS via CDN in index.html or generate separate CSS files, "
    "whichever is more appropriate for the user's request.",
    "The file structure should be logical (e.g., components/, services/, assets/).",
]

_SUPABASE_CLIENT_ONLY = (
    "If a 'services/supabase.ts' file exists, it means the project is integrated with Supabase. "
    "Use the exported Supabase client from that file for any data-related tasks. "
    "Do not re-initialize the client."
)

_SUPABASE_ADMIN = (
    "If a 'services/supabase.ts' file exists, it means the project is integrated with Supabase. "
    "You have the ability to execute SQL queries on the user's Supabase database."
)

# Integrations that ask the model to declare environment variables.  The
# host fills the declared keys from its own secrets when reconciling.
_INTEGRATIONS = """\
- SPECIAL COMMAND: If the user's prompt asks for an AI feature, integrate a client-side Gemini AI feature into the project. To do this:
  - 1. Create a new file 'services/gemini.ts'. This file should initialize the Gemini client and export a function to call the Gemini model.
  - 2. The API key for this service MUST be read from an environment variable named 'GEMINI_API_KEY' (e.g., 'process.env.GEMINI_API_KEY').
  - 3. In your JSON response, you MUST include the 'environmentVariables' field and create a key named 'GEMINI_API_KEY'. Set its value to an empty string. The application will automatically populate it with the user's key.
  - 4. Update the application's UI and logic files to import and use the new Gemini service.
- INTEGRATION - STRIPE: If the user asks to add payments or mentions Stripe, integrate it.
  - 1. Add 'https://js.stripe.com/v3/' script tag to index.html.
  - 2. Create a component to handle the checkout flow using Stripe.js.
  - 3. You MUST include 'STRIPE_PUBLIC_KEY' and 'STRIPE_SECRET_KEY' in the 'environmentVariables' field of your JSON response. The application will automatically populate them. Use 'process.env.STRIPE_PUBLIC_KEY' in the frontend code.
- INTEGRATION - NEON DB: If the user asks for a backend with a database or mentions Neon, you can use it.
  - 1. Explain that you will generate placeholder backend code that uses a PostgreSQL database.
  - 2. You MUST include 'NEON_CONNECTION_STRING' in the 'environmentVariables' field of your JSON response. The application will populate it.
  - 3. Generate example backend code that uses a library like 'pg' to connect using 'process.env.NEON_CONNECTION_STRING'.
- INTEGRATION - MAPS: If the user asks for a map, integrate OpenStreetMap using the Leaflet.js library.
  - 1. Add Leaflet CSS and JS links to index.html.
  - 2. Create a component that initializes a map centered on a default location."""

_THOUGHT_INSTRUCTION = (
    'IMPORTANT: You MUST begin your response with a short, single-line "thought" message '
    "explaining what you are about to do. After this line, you MUST add a separator '---' "
    "on a new line. Then, begin the main JSON response."
)

_MINIMAL_SCHEMA = (
    "You MUST respond with a single, valid JSON object and nothing else. Do not wrap the JSON "
    'in markdown backticks or any other text. The JSON object must contain two keys: "message" '
    '(a friendly, conversational message to the user) and "files" (an array of file objects). '
    'Each file object must have "name", "language", and "content".'
)

_FULL_SCHEMA = """\
You MUST respond with a single, valid JSON object and nothing else. Do not wrap the JSON in markdown backticks or any other text. The JSON object must contain the "message" and "files" keys, and can optionally contain "summary", "environmentVariables", and "supabaseAdminAction".
  - "message": (string) A friendly, conversational message to the user.
  - "files": (array) An array of file objects. Each file object must have "name", "language", and "content".
  - "summary": (string, optional) A markdown string summarizing the files created or updated.
  - "environmentVariables": (object, optional) An object of environment variables to set. To delete a variable, set its value to null.
  - "supabaseAdminAction": (object, optional) To execute a database modification (e.g., create a table), provide an object with a "query" key containing the SQL statement to execute. Example: { "query": "CREATE TABLE posts (id bigint primary key, title text);" }. Use this ONLY for database schema or data manipulation."""


@dataclass(frozen=True)
class PromptOptions:
    """Per-backend switches for the shared prompt."""

    thought_preamble: bool = False
    # Environment section, integrations, optional result fields and the
    # admin-action ability
    full_schema: bool = True


@dataclass(frozen=True)
class PromptParts:
    """Provider-neutral prompt: adapters map this onto their wire format."""

    system: str
    user: str


def render_files(files: tuple[ProjectFile, ...] | list[ProjectFile]) -> str:
    """Render project files as ``--- FILE: name ---`` blocks."""
    if not files:
        return EMPTY_PROJECT_TEXT
    blocks = [
        f"--- FILE: {f.name} ---\n```{f.language}\n{f.content}\n```\n" for f in files
    ]
    return "\n".join(blocks)


def render_environment(environment: dict[str, str]) -> str:
    if not environment:
        return NO_ENV_TEXT
    return (
        "The following environment variables are available to the project via "
        "'process.env.VARIABLE_NAME':\n" + json.dumps(environment, indent=2)
    )


def build_system_prompt(
    files: tuple[ProjectFile, ...] | list[ProjectFile],
    environment: dict[str, str],
    options: PromptOptions = PromptOptions(),
) -> str:
    """Assemble the system prompt for the current project state."""
    lines = [_ROLE]
    lines.extend(f"- {g}" for g in _GUIDELINES)
    lines.append(f"- {_SUPABASE_ADMIN if options.full_schema else _SUPABASE_CLIENT_ONLY}")
    if options.full_schema:
        lines.append(_INTEGRATIONS)
    if options.thought_preamble:
        lines.append(f"- {_THOUGHT_INSTRUCTION}")
    lines.append(f"- {_FULL_SCHEMA if options.full_schema else _MINIMAL_SCHEMA}")

    prompt = "\n".join(lines)
    prompt += f"\n\nCurrent project files:\n{render_files(files)}\n"
    if options.full_schema:
        prompt += f"\n{render_environment(environment)}\n"
    return prompt


def build_prompt(request: GenerationRequest, options: PromptOptions = PromptOptions()) -> PromptParts:
    """Build the system/user prompt pair for *request*."""
    return PromptParts(
        system=build_system_prompt(request.existing_files, request.environment, options),
        user=request.prompt,
    )


__all__ = [
    "EMPTY_PROJECT_TEXT",
    "NO_ENV_TEXT",
    "PromptOptions",
    "PromptParts",
    "THOUGHT_SENTINEL",
    "build_prompt",
    "build_system_prompt",
    "render_environment",
    "render_files",
]
