"""Prompt construction shared by every provider."""
from typing import Optional
from byok.providers.events import GenerateOptions

SYSTEM_PROMPT = """You are a UI component generator. Generate a single, self-contained React component.

Rules:
- Export the component as the default export
- Include all necessary imports at the top
- Use only the specified component library for styling
- The component must be complete and ready to use
- Do not include any explanation, markdown, or code fences. Output ONLY the code
- Do not wrap the code in backticks or any formatting"""


def build_system_prompt(context_addition: Optional[str] = None) -> str:
    if context_addition:
        return f"{SYSTEM_PROMPT}\n\n{context_addition}"
    return SYSTEM_PROMPT


def build_user_prompt(options: GenerateOptions) -> str:
    """Turn generation options into the user prompt."""
    parts = [f"Generate a {options.framework} component:", options.prompt]

    if options.component_library and options.component_library != "none":
        parts.append(f"Use {options.component_library} for styling.")
    if options.style:
        parts.append(f"Design style: {options.style}.")
    if options.typescript:
        parts.append("Use TypeScript with proper type annotations.")
    else:
        parts.append("Use JavaScript.")

    return "\n".join(parts)
