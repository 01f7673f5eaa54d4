"""Turn attached files into prompt text.

Only plain-text formats are read here; anything else is reported back as an
``Error:`` string so it still shows up in the prompt instead of aborting the
message.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from localchat.tokens import estimate_token_count

logger = logging.getLogger(__name__)

TEXT_EXTENSIONS = {
    ".txt", ".md", ".markdown", ".rst", ".csv", ".tsv", ".json", ".jsonl", ".xml",
    ".yaml", ".yml", ".toml", ".ini", ".cfg", ".log", ".html", ".htm", ".css",
    ".py", ".js", ".ts", ".tsx", ".jsx", ".java", ".c", ".h", ".cpp", ".hpp",
    ".cs", ".go", ".rs", ".rb", ".php", ".sh", ".sql", ".swift", ".kt",
}
MAX_FILE_BYTES = 5 * 1024 * 1024


@dataclass(frozen=True, slots=True)
class AttachmentPrompt:
    display_text: str
    prompt: str
    token_estimate: int


def extract_file_content(path: str | Path) -> str:
    path = Path(path)
    if not path.is_file():
        return f"Error: File not found: {path}"

    suffix = path.suffix.lower()
    if suffix and suffix not in TEXT_EXTENSIONS:
        return f"Error: Unsupported file type: {suffix}"

    size = path.stat().st_size
    if size > MAX_FILE_BYTES:
        return f"Error: File too large ({size} bytes, limit {MAX_FILE_BYTES})"

    try:
        raw = path.read_bytes()
    except OSError as e:
        logger.error(f"Failed to read {path}: {e}")
        return "Error: Failed to process file. Please try again."

    if b"\x00" in raw[:4096]:
        return "Error: Binary content is not supported"
    return raw.decode("utf-8", errors="replace")


def format_file_block(name: str, content: str) -> str:
    if content.startswith("Error:"):
        return f"File: {name}\n{content}"
    return f"### File: {name} ###\nContent:\n{content}\n### End of {name} ###"


def build_attachment_prompt(prompt: str, paths: Iterable[str | Path]) -> AttachmentPrompt:
    paths = [Path(p) for p in paths]
    prompt = prompt.strip()
    if not paths:
        return AttachmentPrompt(
            display_text=prompt, prompt=prompt, token_estimate=estimate_token_count(prompt)
        )

    listing = "\n".join(f"File: {p.name}" for p in paths)
    display_text = f"{prompt}\n\nAttached files:\n{listing}"

    blocks = []
    for path in paths:
        content = extract_file_content(path)
        if content.startswith("Error:"):
            logger.warning(f"Attachment {path.name}: {content}")
        blocks.append(format_file_block(path.name, content))

    full_prompt = f"{prompt}\n\nProcessed file contents:\n\n" + "\n\n".join(blocks)
    return AttachmentPrompt(
        display_text=display_text,
        prompt=full_prompt,
        token_estimate=estimate_token_count(full_prompt),
    )
