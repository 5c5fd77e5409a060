"""File attachment loading for inference requests.

PDFs are passed to providers as base64 documents; Markdown and plain text
are read as UTF-8 and inlined into the prompt, truncated to a configurable
number of characters.
"""

import base64
from pathlib import Path

from agentpad.domain.models import FileAttachment
from agentpad.infrastructure.exceptions import AttachmentError

DEFAULT_TEXT_LIMIT = 120_000

MIME_BY_SUFFIX = {
    ".pdf": "application/pdf",
    ".md": "text/markdown",
    ".txt": "text/plain",
}


def truncate_text(text: str, limit: int = DEFAULT_TEXT_LIMIT) -> str:
    """Cut text to ``limit`` characters with a marker; negative means unlimited."""
    if limit < 0 or len(text) <= limit:
        return text
    return f"{text[:limit]}\n\n[Truncated to {limit} characters]"


def load_file_payload(
    file_path: str | Path,
    mime_type: str | None = None,
    original_name: str | None = None,
    text_limit: int = DEFAULT_TEXT_LIMIT,
) -> FileAttachment:
    """Read a file into a FileAttachment.

    Args:
        file_path: Path on disk
        mime_type: Stored MIME type, if known; takes precedence over the suffix
        original_name: Display name (defaults to the file name)
        text_limit: Character limit for inlined text

    Raises:
        AttachmentError: If the file is missing or unreadable
    """
    path = Path(file_path).expanduser().resolve()
    if not path.is_file():
        raise AttachmentError("file_missing_on_disk")

    meta_mime = (mime_type or "").lower()
    suffix = path.suffix.lower()
    if "pdf" in meta_mime:
        suffix = ".pdf"
    elif "markdown" in meta_mime:
        suffix = ".md"
    elif meta_mime.startswith("text"):
        suffix = ".txt"

    name = original_name or path.name
    resolved_mime = meta_mime or MIME_BY_SUFFIX.get(suffix, "application/octet-stream")

    try:
        if suffix == ".pdf":
            data = path.read_bytes()
            return FileAttachment(
                name=name,
                mime_type="application/pdf",
                kind="pdf",
                base64_data=base64.b64encode(data).decode("ascii"),
            )
        text = path.read_text(encoding="utf-8", errors="replace")
    except OSError as e:
        raise AttachmentError(f"file_read_failed ({e.strerror or e})") from e

    return FileAttachment(
        name=name,
        mime_type=resolved_mime,
        kind="text",
        text=truncate_text(text, text_limit),
    )


def build_file_context_block(attachment: FileAttachment | None) -> str:
    """Prompt block naming the file and carrying its text, if any."""
    if attachment is None or not attachment.text:
        return ""
    return f"Attached file: {attachment.name}\n\n{attachment.text}".strip()


def append_attachment_to_prompt(prompt: str, attachment: FileAttachment | None) -> str:
    """Inline a text attachment into the user prompt."""
    block = build_file_context_block(attachment)
    if not block:
        return prompt
    return (
        f"{prompt}\n\n<attached_file>\n\nFile attachment content:\n\n{block}\n\n</attached_file>"
    ).strip()
