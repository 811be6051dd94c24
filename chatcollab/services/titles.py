import re

MAX_TITLE_LENGTH = 50
_WRAP_LENGTH = 47
_SENTENCE_SPLIT = re.compile(r"[.!?]+")


def derive_title(content: str) -> str:
    """Title for a new chat from its first user message."""
    clean = content.strip()
    if len(clean) <= MAX_TITLE_LENGTH:
        return clean

    first_sentence = _SENTENCE_SPLIT.split(clean, maxsplit=1)[0]
    if first_sentence and len(first_sentence) <= MAX_TITLE_LENGTH:
        return first_sentence.strip()

    title = ""
    for word in clean.split(" "):
        if len(f"{title} {word}") > _WRAP_LENGTH:
            break
        title = f"{title} {word}" if title else word
    if not title:
        title = clean[:_WRAP_LENGTH].rstrip()
    return title + "..."
