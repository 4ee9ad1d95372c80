"""Extract bilingual descriptions from free-form model output."""

import re

from framespeak.models import Description

# Returned as the Chinese field when no structure could be recognized
UNPARSED_ZH = '无法解析中文描述。请检查LLM输出格式，确保包含 "EN:" 和 "ZH:" 标记。'

# (english pattern, chinese pattern) tried in order; the first pair where
# both match wins.
MARKER_PATTERNS = [
    (
        re.compile(r"EN:\s*(.+?)(?=\nZH:|$)", re.DOTALL),
        re.compile(r"ZH:\s*(.+?)$", re.DOTALL),
    ),
    (
        re.compile(r"English:\s*(.+?)(?=\nChinese:|\n中文:|$)", re.DOTALL),
        re.compile(r"(?:Chinese|中文):\s*(.+?)$", re.DOTALL),
    ),
    (
        re.compile(r"en:\s*(.+?)(?=\nzh:|$)", re.DOTALL | re.IGNORECASE),
        re.compile(r"zh:\s*(.+?)$", re.DOTALL | re.IGNORECASE),
    ),
]

PARAGRAPH_BREAK = re.compile(r"\n\n+")


def parse_description(content: str) -> Description:
    """
    Parse model output into English and Chinese text.

    Tries EN:/ZH: markers, then English:/Chinese: (or 中文:), then
    case-insensitive en:/zh:, then the first two blank-line separated
    paragraphs. If nothing matches, the whole text becomes the English
    field and the Chinese field is UNPARSED_ZH. Never raises.
    """
    for en_pattern, zh_pattern in MARKER_PATTERNS:
        en_match = en_pattern.search(content)
        zh_match = zh_pattern.search(content)
        if en_match and zh_match:
            return Description(en=en_match.group(1).strip(), zh=zh_match.group(1).strip())

    paragraphs = [p for p in PARAGRAPH_BREAK.split(content) if p.strip()]
    if len(paragraphs) >= 2:
        return Description(en=paragraphs[0].strip(), zh=paragraphs[1].strip())

    return Description(en=content.strip(), zh=UNPARSED_ZH)


def is_unparsed(description: Description) -> bool:
    return description.zh == UNPARSED_ZH
