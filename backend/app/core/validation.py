"""
Input sanitization for free-text fields (names, descriptions, reasons, PIX keys).
"""


def sanitize_user_input(text: str, max_length: int = 10000) -> str:
    """
    Drop null bytes and control characters, trim surrounding whitespace and
    cut the text to max_length.
    """
    if not text:
        return ""

    text = text.replace('\x00', '')
    text = ''.join(char for char in text if ord(char) >= 32 or char in '\n\r\t')
    return text.strip()[:max_length]
