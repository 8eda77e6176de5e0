import re

BULLETS = ["•", "◦", "‣", "▪", "▸", "►", "●", "○", "■", "□", "·"]

# call-to-action link text that survives extraction
LINK_PHRASES = re.compile(r"\b(View More|Learn More|Read More|See More)\b", re.IGNORECASE)


def normalize_text(s: str) -> str:
    if not s:
        return s
    s = s.replace("\r\n", "\n").replace("\r", "\n")
    for b in BULLETS:
        s = s.replace(b, " ")
    s = s.replace("\u00a0", " ")  # nbsp -> space
    s = s.replace("\u200b", "")  # zero-width space
    s = re.sub(r"[ \t]{2,}", " ", s)
    # keep table rows on their own lines but drop runs of blank lines
    s = re.sub(r"\n[ \t]*\n+", "\n", s)
    return s.strip()


def strip_link_phrases(s: str) -> str:
    s = LINK_PHRASES.sub("", s)
    return re.sub(r"[ \t]{2,}", " ", s).strip()


def clean_content(s: str) -> str:
    return normalize_text(strip_link_phrases(s))
