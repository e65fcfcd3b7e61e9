import re

from bs4 import BeautifulSoup

UNWANTED_TAGS = ["script", "style", "noscript"]

_WHITESPACE = re.compile(r"\s+")


def html_to_text(html: str) -> str:
    if not html:
        return ""

    soup = BeautifulSoup(html, "html.parser")
    for unwanted in soup.find_all(UNWANTED_TAGS):
        unwanted.decompose()

    text = soup.get_text(separator=" ")
    return _WHITESPACE.sub(" ", text).strip()


def extract_excerpt(content: str, max_length: int = 200) -> str:
    text = html_to_text(content)
    if len(text) <= max_length:
        return text
    return text[:max_length].strip() + "..."
