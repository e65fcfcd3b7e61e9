from typing import Any


def rich_text_to_plain(rich_text: list[dict[str, Any]] | None) -> str:
    parts: list[str] = []
    for segment in rich_text or []:
        text = segment.get("plain_text")
        if text is None:
            text = (segment.get("text") or {}).get("content", "")
        parts.append(text)
    return "".join(parts)


def block_text(block: dict[str, Any]) -> str:
    content = block.get(block.get("type", "")) or {}
    if not isinstance(content, dict):
        return ""
    return rich_text_to_plain(content.get("rich_text"))


PREFIXES = {
    "paragraph": "",
    "heading_1": "# ",
    "heading_2": "## ",
    "heading_3": "### ",
    "bulleted_list_item": "- ",
    "numbered_list_item": "1. ",
    "quote": "> ",
    "callout": "> **Note:** ",
}


def block_to_markdown(block: dict[str, Any]) -> str | None:
    block_type = block.get("type", "")
    text = block_text(block)

    if block_type in PREFIXES:
        return f"{PREFIXES[block_type]}{text}"
    if block_type == "to_do":
        checked = (block.get("to_do") or {}).get("checked", False)
        return f"- [{'x' if checked else ' '}] {text}"
    if block_type == "toggle":
        return f"**{text}**"
    if block_type == "code":
        language = (block.get("code") or {}).get("language") or ""
        return f"```{language}\n{text}\n```"
    if block_type == "divider":
        return "---"
    return text or None


def blocks_to_markdown(blocks: list[dict[str, Any]]) -> str:
    lines = [line for line in map(block_to_markdown, blocks) if line is not None]
    return "\n\n".join(lines)


def page_title(page: dict[str, Any]) -> str:
    for prop in (page.get("properties") or {}).values():
        if isinstance(prop, dict) and prop.get("type") == "title":
            title = rich_text_to_plain(prop.get("title"))
            if title:
                return title
    return "Untitled"
