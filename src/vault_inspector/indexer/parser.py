"""Markdown note parser: frontmatter, tags, wiki links and markdown links.

Parsing never fails. Malformed constructs degrade to empty values so a single
broken note cannot abort indexing of the vault.
"""

from collections.abc import Iterator
from dataclasses import dataclass, field
from enum import Enum

EXTERNAL_PREFIXES = ("http://", "https://", "mailto:", "#")


class LinkKind(str, Enum):
    """Surface syntax a link was written in."""

    WIKI = "wiki"
    MARKDOWN = "markdown"


@dataclass
class Link:
    """A single outgoing reference found in a note body."""

    target: str
    alias: str | None = None
    heading_ref: str | None = None
    block_ref: str | None = None
    is_embed: bool = False
    kind: LinkKind = LinkKind.WIKI


@dataclass
class ParsedNote:
    """Structured view of a note, rebuilt on every parse."""

    title: str = ""
    frontmatter: dict[str, str] = field(default_factory=dict)
    tags: list[str] = field(default_factory=list)
    links: list[Link] = field(default_factory=list)
    text: str = ""


def _normalize_once(value: str) -> str:
    ident = value.strip().replace("\\", "/")
    while ident.startswith("./"):
        ident = ident[2:]
    # Exact-case extensions only: "Note.Md" is left alone
    if ident.endswith(".md") or ident.endswith(".MD"):
        ident = ident[:-3]
    return ident


def normalize_note_identifier(raw: str) -> str:
    """
    Normalize a link target or path into a note identifier.

    Trims whitespace, converts backslashes, strips leading "./" and a trailing
    ".md"/".MD". Repeats until stable, so the result is idempotent.
    An empty result means "no target".
    """
    ident = raw
    while True:
        cleaned = _normalize_once(ident)
        if cleaned == ident:
            return cleaned
        ident = cleaned


def extract_frontmatter(content: str) -> tuple[dict[str, str], str]:
    """
    Extract "key: value" frontmatter delimited by "---" lines.

    Returns:
        Tuple of (frontmatter, body). Without a closing "---" the frontmatter
        is empty and the body is the full content.
    """
    frontmatter: dict[str, str] = {}
    if not content.startswith("---"):
        return frontmatter, content

    rest = content[3:]
    end = rest.find("---")
    if end == -1:
        return frontmatter, content

    for line in rest[:end].splitlines():
        line = line.strip()
        if not line or ":" not in line:
            continue
        key, _, value = line.partition(":")
        key = key.strip().lower()
        value = value.strip()

        if key == "tags":
            for tag in value.lstrip("[").rstrip("]").split(","):
                clean_tag = tag.strip().strip('"').strip("'")
                if clean_tag:
                    frontmatter[f"tag_{clean_tag}"] = clean_tag
        else:
            frontmatter[key] = value

    return frontmatter, rest[end + 3 :].lstrip()


def extract_title(frontmatter: dict[str, str], body: str) -> str:
    """Frontmatter title, else the first level-1 heading, else ""."""
    if "title" in frontmatter:
        return frontmatter["title"]

    for line in body.splitlines():
        trimmed = line.strip()
        if trimmed.startswith("# "):
            return trimmed[2:].strip()

    return ""


def _is_tag_char(char: str) -> bool:
    return char.isalnum() or char in "/_"


def extract_tags(frontmatter: dict[str, str], body: str) -> list[str]:
    """Collect frontmatter and inline #tags, sorted and deduplicated."""
    tags = {value for key, value in frontmatter.items() if key.startswith("tag_")}

    for word in body.split():
        if not word.startswith("#") or len(word) == 1:
            continue
        start, end = 0, len(word)
        while start < end and not _is_tag_char(word[start]):
            start += 1
        while end > start and not _is_tag_char(word[end - 1]):
            end -= 1
        tag = word[start:end].lstrip("#")
        if tag:
            tags.add(tag)

    return sorted(tags)


def _split_fragment(target: str) -> tuple[str, str | None, str | None]:
    """Split "note#heading" / "note#^block" into (note, heading_ref, block_ref)."""
    if "#" not in target:
        return target.strip(), None, None

    path, _, fragment = target.partition("#")
    fragment = fragment.strip()
    if fragment.startswith("^"):
        return path.strip(), None, fragment[1:]
    return path.strip(), fragment, None


def _parse_wikilink(chars: str, start: int, is_embed: bool) -> Link | None:
    """Parse "[[...]]" beginning at ``start``. Unterminated spans yield None."""
    if start + 3 >= len(chars) or chars[start : start + 2] != "[[":
        return None

    end = start + 2
    while end + 1 < len(chars) and chars[end : end + 2] != "]]":
        end += 1
    if end + 1 >= len(chars):
        return None

    inner = chars[start + 2 : end]
    alias = None
    if "|" in inner:
        inner, _, alias_text = inner.partition("|")
        inner = inner.strip()
        alias = alias_text.strip() or None

    path, heading_ref, block_ref = _split_fragment(inner)
    target = normalize_note_identifier(path)
    if not target:
        return None

    return Link(
        target=target,
        alias=alias,
        heading_ref=heading_ref,
        block_ref=block_ref,
        is_embed=is_embed,
        kind=LinkKind.WIKI,
    )


def _scan_wikilinks(content: str) -> Iterator[tuple[int, Link]]:
    pos = 0
    while pos < len(content):
        if pos + 1 < len(content):
            pair = content[pos : pos + 2]
            if pair == "![":
                link = _parse_wikilink(content, pos + 1, is_embed=True)
                if link:
                    yield pos, link
                pos += 1
            elif pair == "[[":
                link = _parse_wikilink(content, pos, is_embed=False)
                if link:
                    yield pos, link
                pos += 1
        pos += 1


def extract_wikilinks(content: str) -> list[Link]:
    """Extract [[wiki]] links and ![[embeds]] in document order."""
    return [link for _, link in _scan_wikilinks(content)]


def _bracket_section(chars: str, start: int, open_char: str, close_char: str) -> tuple[int, str] | None:
    """Return (close_index, inner_text) for a non-nesting bracket span."""
    if start >= len(chars) or chars[start] != open_char:
        return None
    close = chars.find(close_char, start + 1)
    if close == -1:
        return None
    return close, chars[start + 1 : close]


def _clean_destination(dest: str) -> str:
    trimmed = dest.strip().lstrip("<").rstrip(">").strip()
    parts = trimmed.split()
    return parts[0] if parts else ""


def build_markdown_link(label: str, dest: str, is_embed: bool = False) -> Link | None:
    """
    Build a Link from a markdown label and destination.

    External URLs, mailto: and anchor-only destinations are not note links.
    """
    if not dest:
        return None
    if dest.lower().startswith(EXTERNAL_PREFIXES):
        return None

    path, heading_ref, block_ref = _split_fragment(dest)
    target = normalize_note_identifier(path)
    if not target:
        return None

    return Link(
        target=target,
        alias=label.strip() or None,
        heading_ref=heading_ref,
        block_ref=block_ref,
        is_embed=is_embed,
        kind=LinkKind.MARKDOWN,
    )


def _scan_markdown_links(content: str) -> Iterator[tuple[int, Link]]:
    i = 0
    while i < len(content):
        if content[i] == "[":
            if i > 0 and content[i - 1] == "!":
                # Image, not a link
                i += 1
                continue

            label_section = _bracket_section(content, i, "[", "]")
            if label_section:
                label_end, label = label_section
                dest_section = _bracket_section(content, label_end + 1, "(", ")")
                if dest_section:
                    dest_end, dest_raw = dest_section
                    link = build_markdown_link(label, _clean_destination(dest_raw))
                    if link:
                        yield i, link
                    i = dest_end + 1
                    continue
        i += 1


def extract_markdown_links(content: str) -> list[Link]:
    """Extract [label](dest) links to other notes in document order."""
    return [link for _, link in _scan_markdown_links(content)]


def parse_note(content: str) -> ParsedNote:
    """
    Parse a markdown note.

    Args:
        content: The full markdown content, frontmatter included

    Returns:
        ParsedNote with links from both syntaxes merged in document order.
    """
    frontmatter, body = extract_frontmatter(content)

    positioned = list(_scan_wikilinks(body)) + list(_scan_markdown_links(body))
    positioned.sort(key=lambda item: item[0])

    return ParsedNote(
        title=extract_title(frontmatter, body),
        frontmatter=frontmatter,
        tags=extract_tags(frontmatter, body),
        links=[link for _, link in positioned],
        text=body,
    )
