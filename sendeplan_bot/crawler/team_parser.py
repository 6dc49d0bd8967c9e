from __future__ import annotations

import logging
import re

from selectolax.parser import HTMLParser, Node

from sendeplan_bot.storage.types import TeamMember
from sendeplan_bot.utils import one_line


logger = logging.getLogger(__name__)


_ENTRY_SELECTOR = "li, .dj-item, .team-member"
_SECTION_HEADINGS = {"h2", "h3"}
_SECTION_END = {"h2", "h3", "h4"}
_MAX_ENTRY_CHARS = 80

_SKIP_WORDS = ("various", "guest")

_LOOKS_LIKE_DJ = (
    re.compile(r"^DJ\s+[A-Za-z0-9\s\-.]+", flags=re.IGNORECASE),
    re.compile(r"^[A-Za-z0-9\s\-.]+\s+###?\s+[A-Za-z\s\-.]+"),
    re.compile(r"^[A-Za-z0-9\s\-.]+$"),
)
_REAL_NAME_SPLIT = re.compile(r"\s+###?\s+")
_DJ_PREFIX = re.compile(r"^(?:dj\s+)+", flags=re.IGNORECASE)


def looks_like_dj_entry(text: str) -> bool:
    return any(p.match(text) for p in _LOOKS_LIKE_DJ)


def clean_dj_name(name: str) -> str:
    name = one_line(name)
    name = _DJ_PREFIX.sub("", name)
    return f"DJ {name}" if name else ""


def parse_team_entry(text: str) -> TeamMember | None:
    text = one_line(text)
    if len(text) < 3 or len(text) > _MAX_ENTRY_CHARS:
        return None

    parts = _REAL_NAME_SPLIT.split(text, maxsplit=1)
    raw_name = parts[0]
    real_name = one_line(parts[1]) if len(parts) > 1 else None

    bare = _DJ_PREFIX.sub("", one_line(raw_name))
    if len(bare) < 2:
        return None
    lowered = bare.lower()
    if any(w in lowered for w in _SKIP_WORDS):
        return None

    return TeamMember(dj_name=clean_dj_name(bare), real_name=real_name or None)


def _is_entry(node: Node) -> bool:
    if node.tag == "li":
        return True
    classes = (node.attributes.get("class") or "").split()
    return "dj-item" in classes or "team-member" in classes


def _resident_section_entries(tree: HTMLParser) -> list[Node]:
    entries: list[Node] = []
    for heading in tree.css("h2, h3"):
        if heading.tag not in _SECTION_HEADINGS or "resident djs" not in heading.text().lower():
            continue
        sib = heading.next
        while sib is not None:
            if sib.tag in _SECTION_END:
                break
            if sib.tag not in ("-text", "_comment"):
                if _is_entry(sib):
                    entries.append(sib)
                entries.extend(sib.css(_ENTRY_SELECTOR))
            sib = sib.next
    return entries


def parse_team_page(html: str) -> list[TeamMember]:
    """Best-effort DJ list from a station's team page.

    Entries below a "Resident DJs" heading are preferred; otherwise any
    list entry that looks like a DJ name is taken.
    """
    if not html:
        return []

    tree = HTMLParser(html)
    candidates = [one_line(n.text()) for n in _resident_section_entries(tree)]
    if not candidates:
        candidates = [t for t in (one_line(n.text()) for n in tree.css(_ENTRY_SELECTOR)) if looks_like_dj_entry(t)]

    seen: set[str] = set()
    out: list[TeamMember] = []
    for text in candidates:
        member = parse_team_entry(text)
        if member is None:
            continue
        key = member.dj_name.lower()
        if key in seen:
            continue
        seen.add(key)
        out.append(member)
    return out
