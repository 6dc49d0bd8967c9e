from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterator

from selectolax.parser import HTMLParser, Node

from sendeplan_bot.storage.types import ScrapedShow
from sendeplan_bot.utils import add_hours_to_clock, one_line, parse_clock


logger = logging.getLogger(__name__)


MAX_ITEMS = 500
DEFAULT_SHOW_HOURS = 2
UNKNOWN_STYLE = "Unknown"

_ITEM_SELECTORS = (
    '.content-list.schedule-list .item[itemtype="http://schema.org/BroadcastEvent"]',
    '[itemtype$="schema.org/BroadcastEvent"]',
)
_HEADING = ".time-djname > h2.title"
_START = 'span[itemprop="startDate"]'
_DJ = '.description .show-info .dj-row [itemprop="dj"]'
_TITLE = '.description .show-info .title-row [itemprop="name"]'
_STYLE = '.description .show-info .genre-row [itemprop="genre"]'

_CONTENT_TIME_RE = re.compile(r"T(\d{2}:\d{2})")
_BARE_DJ_PREFIX_RE = re.compile(r"^dj\.?$", flags=re.IGNORECASE)
_NON_ELEMENT_TAGS = {"-text", "_comment"}


def _select_items(tree: HTMLParser) -> list[Node]:
    for selector in _ITEM_SELECTORS:
        nodes = tree.css(selector)
        if nodes:
            return nodes[:MAX_ITEMS]
    return []


def _next_element(node: Node) -> Node | None:
    sib = node.next
    while sib is not None and sib.tag in _NON_ELEMENT_TAGS:
        sib = sib.next
    return sib


# start time: the heading region first, then anywhere in the block

def _start_in_heading(item: Node) -> Node | None:
    heading = item.css_first(_HEADING)
    if heading is None:
        return None
    return heading.css_first(_START)


def _start_anywhere(item: Node) -> Node | None:
    return item.css_first(_START)


START_STRATEGIES: tuple[Callable[[Node], Node | None], ...] = (_start_in_heading, _start_anywhere)


# end time: sibling span, then the start's timestamp attribute

def _end_from_sibling(start_node: Node) -> str | None:
    sib = _next_element(start_node)
    if sib is None or sib.tag != "span":
        return None
    return parse_clock(sib.text(strip=True))


def _end_from_content_attr(start_node: Node) -> str | None:
    content = start_node.attributes.get("content") or ""
    m = _CONTENT_TIME_RE.search(content)
    if not m:
        return None
    return parse_clock(m.group(1))


END_STRATEGIES: tuple[Callable[[Node], str | None], ...] = (_end_from_sibling, _end_from_content_attr)


# dj name: own text, then the nested link, then everything below

def _dj_direct_text(node: Node) -> str:
    text = one_line(node.text(deep=False))
    if _BARE_DJ_PREFIX_RE.match(text):
        # "DJ <a>Name</a>": the prefix alone is not a name
        return one_line(node.text())
    return text


def _dj_link_text(node: Node) -> str:
    link = node.css_first("a")
    return one_line(link.text()) if link is not None else ""


def _dj_full_text(node: Node) -> str:
    return one_line(node.text())


DJ_STRATEGIES: tuple[Callable[[Node], str], ...] = (_dj_direct_text, _dj_link_text, _dj_full_text)


def _first_node(item: Node, strategies) -> Node | None:
    for strategy in strategies:
        node = strategy(item)
        if node is not None:
            return node
    return None


def _first_text(node: Node, strategies) -> str | None:
    for strategy in strategies:
        value = strategy(node)
        if value:
            return value
    return None


def _field_text(item: Node, selector: str) -> str:
    node = item.css_first(selector)
    return one_line(node.text()) if node is not None else ""


def synthesize_end(start: str) -> str:
    return add_hours_to_clock(start, DEFAULT_SHOW_HOURS)


def parse_show_item(item: Node) -> ScrapedShow | None:
    start_node = _first_node(item, START_STRATEGIES)
    if start_node is None:
        logger.warning("show item without start time, skipped")
        return None

    start = parse_clock(start_node.text(strip=True))
    if start is None:
        logger.warning("show item with unreadable start time %r, skipped", start_node.text(strip=True))
        return None

    end = _first_text(start_node, END_STRATEGIES) or synthesize_end(start)

    dj_node = item.css_first(_DJ)
    dj = (_first_text(dj_node, DJ_STRATEGIES) if dj_node is not None else None) or ""
    title = _field_text(item, _TITLE)
    style = _field_text(item, _STYLE)

    if not dj or not title:
        logger.warning("incomplete show data: start=%s dj=%r title=%r", start, dj, title)
        return None

    return ScrapedShow(dj=dj, title=title, start=start, end=end, style=style or UNKNOWN_STYLE)


def iter_shows(html: str) -> Iterator[ScrapedShow]:
    """Yield the valid shows of one schedule page, in page order.

    A block that fails to parse is logged and skipped; the rest of the page
    is still processed. An empty page yields nothing.
    """
    if not html:
        return
    tree = HTMLParser(html)
    for idx, item in enumerate(_select_items(tree)):
        try:
            show = parse_show_item(item)
        except Exception as e:
            logger.warning("failed to parse show item #%s: %s", idx, e)
            continue
        if show is not None:
            yield show


def parse_shows(html: str) -> list[ScrapedShow]:
    return list(iter_shows(html))
