from __future__ import annotations


def show_item(
    start: str | None = "08:00",
    end: str | None = "10:00",
    dj: str | None = "DJ Alpha",
    title: str | None = "Morning Mix",
    genre: str | None = "Techno",
    content: str | None = None,
    dj_markup: str | None = None,
    in_heading: bool = True,
) -> str:
    start_span = ""
    if start is not None:
        attr = f' content="{content}"' if content else ""
        start_span = f'<span itemprop="startDate"{attr}>{start}</span>'
    end_span = f" - <span>{end}</span>" if end is not None else ""

    if in_heading:
        heading = f'<div class="time-djname"><h2 class="title">{start_span}{end_span}</h2></div>'
        loose = ""
    else:
        heading = '<div class="time-djname"><h2 class="title">Heute</h2></div>'
        loose = f"<p>{start_span}{end_span}</p>"

    dj_row = ""
    if dj_markup is not None:
        dj_row = f'<div class="dj-row">{dj_markup}</div>'
    elif dj is not None:
        dj_row = f'<div class="dj-row"><span itemprop="dj"><a href="/dj">{dj}</a></span></div>'
    title_row = f'<div class="title-row"><span itemprop="name">{title}</span></div>' if title is not None else ""
    genre_row = f'<div class="genre-row"><span itemprop="genre">{genre}</span></div>' if genre is not None else ""

    return (
        '<div class="item" itemscope itemtype="http://schema.org/BroadcastEvent">'
        f"{heading}{loose}"
        f'<div class="description"><div class="show-info">{dj_row}{title_row}{genre_row}</div></div>'
        "</div>"
    )


def schedule_page(*items: str, wrapped: bool = True) -> str:
    body = "".join(items)
    if wrapped:
        body = f'<div class="content-list schedule-list">{body}</div>'
    return f"<html><head><title>Sendeplan</title></head><body><main>{body}</main></body></html>"


TECHNOBASE_2025_01_15 = schedule_page(
    show_item("00:00", "02:00", "DJ Night Owl", "Nachtschicht", "Hardstyle"),
    show_item("08:00", "10:00", "DJ Alpha", "Morning Mix", "Techno"),
    show_item(None, None, "DJ Broken", "No Time Show", "Trance"),
    show_item("14:00", "16:00", "DJ Beta", "Afternoon Session", None),
)
