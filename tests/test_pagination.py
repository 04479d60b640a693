from __future__ import annotations

from cloud_monitor.util.pagination import next_page_number, paginate


def test_paginate_yields_all_items_and_pages_in_order() -> None:
    calls = []
    pages = {
        None: (["a", "b"], 2),
        2: (["c"], None),
    }

    def fetch(page):
        calls.append(page)
        return pages[page]

    items = list(paginate(fetch))
    assert items == ["a", "b", "c"]
    assert calls == [None, 2]


def test_next_page_number_stops_at_last_page() -> None:
    assert next_page_number(1, 3) == 2
    assert next_page_number(3, 3) is None
    assert next_page_number(1, None) is None
