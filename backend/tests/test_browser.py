import threading

import httpx
import pytest

from conftest import mock_page_session
from inkwell.agent.browser import BrowserSessionPool, ElementNotFoundError, PageError
from inkwell.core.errors import BrowserPoolExhaustedError


def test_visit_reads_title_and_collapsed_text():
    session = mock_page_session()
    session.visit("https://example.org/")

    assert session.current_url == "https://example.org/"
    assert session.title == "Otter Facts"
    assert "Sea otters use rocks as tools." in session.text("main p")


def test_text_is_capped():
    session = mock_page_session(max_text_chars=10)
    session.visit("https://example.org/")

    assert len(session.text()) == 10


def test_main_content_prefers_main_then_article():
    session = mock_page_session()
    session.visit("https://example.org/habitat")

    content, selector = session.main_content()

    assert selector == "article"
    assert content == "Otters live in kelp forests along the Pacific coast."


def test_links_are_absolute_and_skip_fragments_and_scripts():
    session = mock_page_session()
    session.visit("https://example.org/")

    links = session.links("main")

    assert links == [{"text": "Habitat", "href": "https://example.org/habitat", "title": "Where they live"}]
    assert len(session.links(limit=1)) == 1


def test_click_link_then_go_back():
    session = mock_page_session()
    session.visit("https://example.org/")

    session.click(text="Habitat")
    assert session.title == "Habitat"

    session.go_back()
    assert session.title == "Otter Facts"

    with pytest.raises(PageError):
        session.go_back()


def test_fill_in_by_label_and_submit_form():
    session = mock_page_session()
    session.visit("https://example.org/")

    session.fill_in("Search term", "kelp")
    session.click(text="Search")

    assert session.title == "Results for kelp"
    assert session.current_url.startswith("https://example.org/search?")
    assert "lang=en" in session.current_url


def test_missing_elements_raise_page_errors():
    session = mock_page_session()

    with pytest.raises(PageError, match="No page loaded"):
        session.text()

    session.visit("https://example.org/")
    with pytest.raises(ElementNotFoundError):
        session.find("#sidebar")
    with pytest.raises(ElementNotFoundError):
        session.click(text="Subscribe")
    with pytest.raises(ElementNotFoundError):
        session.fill_in("email", "a@b.c")


def test_network_errors_are_not_page_errors():
    session = mock_page_session()

    with pytest.raises(httpx.ConnectError):
        session.visit("https://down.example/")


def test_pool_hands_each_session_to_one_holder_and_resets_it():
    pool = BrowserSessionPool(1, mock_page_session, acquire_timeout=0.05)

    with pool.acquire() as session:
        session.visit("https://example.org/")
        with pytest.raises(BrowserPoolExhaustedError):
            with pool.acquire():
                pass

    with pool.acquire() as again:
        assert again is session
        assert again.current_url is None
    assert pool.created == 1


def test_pool_waits_for_a_release():
    pool = BrowserSessionPool(1, mock_page_session, acquire_timeout=2)
    acquired = threading.Event()
    release = threading.Event()

    def hold():
        with pool.acquire():
            acquired.set()
            release.wait(1)

    holder = threading.Thread(target=hold)
    holder.start()
    acquired.wait(1)
    threading.Timer(0.05, release.set).start()

    with pool.acquire() as session:
        assert session is not None
    holder.join()
    assert pool.created == 1
