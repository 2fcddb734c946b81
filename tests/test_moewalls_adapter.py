import pytest

from flowall_crawler.adapters.moewalls import MoewallsAdapter
from flowall_crawler.errors import MissingDownloadTokenError

LIST_HTML = """
<html><body>
  <article class="entry-tpl-grid">
    <div class="entry-featured-media"><a href="https://moewalls.com/anime/sakura-night-live-wallpaper/">x</a></div>
  </article>
  <article class="entry-tpl-grid">
    <div class="entry-featured-media"><a href="/games/cyber-city-live-wallpaper/#comments">x</a></div>
  </article>
  <article class="entry-tpl-grid">
    <div class="entry-featured-media"><a href="https://moewalls.com/anime/sakura-night-live-wallpaper/">dup</a></div>
  </article>
  <article class="entry-tpl-grid">
    <div class="entry-featured-media"><a href="https://moewalls.com/page/2/">next</a></div>
  </article>
  <article class="entry-tpl-grid">
    <div class="entry-featured-media"><a href="https://moewalls.com/category/anime/">cat</a></div>
  </article>
  <article class="entry-tpl-grid">
    <div class="entry-featured-media"><a href="https://moewalls.com/resolution/1920x1080/">res</a></div>
  </article>
  <article class="entry-tpl-grid">
    <div class="entry-featured-media"><a href="https://elsewhere.example/foreign-item/">ext</a></div>
  </article>
  <div class="sidebar"><a href="https://moewalls.com/anime/not-in-grid/">side</a></div>
</body></html>
"""

DETAIL_HTML = """
<html><body>
  <h1 class="entry-title"> Sakura Night Live Wallpaper </h1>
  <video poster="/wp-content/uploads/sakura-thumb.jpg">
    <source src="//static.moewalls.com/videos/preview/sakura-preview.mp4" type="video/mp4">
    <source src="//static.moewalls.com/videos/preview/sakura-preview.webm" type="video/webm">
  </video>
  <button id="moe-download" data-url="c2FrdXJh">Download</button>
  <div class="tag-items"><a href="#">Anime</a><a href="#">Night</a></div>
  <div class="entry-tags"><a href="#">Night</a><a href="#">Sakura</a></div>
</body></html>
"""


@pytest.fixture
def adapter():
    return MoewallsAdapter("https://moewalls.com", "https://go.moewalls.com/download.php")


def test_list_url(adapter):
    assert adapter.list_url(1) == "https://moewalls.com/page/1/"
    assert adapter.list_url(12) == "https://moewalls.com/page/12/"


def test_parse_list_keeps_only_detail_links(adapter):
    items = adapter.parse_list(LIST_HTML)
    assert [i.slug for i in items] == ["sakura-night-live-wallpaper", "cyber-city-live-wallpaper"]
    assert items[1].url == "https://moewalls.com/games/cyber-city-live-wallpaper/"


def test_parse_list_empty_page(adapter):
    assert adapter.parse_list("<html><body><p>Nothing found</p></body></html>") == []


def test_parse_detail(adapter):
    record = adapter.parse_detail("https://moewalls.com/anime/sakura-night-live-wallpaper/", DETAIL_HTML)

    assert record.natural_id == "sakura-night-live-wallpaper"
    assert record.title == "Sakura Night Live Wallpaper"
    assert record.cover_url == "https://moewalls.com/wp-content/uploads/sakura-thumb.jpg"
    assert record.preview_url == "https://static.moewalls.com/videos/preview/sakura-preview.webm"
    assert record.video_url == "https://go.moewalls.com/download.php?video=c2FrdXJh"
    assert record.tags == ["Anime", "Night", "Sakura"]
    assert record.validate() is record


def test_parse_detail_defaults(adapter):
    html = """
    <div class="entry-featured-media"><img src="https://cdn.example/cover.jpg"></div>
    <video><source src="https://cdn.example/preview.mp4"></video>
    <button id="moe-download" data-url="abc"></button>
    """
    record = adapter.parse_detail("https://moewalls.com/misc/plain-item/", html)
    assert record.title == "Untitled"
    assert record.cover_url == "https://cdn.example/cover.jpg"
    assert record.preview_url == "https://cdn.example/preview.mp4"
    assert record.tags == []


def test_missing_download_token_is_permanent(adapter):
    html = DETAIL_HTML.replace('<button id="moe-download" data-url="c2FrdXJh">Download</button>', "")
    with pytest.raises(MissingDownloadTokenError) as info:
        adapter.parse_detail("https://moewalls.com/anime/sakura-night-live-wallpaper/", html)
    assert info.value.retryable is False
