"""Shared fixtures: a small site, a controllable clock and fake collaborators."""

import asyncio

import pytest

from sitedetective.daemon.models import (
    ExtensionRef,
    FileRef,
    MenuItem,
    PageContext,
    Record,
    WidgetRef,
)
from sitedetective.daemon.sources import StaticBuilderAdapter, StaticContentSource


HEADER_PHP = """<header class="site-header">
<nav class="main-navigation">
<?php wp_nav_menu(array('theme_location' => 'primary')); ?>
</nav>
</header>"""

FOOTER_PHP = """<footer>
<p>Copyright Acme</p>
<a class="cta" href="/quote">Get a quote</a>
</footer>"""

ABOUT_PHP = """<h1>About our team</h1>
<p>Meet the team</p>"""

STYLE_CSS = """:root {
  --brand: #0073aa;
}
.site-header .cta {
  background: #ff0000;
  font-family: 'Roboto', sans-serif;
}
body {
  color: rgb(0, 0, 0);
  font-family: Georgia, serif;
}
"""

HOME_BODY = (
    '<p>Welcome</p>[contact-form-7 id="7" title="Contact form"]\n'
    '<!-- wp:button {"text":"Get a quote","url":"/quote"} /-->'
)


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeExplainer:
    """Explainer returning a canned answer, raising, or stalling."""

    def __init__(self, answer: str = "", error: Exception = None, delay: float = 0):
        self.answer = answer
        self.error = error
        self.delay = delay
        self.calls = []

    async def explain(self, query, digest, timeout_ms):
        self.calls.append((query, digest, timeout_ms))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.answer


class RecordingScheduler:
    """Records schedule/cancel calls instead of running batches."""

    def __init__(self):
        self.scheduled = []
        self.cancelled = []

    def schedule(self, job_id, delay=0):
        self.scheduled.append((job_id, delay))

    def cancel(self, job_id):
        self.cancelled.append(job_id)


@pytest.fixture
def site():
    """A small site: two menus items, three templates, one widget, two records."""
    return StaticContentSource(
        menus=[
            MenuItem(title="Home", target="/", menu="Main Menu"),
            MenuItem(title="Contact", target="/contact",
                     edit_ref="nav-menus.php?menu=2", menu="Main Menu"),
        ],
        templates=[
            FileRef(path="themes/acme/header.php", content=HEADER_PHP, modified_at=1.0),
            FileRef(path="themes/acme/page-about.php", content=ABOUT_PHP, modified_at=1.0),
            FileRef(path="themes/acme/footer.php", content=FOOTER_PHP, modified_at=1.0),
        ],
        widgets=[
            WidgetRef(type="text", title="Opening hours",
                      serialized_content="Open Monday to Friday, 9am to 5pm",
                      area="sidebar-1"),
        ],
        records=[
            Record(id=42, title="Home", body=HOME_BODY,
                   meta={'subtitle': 'Trusted since 1999'}),
            Record(id=7, title="Newsletter", body="Sign up for our newsletter"),
        ],
        extensions=[
            ExtensionRef(
                name="WooCommerce",
                version="8.0",
                files=(FileRef(path="woocommerce/templates/cart.php",
                               content="<button>Add to cart</button>"),),
            ),
        ],
        stylesheets=[
            FileRef(path="themes/acme/style.css", content=STYLE_CSS, modified_at=1.0),
        ],
    )


@pytest.fixture
def builders(site):
    return StaticBuilderAdapter(site)


@pytest.fixture
def home_page():
    return PageContext(url="https://acme.test/", page_id=42)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def scheduler():
    return RecordingScheduler()


@pytest.fixture
def make_explainer():
    return FakeExplainer
