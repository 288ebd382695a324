# tests/fakes.py
from scraper.errors import NavigationError


class RecordingSleep:
    """Awaitable stand-in for asyncio.sleep that records every requested delay."""

    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


class FakeSession:
    def __init__(self, renderer):
        self.renderer = renderer

    async def goto(self, url, wait_until, timeout_ms):
        self.renderer.navigations.append((url, wait_until, timeout_ms))
        if self.renderer.nav_error is not None:
            raise self.renderer.nav_error

    async def content(self):
        if self.renderer.content_error is not None:
            raise self.renderer.content_error
        return self.renderer.html

    async def close(self):
        self.renderer.closed += 1
        if self.renderer.fail_close:
            raise RuntimeError("browser context already gone")


class FakeRenderer:
    """
    In-memory PageRenderer.

    Args:
        html (str): DOM snapshot every session returns
        nav_error (Exception, optional): Raised by every navigation
        content_error (Exception, optional): Raised when reading the DOM
        fail_close (bool): Make session.close() raise
    """

    available = True

    def __init__(self, html="", nav_error=None, content_error=None, fail_close=False):
        self.html = html
        self.nav_error = nav_error
        self.content_error = content_error
        self.fail_close = fail_close
        self.opened = 0
        self.closed = 0
        self.navigations = []

    async def open_session(self, headers):
        self.opened += 1
        return FakeSession(self)

    async def close(self):
        return None


class FakeFetcher:
    """
    In-memory HttpFetcher.

    Args:
        pages (dict): url -> html; ``default`` is served for unknown URLs
        error (Exception, optional): Raised by every fetch
    """

    def __init__(self, pages=None, default=None, error=None):
        self.pages = pages or {}
        self.default = default
        self.error = error
        self.calls = []

    async def fetch(self, url, headers):
        self.calls.append((url, headers))
        if self.error is not None:
            raise self.error
        if url in self.pages:
            return self.pages[url]
        if self.default is not None:
            return self.default
        raise NavigationError(f"Request to {url} failed: connection refused", retryable=False)

    async def close(self):
        return None


class AlwaysFailingChain:
    """Strategy chain whose every run raises the same error."""

    def __init__(self, error):
        self.error = error
        self.runs = 0

    async def run(self, url, config, allow_synthetic=True):
        self.runs += 1
        raise self.error


AMAZON_STATIC_HTML = """
<html>
<head>
  <title>Amazon.com: Acme Noise Cancelling Headphones : Electronics</title>
  <meta name="description" content="Acme over-ear headphones with 40h battery.">
</head>
<body>
  <span id="productTitle">  Acme Noise Cancelling
     Headphones </span>
  <div id="main-image-container">
    <img id="landingImage"
         src="https://m.media-amazon.com/images/I/71mainIMG._AC_SX300_SY300_.jpg"
         data-a-dynamic-image="{&quot;https://m.media-amazon.com/images/I/71mainIMG._AC_SL1500_.jpg&quot;:[1500,1500],&quot;https://m.media-amazon.com/images/I/71mainIMG._AC_SX679_.jpg&quot;:[679,679],&quot;https://m.media-amazon.com/images/I/81sideIMG._AC_SX466_.jpg&quot;:[466,466]}">
  </div>
  <div id="altImages">
    <img src="https://m.media-amazon.com/images/I/71mainIMG._AC_US40_.jpg">
    <img src="https://m.media-amazon.com/images/I/81sideIMG._AC_US40_.jpg">
    <img src="https://m.media-amazon.com/images/G/01/x-locale/common/transparent-pixel.gif">
  </div>
  <span class="a-price"><span class="a-offscreen">$79.99</span></span>
  <span class="a-text-strike"><span class="a-offscreen">$99.99</span></span>
  <span class="a-icon-alt">4.6 out of 5 stars</span>
  <span id="acrCustomerReviewText">12,345 ratings</span>
  <div id="availability"><span> In Stock </span></div>
  <a id="bylineInfo">Visit the Acme Store</a>
</body>
</html>
"""

GENERIC_PRODUCT_HTML = """
<html>
<head><title>Blue Mug | Example Shop</title></head>
<body>
  <h1>Blue Ceramic Mug</h1>
  <div class="price">€12,50</div>
  <div class="product-image"><img src="//cdn.example.com/mug-600x600.jpg"></div>
  <div class="availability">Only 2 left</div>
</body>
</html>
"""
