# lectern/harvester/context.py

"""
Builds the ``DetectionContext`` handed to providers: page URL, every iframe
reachable without crossing origins, and the parsed page document.
"""

import logging
from typing import Any, Callable, List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup
from selenium.common.exceptions import WebDriverException
from selenium.webdriver.common.by import By

from lectern.shared.config import get_settings
from lectern.shared.models import DetectionContext, IframeInfo

FrameLoader = Callable[[str], Optional[str]]


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


def _origin(url: str) -> str:
    parsed = urlparse(url or "")
    return f"{parsed.scheme}://{parsed.netloc}".lower()


def _iframe_entries(document: Any, base_url: Optional[str]) -> List[tuple]:
    """``(iframe tag, resolved src)`` pairs in document order; src may be empty."""
    entries = []
    for iframe in document.find_all("iframe"):
        src = (iframe.get("src") or iframe.get("data-src") or "").strip()
        if src and base_url:
            src = urljoin(base_url, src)
        entries.append((iframe, src))
    return entries


def _load_frame(frame_loader: Optional[FrameLoader], src: str) -> Optional[BeautifulSoup]:
    if frame_loader is None or not src:
        return None
    try:
        html = frame_loader(src)
    except Exception as e:
        # Cross-origin or unreachable frames are skipped
        logging.debug(f"      Skipping frame {src}: {e}")
        return None
    return parse_html(html) if html else None


def collect_iframe_info(
    document: Any,
    depth: int = 0,
    max_depth: Optional[int] = None,
    frame_loader: Optional[FrameLoader] = None,
    base_url: Optional[str] = None,
) -> List[IframeInfo]:
    """Every iframe ``src``/``data-src`` with its title, descending into nested frames.

    Nested documents come from ``srcdoc`` or, when given, ``frame_loader(src)``
    for frames on the same origin as their parent document.
    Recursion stops past ``max_depth``.
    """
    max_depth = get_settings().max_iframe_depth if max_depth is None else max_depth
    if depth > max_depth or document is None:
        return []

    iframes: List[IframeInfo] = []
    for iframe, src in _iframe_entries(document, base_url):
        if src:
            iframes.append(IframeInfo(src=src, title=iframe.get("title") or None))

        if iframe.get("srcdoc"):
            nested = parse_html(iframe["srcdoc"])
        elif base_url and _origin(src) == _origin(base_url):
            nested = _load_frame(frame_loader, src)
        else:
            nested = None
        if nested is not None:
            iframes.extend(collect_iframe_info(nested, depth + 1, max_depth, frame_loader, src or base_url))
    return iframes


def build_detection_context(
    html: str,
    page_url: str,
    frame_loader: Optional[FrameLoader] = None,
    max_depth: Optional[int] = None,
) -> DetectionContext:
    document = parse_html(html)
    return DetectionContext(
        page_url=page_url,
        iframes=collect_iframe_info(document, 0, max_depth, frame_loader, page_url),
        document=document,
    )


# --- Selenium ---

def _collect_driver_frames(driver: Any, frame_url: str, depth: int, max_depth: int) -> List[IframeInfo]:
    if depth > max_depth:
        return []
    document = parse_html(driver.page_source)
    iframes: List[IframeInfo] = []
    elements = driver.find_elements(By.TAG_NAME, "iframe")

    for index, (iframe, src) in enumerate(_iframe_entries(document, frame_url)):
        if src:
            iframes.append(IframeInfo(src=src, title=iframe.get("title") or None))
        if not src or _origin(src) != _origin(frame_url) or index >= len(elements):
            continue
        try:
            driver.switch_to.frame(elements[index])
        except WebDriverException as e:
            logging.debug(f"      Could not enter frame {src}: {e}")
            continue
        try:
            iframes.extend(_collect_driver_frames(driver, src, depth + 1, max_depth))
        except WebDriverException as e:
            logging.debug(f"      Could not read frame {src}: {e}")
        finally:
            driver.switch_to.parent_frame()
    return iframes


def build_detection_context_from_driver(driver: Any, max_depth: Optional[int] = None) -> DetectionContext:
    """Detection context for the page currently loaded in a Selenium session."""
    max_depth = get_settings().max_iframe_depth if max_depth is None else max_depth
    page_url = driver.current_url
    try:
        iframes = _collect_driver_frames(driver, page_url, 0, max_depth)
    finally:
        driver.switch_to.default_content()
    logging.info(f"   Collected {len(iframes)} iframes from {page_url}")
    return DetectionContext(page_url=page_url, iframes=iframes, document=parse_html(driver.page_source))
