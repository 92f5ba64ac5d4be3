from conftest import _FakeFrame
from lectern.harvester.context import (
    build_detection_context,
    build_detection_context_from_driver,
    collect_iframe_info,
    parse_html,
)

PAGE = "https://lms.example.edu/course/view.php?id=7"
PANOPTO = "https://uni.hosted.panopto.com/Panopto/Pages/Embed.aspx?id=0f9e8d7c-1111-2222-3333-444455556666"


def test_collects_src_data_src_and_titles():
    context = build_detection_context(
        f'<iframe src="{PANOPTO}" title="Week 1"></iframe>'
        '<iframe data-src="/mod/lti/launch.php?id=3"></iframe>'
        "<iframe></iframe>",
        PAGE,
    )

    assert [(f.src, f.title) for f in context.iframes] == [
        (PANOPTO, "Week 1"),
        ("https://lms.example.edu/mod/lti/launch.php?id=3", None),
    ]
    assert context.page_url == PAGE
    assert context.document.find("iframe") is not None


def test_srcdoc_frames_are_searched():
    html = f'<iframe srcdoc="&lt;iframe src=&quot;{PANOPTO}&quot;&gt;&lt;/iframe&gt;"></iframe>'

    iframes = collect_iframe_info(parse_html(html))

    assert [f.src for f in iframes] == [PANOPTO]


def test_frame_loader_depth_bound():
    pages = {
        "https://lms.example.edu/a": '<iframe src="/b"></iframe>',
        "https://lms.example.edu/b": '<iframe src="/c"></iframe>',
        "https://lms.example.edu/c": '<iframe src="/d"></iframe>',
    }

    iframes = collect_iframe_info(
        parse_html('<iframe src="/a"></iframe>'),
        max_depth=1,
        frame_loader=pages.get,
        base_url="https://lms.example.edu/",
    )

    assert [f.src for f in iframes] == ["https://lms.example.edu/a", "https://lms.example.edu/b"]


def test_frame_loader_errors_are_skipped():
    def loader(src):
        raise PermissionError("frame blocked")

    iframes = collect_iframe_info(
        parse_html('<iframe src="/mod/lti/launch.php?id=3"></iframe>'), frame_loader=loader, base_url=PAGE
    )

    assert [f.src for f in iframes] == ["https://lms.example.edu/mod/lti/launch.php?id=3"]


def test_frame_loader_only_sees_same_origin_frames():
    loaded = []

    def loader(src):
        loaded.append(src)
        return "<html></html>"

    iframes = collect_iframe_info(
        parse_html(f'<iframe src="{PANOPTO}"></iframe><iframe src="/embed/inner"></iframe>'),
        frame_loader=loader,
        base_url=PAGE,
    )

    assert [f.src for f in iframes] == [PANOPTO, "https://lms.example.edu/embed/inner"]
    assert loaded == ["https://lms.example.edu/embed/inner"]


def test_driver_context_descends_same_origin_frames(make_driver):
    inner = _FakeFrame(
        "https://lms.example.edu/embed/inner",
        f'<iframe src="{PANOPTO}" title="Nested"></iframe>',
        children=[_FakeFrame(PANOPTO, "<html>player</html>")],
    )
    outside = _FakeFrame("https://www.youtube.com/embed/abc", "<html></html>")
    root = _FakeFrame(
        PAGE,
        '<iframe src="/embed/inner"></iframe><iframe src="https://www.youtube.com/embed/abc"></iframe>',
        children=[inner, outside],
    )
    driver = make_driver(root)

    context = build_detection_context_from_driver(driver)

    assert [(f.src, f.title) for f in context.iframes] == [
        ("https://lms.example.edu/embed/inner", None),
        (PANOPTO, "Nested"),
        ("https://www.youtube.com/embed/abc", None),
    ]
    assert driver._switch_calls == [
        ("frame", "https://lms.example.edu/embed/inner"),
        ("parent", None),
        ("default", None),
    ]
    assert len(context.document.find_all("iframe")) == 2
