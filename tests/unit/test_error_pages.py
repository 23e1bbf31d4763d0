from edgeproxy.error_pages import ErrorPages


def test_packaged_pages_used_by_default():
    pages = ErrorPages.load()

    resp = pages.response(502)

    assert resp.status_code == 502
    assert b'An error occurred.' in resp.body


def test_not_found_page():
    resp = ErrorPages.load().response(404)

    assert resp.status_code == 404
    assert b'404 Not Found' in resp.body


def test_pages_loaded_from_directory(tmp_path):
    (tmp_path / '50x.html').write_text('<h1>custom outage</h1>')

    pages = ErrorPages.load(str(tmp_path))

    assert pages.response(504).body == b'<h1>custom outage</h1>'
    # 404.html is missing from the directory
    assert b'404 Not Found' in pages.response(404).body


def test_serve_known_page():
    resp = ErrorPages.load().serve('/50x.html')

    assert resp.status_code == 200


def test_serve_unknown_page():
    assert ErrorPages.load().serve('/index.html') is None
