from ad_shipper.pipeline.links import append_utm, build_landing_url, primary_text_with_link


def test_build_landing_url_adds_scheme_and_falls_back_to_default():
    assert build_landing_url("shop.example.com/sleep", "example.com") == "https://shop.example.com/sleep"
    assert build_landing_url("http://shop.example.com", "example.com") == "http://shop.example.com"
    assert build_landing_url("  ", "example.com") == "https://example.com"
    assert build_landing_url(None, "example.com") == "https://example.com"


def test_append_utm_respects_existing_query():
    assert append_utm("https://example.com", "utm_source=meta") == "https://example.com?utm_source=meta"
    assert append_utm("https://example.com?ref=1", "?utm_source=meta") == "https://example.com?ref=1&utm_source=meta"
    assert append_utm("https://example.com", "") == "https://example.com"


def test_primary_text_with_link():
    assert primary_text_with_link("Rest easy.", "https://example.com") == "Rest easy.\n\nhttps://example.com"
