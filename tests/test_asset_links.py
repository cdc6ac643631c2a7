import pytest

from ad_shipper.services.asset_links import (
    AssetValidationError,
    DriveVideoFile,
    LinkType,
    aspect_ratio_bucket,
    classify_link,
    download_url_for,
    drive_file_from_api,
    extract_drive_folder_id,
    job_key_for,
    select_formats,
)


def _video(name: str, ratio, mime_type: str = "video/mp4") -> DriveVideoFile:
    return DriveVideoFile(id=name, name=name, mime_type=mime_type, ratio=ratio)


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://drive.google.com/drive/folders/1AbC_d-9", LinkType.drive_folder),
        ("https://drive.google.com/file/d/1AbC/view?usp=sharing", LinkType.drive_file),
        ("https://www.dropbox.com/s/xyz/ad.mp4?dl=0", LinkType.dropbox),
        ("https://cdn.example.com/ads/ad.mp4", LinkType.direct),
    ],
)
def test_classify_link(url, expected):
    assert classify_link(url) == expected


@pytest.mark.parametrize("url", ["", "ftp://files.example.com/ad.mp4", "not a url"])
def test_classify_link_rejects_non_http(url):
    with pytest.raises(AssetValidationError):
        classify_link(url)


def test_download_urls():
    assert download_url_for("https://drive.google.com/file/d/1AbC/view", LinkType.drive_file) == (
        "https://drive.google.com/uc?export=download&id=1AbC"
    )
    assert download_url_for("https://www.dropbox.com/s/xyz/ad.mp4?dl=0", LinkType.dropbox) == (
        "https://dl.dropboxusercontent.com/s/xyz/ad.mp4?dl=1"
    )
    assert download_url_for("https://www.dropbox.com/s/xyz/ad.mp4", LinkType.dropbox).endswith("?dl=1")
    with pytest.raises(AssetValidationError):
        download_url_for("https://drive.google.com/drive/folders/abc", LinkType.drive_folder)


def test_extract_drive_folder_id():
    assert extract_drive_folder_id("https://drive.google.com/drive/folders/1AbC_d-9?usp=sharing") == "1AbC_d-9"


def test_aspect_ratio_bucket_with_tolerance():
    assert aspect_ratio_bucket(1080, 1350) == "4:5"
    assert aspect_ratio_bucket(1080, 1920) == "9:16"
    assert aspect_ratio_bucket(1080, 1080) == "1:1"
    assert aspect_ratio_bucket(1000, 700) == "1000:700"
    assert aspect_ratio_bucket(None, 1920) is None


def test_drive_file_from_api_reads_video_metadata():
    item = {
        "id": "f1",
        "name": "hook_v1.mp4",
        "mimeType": "video/mp4",
        "videoMediaMetadata": {"width": 1080, "height": 1920, "durationMillis": "32500"},
    }
    parsed = drive_file_from_api(item)
    assert parsed.ratio == "9:16"
    assert parsed.duration_seconds == 32.5


def test_select_formats_prefers_feed_cut_with_vertical_secondary():
    primary, secondary = select_formats(
        [_video("thumb.png", None, "image/png"), _video("vertical.mp4", "9:16"), _video("feed.mp4", "4:5")]
    )
    assert primary.name == "feed.mp4"
    assert secondary.name == "vertical.mp4"


def test_select_formats_falls_back_to_vertical_only():
    primary, secondary = select_formats([_video("vertical.mov", "9:16")])
    assert primary.name == "vertical.mov"
    assert secondary is None


def test_select_formats_errors():
    with pytest.raises(AssetValidationError, match="No video files"):
        select_formats([_video("notes.txt", None, "text/plain")])
    with pytest.raises(AssetValidationError, match="recognized aspect ratio"):
        select_formats([_video("square.mp4", "1:1")])


def test_job_key_for():
    assert job_key_for("row-7", "9:16") == "row-7_9x16"
    assert job_key_for("row-7", None) == "row-7_4x5"
