import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import io
import json

import pytest
import requests
from PIL import Image

from contentful_to_strapi.migrators import media_uploader, strapi_migrator
from contentful_to_strapi.migrators.media_transcoder import TranscodeResult
from contentful_to_strapi.migrators.media_uploader import (
    AttemptOutcome,
    MediaUploader,
    RetryState,
    adjust_extension,
    backoff_delay_ms,
    classify_exception,
    classify_status,
    inter_upload_delay_ms,
    large_file_delay_ms,
    sanitize_file_name,
    upload_timeout_ms,
)
from contentful_to_strapi.models.media import MediaReference, TranscodeDecision
from contentful_to_strapi.utils.errors import MigrationTimeoutError

CFG = {"base_url": "https://cms.example.com", "api_token": "api-token"}


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=b"", headers=None):
        self.status_code = status_code
        self._json = json_data
        self.headers = headers or {}
        if json_data is not None and not content:
            content = json.dumps(json_data).encode("utf-8")
        self.content = content
        self.text = content.decode("utf-8", "replace")

    def json(self):
        if self._json is None:
            raise ValueError("No JSON body")
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}", response=self)

    def iter_content(self, chunk_size=1):
        yield self.content

    def close(self):
        pass


class FakeSession:
    """Scripted ``get`` (downloads) and ``request`` (Strapi) responses."""

    def __init__(self, downloads=(), requests_=()):
        self.downloads = list(downloads)
        self.responses = list(requests_)
        self.get_calls = []
        self.request_calls = []

    @staticmethod
    def _next(queue):
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def get(self, url, **kwargs):
        self.get_calls.append((url, kwargs))
        return self._next(self.downloads)

    def request(self, method, url, **kwargs):
        self.request_calls.append((method, url, kwargs))
        return self._next(self.responses)


def _pdf_download():
    return FakeResponse(200, content=b"%PDF-1.4 test", headers={"Content-Type": "application/pdf"})


def _uploaded(file_id=5, url="/uploads/doc.pdf", name="doc.pdf"):
    return FakeResponse(200, json_data=[{"id": file_id, "url": url, "name": name}])


@pytest.fixture(autouse=True)
def _isolated(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setattr(strapi_migrator, "_limiter", strapi_migrator.RateLimiter(600000))


@pytest.fixture
def temp_root(tmp_path):
    root = tmp_path / "scratch"
    root.mkdir()
    return root


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class SlowSession(FakeSession):
    """Reads the first upload body at ``seconds_per_read`` per chunk."""

    def __init__(self, clock, seconds_per_read, downloads=(), requests_=()):
        super().__init__(downloads, requests_)
        self.clock = clock
        self.seconds_per_read = seconds_per_read

    def request(self, method, url, **kwargs):
        self.request_calls.append((method, url, kwargs))
        if len(self.request_calls) == 1:
            body = kwargs["data"]
            while body.read(8192):
                self.clock.now += self.seconds_per_read
        return self._next(self.responses)


def _uploader(session, temp_root, sleeps, cfg=CFG, deadline=None, clock=lambda: 0.0):
    return MediaUploader(
        cfg, session=session, sleep_fn=sleeps.append, temp_root=str(temp_root), deadline=deadline, clock=clock,
    )


def _sent(call):
    """Multipart bytes of a recorded upload call."""
    return call[2]["data"].payload


def test_backoff_schedule():
    assert [backoff_delay_ms(n) for n in (1, 2, 3, 4, 5, 9)] == [3000, 6000, 12000, 24000, 30000, 30000]


def test_upload_timeout_grows_with_size():
    assert upload_timeout_ms(0.5) == 30000
    assert upload_timeout_ms(5) == 30000
    assert upload_timeout_ms(10) == 45000
    assert upload_timeout_ms(40) == 120000


def test_pacing_delays():
    assert inter_upload_delay_ms(0, 1) == 3000
    assert inter_upload_delay_ms(0, 6) == 5000
    assert inter_upload_delay_ms(2, 1) == 7000
    assert inter_upload_delay_ms(10, 6) == 15000
    assert large_file_delay_ms(2) == 3000
    assert large_file_delay_ms(10) == 20000


def test_file_name_helpers():
    assert sanitize_file_name("my photo (1).jpg") == "my_photo__1_.jpg"
    assert sanitize_file_name("café.png") == "caf_.png"
    assert sanitize_file_name("") == "file"
    assert adjust_extension("scan.bmp", "JPEG") == "scan.jpg"
    assert adjust_extension("logo.webp", "PNG") == "logo.png"
    assert adjust_extension("clip.mp4", None) == "clip.mp4"


def test_classification():
    assert classify_status(201) is AttemptOutcome.SUCCESS
    assert classify_status(503) is AttemptOutcome.RETRYABLE
    assert classify_status(502) is AttemptOutcome.RETRYABLE
    assert classify_status(408) is AttemptOutcome.RETRYABLE
    assert classify_status(400) is AttemptOutcome.TERMINAL
    assert classify_status(429) is AttemptOutcome.TERMINAL
    assert classify_exception(requests.Timeout()) is AttemptOutcome.RETRYABLE
    assert classify_exception(requests.ConnectionError()) is AttemptOutcome.RETRYABLE
    assert classify_exception(requests.exceptions.InvalidURL()) is AttemptOutcome.TERMINAL


def test_retry_state_never_exceeds_ceiling():
    state = RetryState()
    delays = []
    while True:
        state.start_attempt()
        if not state.record(AttemptOutcome.RETRYABLE, "HTTP 503"):
            break
        delays.append(state.delay_ms)
    assert state.attempt == 3
    assert delays == [3000, 6000]
    assert state.last_error == "HTTP 503"
    with pytest.raises(RuntimeError):
        state.start_attempt()


def test_three_server_errors_give_up_after_third_attempt(temp_root):
    session = FakeSession([_pdf_download()], [FakeResponse(503, content=b"busy")] * 4)
    sleeps = []
    result = _uploader(session, temp_root, sleeps).upload(
        "https://assets.ctfassets.net/doc.pdf", "doc.pdf", "application/pdf", "attachment",
    )
    assert result is None
    assert len(session.request_calls) == 3
    assert sleeps == [3.0, 6.0]
    assert os.listdir(temp_root) == []
    with open(os.path.join("reports", "migration", "errors.jsonl"), encoding="utf-8") as f:
        entry = json.loads(f.readlines()[-1])
    assert entry["code"] == "MEDIA_UPLOAD"
    assert entry["attempts"] == 3


def test_client_error_is_not_retried(temp_root):
    session = FakeSession([_pdf_download()], [FakeResponse(400, content=b"bad request"), _uploaded()])
    sleeps = []
    result = _uploader(session, temp_root, sleeps).upload("https://x/doc.pdf", "doc.pdf", "application/pdf", "file")
    assert result is None
    assert len(session.request_calls) == 1
    assert sleeps == []


def test_timeout_is_retried_then_succeeds(temp_root):
    session = FakeSession([_pdf_download()], [requests.Timeout("slow"), _uploaded(file_id=11)])
    sleeps = []
    result = _uploader(session, temp_root, sleeps).upload("https://x/doc.pdf", "doc.pdf", "application/pdf", "file")
    assert result.destination_id == 11
    assert result.url == "/uploads/doc.pdf"
    assert result.file_name == "doc.pdf"
    assert sleeps == [3.0]
    method, url, kwargs = session.request_calls[-1]
    assert (method, url) == ("POST", "https://cms.example.com/api/upload")
    assert kwargs["timeout"] == (10.0, 30.0)
    assert kwargs["stream"] is True
    assert kwargs["headers"]["Authorization"] == "Bearer api-token"
    assert kwargs["headers"]["Content-Type"].startswith("multipart/form-data; boundary=")
    assert b'filename="doc.pdf"' in _sent(session.request_calls[-1])
    assert os.listdir(temp_root) == []


def test_upload_overrunning_its_deadline_is_retried(temp_root):
    clock = FakeClock()
    download = FakeResponse(200, content=b"%PDF-1.4 " + b"x" * 50000, headers={"Content-Type": "application/pdf"})
    session = SlowSession(clock, 20.0, [download], [_uploaded(file_id=12)])
    sleeps = []
    result = _uploader(session, temp_root, sleeps, clock=clock).upload(
        "https://x/doc.pdf", "doc.pdf", "application/pdf", "file",
    )
    assert result.destination_id == 12
    assert len(session.request_calls) == 2
    assert sleeps == [3.0]
    assert clock.now == 40.0


def test_empty_upload_response_is_terminal(temp_root):
    session = FakeSession([_pdf_download()], [FakeResponse(200, json_data=[])])
    sleeps = []
    assert _uploader(session, temp_root, sleeps).upload("https://x/a.pdf", "a.pdf", "application/pdf", "f") is None
    assert len(session.request_calls) == 1


def test_missing_url_is_fetched_from_media_library(temp_root):
    session = FakeSession(
        [_pdf_download()],
        [FakeResponse(200, json_data=[{"id": 9}]), FakeResponse(200, json_data={"id": 9, "url": "/uploads/x.pdf"})],
    )
    result = _uploader(session, temp_root, []).upload("https://x/x.pdf", "x.pdf", "application/pdf", "f")
    assert result.url == "/uploads/x.pdf"
    assert session.request_calls[1][1] == "https://cms.example.com/api/upload/files/9"


def test_download_failure_is_not_retried(temp_root):
    session = FakeSession([requests.ConnectionError("reset"), _pdf_download()], [_uploaded()])
    result = _uploader(session, temp_root, []).upload("https://x/a.pdf", "a.pdf", "application/pdf", "f")
    assert result is None
    assert len(session.get_calls) == 1
    assert session.request_calls == []
    assert os.listdir(temp_root) == []


def test_download_http_error_fails(temp_root):
    session = FakeSession([FakeResponse(404)], [_uploaded()])
    assert _uploader(session, temp_root, []).upload("https://x/a.pdf", "a.pdf", None, "f") is None
    assert session.request_calls == []


def test_one_redirect_is_followed(temp_root):
    redirect = FakeResponse(302, headers={"Location": "/real/a.pdf"})
    session = FakeSession([redirect, _pdf_download()], [_uploaded()])
    result = _uploader(session, temp_root, []).upload("https://assets.example/a.pdf", "a.pdf", None, "f")
    assert result is not None
    assert session.get_calls[1][0] == "https://assets.example/real/a.pdf"
    assert session.get_calls[0][1]["allow_redirects"] is False


def test_second_redirect_fails(temp_root):
    first = FakeResponse(301, headers={"Location": "https://b.example/a.pdf"})
    second = FakeResponse(302, headers={"Location": "https://c.example/a.pdf"})
    session = FakeSession([first, second], [_uploaded()])
    assert _uploader(session, temp_root, []).upload("https://a.example/a.pdf", "a.pdf", None, "f") is None
    assert session.request_calls == []


def test_large_raster_is_transcoded_and_renamed(temp_root):
    buf = io.BytesIO()
    Image.new("RGB", (700, 700), (40, 90, 200)).save(buf, format="BMP")
    download = FakeResponse(200, content=buf.getvalue(), headers={"Content-Type": "image/bmp"})
    session = FakeSession([download], [_uploaded(file_id=3, url="/uploads/scan_1.jpg", name="scan_1.jpg")])
    result = _uploader(session, temp_root, []).upload("https://x/scan 1.bmp", "scan 1.bmp", "image/bmp", "cover")
    sent = _sent(session.request_calls[0])
    assert b'filename="scan_1.jpg"' in sent
    assert b"Content-Type: image/jpeg" in sent
    assert len(sent) < len(buf.getvalue())
    assert result.size_mb < 1
    assert os.listdir(temp_root) == []


def test_admin_token_and_attachment_fields(temp_root):
    cfg = dict(CFG, admin_token="admin-token")
    session = FakeSession([_pdf_download()], [_uploaded()])
    _uploader(session, temp_root, [], cfg=cfg).upload(
        "https://x/doc.pdf", "doc.pdf", "application/pdf", "file",
        attach={"ref": "api::event.event", "refId": 4, "field": "file"},
    )
    kwargs = session.request_calls[0][2]
    assert kwargs["headers"]["Authorization"] == "Bearer admin-token"
    sent = _sent(session.request_calls[0])
    assert b'name="ref"\r\n\r\napi::event.event\r\n' in sent
    assert b'name="refId"\r\n\r\n4\r\n' in sent
    assert b'name="field"\r\n\r\nfile\r\n' in sent


def test_upload_asset_uses_reference_metadata(temp_root):
    reference = MediaReference(
        asset_id="a1", file_name="doc.pdf", content_type="application/pdf",
        url="//assets.ctfassets.net/a1/doc.pdf",
    )
    session = FakeSession([_pdf_download()], [_uploaded()])
    result = _uploader(session, temp_root, []).upload_asset(reference, "file")
    assert result.destination_id == 5
    assert session.get_calls[0][0] == "https://assets.ctfassets.net/a1/doc.pdf"


def test_deadline_is_checked_before_upload(temp_root):
    class Spent:
        def check(self):
            raise MigrationTimeoutError("over budget")

    session = FakeSession([_pdf_download()], [_uploaded()])
    with pytest.raises(MigrationTimeoutError):
        _uploader(session, temp_root, [], deadline=Spent()).upload("https://x/a.pdf", "a.pdf", None, "f")
    assert session.get_calls == []
    assert os.listdir(temp_root) == []


def test_extension_follows_transcoded_content_type(temp_root, monkeypatch):
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), (0, 0, 0)).save(buf, format="PNG")
    download = FakeResponse(200, content=buf.getvalue(), headers={"Content-Type": "image/png"})
    decision = TranscodeDecision(quality=95, max_dimension=5000, output_format="JPEG")
    monkeypatch.setattr(
        media_uploader, "transcode_image",
        lambda data, content_type: TranscodeResult(b"\xff\xd8jpeg", "image/jpeg", True, decision),
    )
    session = FakeSession([download], [_uploaded(url="/uploads/photo.jpg", name="photo.jpg")])
    _uploader(session, temp_root, []).upload("https://x/photo.png", "photo.png", "image/png", "cover")
    sent = _sent(session.request_calls[0])
    assert b'filename="photo.jpg"' in sent
    assert b"Content-Type: image/jpeg" in sent
