import os

import pytest
import requests

from core.model.downloader import ModelDownloader, compute_percent
from schemas.models import DownloadResultStatus, DownloadStatusEnum
from utils.errors import ErrorKind
from utils.exceptions import ModelServiceError
from tests.fakes import FakeResponse, FakeSession


class ProgressRecorder:
    def __init__(self):
        self.calls = []

    def __call__(self, bytes_done, bytes_total, percent):
        self.calls.append((bytes_done, bytes_total, percent))


@pytest.mark.parametrize("done,total,expected", [
    (0, 100, 0),
    (50, 100, 50),
    (100, 100, 100),
    (150, 100, 100),
    (10, 0, 0),
])
def test_compute_percent(done, total, expected):
    assert compute_percent(done, total) == expected


def test_download_streams_reports_progress_and_makes_model_resolvable(downloader, locator, ledger, fake_session, m1):
    body = b"m" * 4096
    fake_session.response_factory = lambda url: FakeResponse(body)
    progress = ProgressRecorder()

    assert locator.resolve(m1) is None
    result = downloader.download(m1, progress)

    assert result.success and result.status == DownloadResultStatus.DOWNLOADED
    assert result.size_bytes == len(body)
    assert locator.resolve(m1) == result.path
    with open(result.path, "rb") as f:
        assert f.read() == body

    done_values = [c[0] for c in progress.calls]
    assert done_values == sorted(done_values)
    assert progress.calls[-1] == (len(body), len(body), 100)
    assert not os.path.exists(result.path + ".part")

    info = ledger.get_info(m1.id)
    assert info.download_status == DownloadStatusEnum.COMPLETED
    assert info.file_size == len(body)
    assert downloader.progress.get(m1.id).state == "COMPLETED"
    assert fake_session.calls[0]["stream"] is True


def test_second_download_performs_no_transfer(downloader, locator, fake_session, m1):
    first = downloader.download(m1)
    second = downloader.download(m1)

    assert len(fake_session.calls) == 1
    assert second.status == DownloadResultStatus.ALREADY_EXISTS
    assert second.path == first.path
    assert locator.resolve(m1) == first.path


def test_existing_file_without_reference_is_registered(downloader, locator, fake_session, m1):
    target = downloader.target_path(m1)
    target.write_bytes(b"already here")
    result = downloader.download(m1)
    assert result.status == DownloadResultStatus.ALREADY_EXISTS
    assert fake_session.calls == []
    assert locator.resolve(m1) == str(target)


def test_unknown_content_length_still_ends_at_100_percent(downloader, fake_session, m1):
    fake_session.response_factory = lambda url: FakeResponse(b"z" * 2500, send_length=False)
    progress = ProgressRecorder()
    result = downloader.download(m1, progress)
    assert result.size_bytes == 2500
    assert progress.calls[-1] == (2500, 2500, 100)


def test_truncated_transfer_fails_and_leaves_no_artifact(downloader, locator, ledger, fake_session, m1):
    fake_session.response_factory = lambda url: FakeResponse(b"t" * 3000, truncate_at=1200)
    with pytest.raises(ModelServiceError) as exc_info:
        downloader.download(m1)
    assert exc_info.value.kind == ErrorKind.DOWNLOAD_FAILED
    assert exc_info.value.context["bytes_done"] == 1200
    assert not downloader.target_path(m1).exists()
    assert locator.resolve(m1) is None
    assert ledger.get_info(m1.id).download_status == DownloadStatusEnum.FAILED
    assert downloader.progress.get(m1.id).state == "FAILED"


def test_http_error_maps_to_download_failed(downloader, fake_session, m1):
    fake_session.response_factory = lambda url: FakeResponse(b"denied", status_code=403)
    with pytest.raises(ModelServiceError) as exc_info:
        downloader.download(m1)
    assert exc_info.value.kind == ErrorKind.DOWNLOAD_FAILED
    assert exc_info.value.context["exception"] == "HTTPError"


def test_connection_error_maps_to_download_failed(downloader, fake_session, m1):
    fake_session.error = requests.ConnectionError("network unreachable")
    with pytest.raises(ModelServiceError) as exc_info:
        downloader.download(m1)
    assert exc_info.value.kind == ErrorKind.DOWNLOAD_FAILED


def test_failing_progress_callback_records_download_failed(downloader, locator, ledger, m1):
    def on_progress(done, total, percent):
        raise RuntimeError("listener went away")

    with pytest.raises(ModelServiceError) as exc_info:
        downloader.download(m1, on_progress=on_progress)
    assert exc_info.value.kind == ErrorKind.DOWNLOAD_FAILED
    assert exc_info.value.context["exception"] == "RuntimeError"
    assert ledger.get_info(m1.id).download_status == DownloadStatusEnum.FAILED
    assert downloader.progress.get(m1.id).state == "FAILED"
    assert locator.resolve(m1) is None


def test_malformed_content_length_records_download_failed(downloader, ledger, fake_session, m1):
    def respond(url):
        response = FakeResponse(b"m" * 100)
        response.headers["Content-Length"] = "lots"
        return response

    fake_session.response_factory = respond
    with pytest.raises(ModelServiceError) as exc_info:
        downloader.download(m1)
    assert exc_info.value.context["exception"] == "ValueError"
    assert downloader.progress.get(m1.id).state == "FAILED"


def test_auth_token_is_sent_as_bearer_header(locator, ledger, tmp_path, m1):
    session = FakeSession()
    downloader = ModelDownloader(locator, ledger, shared_dir=None, app_dir=str(tmp_path / "dl"),
                                 auth_token="secret", session=session)
    downloader.download(m1)
    assert session.calls[0]["headers"]["Authorization"] == "Bearer secret"
    assert ledger.get_models_directory() == str((tmp_path / "dl").absolute())
