from __future__ import annotations

import asyncio
import io
from typing import Optional

from PIL import Image

from core.config import BridgeConfig, MediaSkipConfig
from core.errors import DestinationError, DownloadError
from core.media import (
    DOWNLOAD_FAILED,
    DROPPED,
    SENT,
    SKIPPED,
    TOO_LARGE,
    UPLOAD_FAILED,
    MediaTransfer,
    video_file_name,
)
from core.models import MediaContent, MediaKind, Placement, UrlButton
from core.transcode import animated_webp_to_gif

PLACEMENT = Placement(chat_id=-100, thread_id=7)
HEADER = "<b>Alice</b>\n<b>#Private</b>\n\n"
BUTTON = UrlButton("Alice", "https://wa.me/111")


class FakeSource:
    def __init__(self, fail: bool = False) -> None:
        self.downloads: list[MediaContent] = []
        self.fail = fail
        self.payload = b"payload"

    async def download_media(self, media: MediaContent) -> bytes:
        self.downloads.append(media)
        if self.fail:
            raise DownloadError("media expired")
        return self.payload


class FakeDestination:
    def __init__(self, fail_uploads: bool = False) -> None:
        self.calls: list[tuple[str, dict]] = []
        self.fail_uploads = fail_uploads

    def _record(self, name: str, upload: bool = True, **kwargs) -> int:
        if upload and self.fail_uploads:
            raise DestinationError("FILE_PARTS_INVALID")
        self.calls.append((name, kwargs))
        return 100 + len(self.calls)

    def names(self) -> list[str]:
        return [name for name, _ in self.calls]

    async def send_text(self, chat_id, text, thread_id=0, reply_to=None, button=None) -> int:
        return self._record("send_text", upload=False, text=text, thread_id=thread_id, reply_to=reply_to)

    async def send_photo(self, chat_id, data, caption="", thread_id=0, reply_to=None, button=None) -> int:
        return self._record("send_photo", data=data, caption=caption, thread_id=thread_id)

    async def send_video(self, chat_id, data, file_name, caption="", thread_id=0, reply_to=None, button=None) -> int:
        return self._record("send_video", file_name=file_name, caption=caption)

    async def send_animation(self, chat_id, data, caption="", thread_id=0, reply_to=None, button=None) -> int:
        return self._record("send_animation", data=data, caption=caption, button=button)

    async def send_audio(
        self, chat_id, data, file_name, duration=0, caption="", thread_id=0, reply_to=None, button=None
    ) -> int:
        return self._record("send_audio", file_name=file_name, duration=duration, caption=caption)

    async def send_document(
        self, chat_id, data, file_name, caption="", thread_id=0, reply_to=None, button=None
    ) -> int:
        return self._record("send_document", file_name=file_name, caption=caption)

    async def send_sticker(self, chat_id, data, thread_id=0, reply_to=None, button=None) -> int:
        return self._record("send_sticker", data=data, button=button)


def _media(kind: MediaKind, **overrides) -> MediaContent:
    values = dict(kind=kind, url="https://mmg.whatsapp.net/x", file_length=1024)
    values.update(overrides)
    return MediaContent(**values)


def _transfer(
    config: Optional[BridgeConfig] = None,
    source: Optional[FakeSource] = None,
    destination: Optional[FakeDestination] = None,
    transcoder=lambda data: None,
) -> tuple[MediaTransfer, FakeSource, FakeDestination]:
    source = source or FakeSource()
    destination = destination or FakeDestination()
    transfer = MediaTransfer(source, destination, config or BridgeConfig(target_chat_id=-100), transcoder)
    return transfer, source, destination


def test_oversized_media_is_never_downloaded() -> None:
    transfer, source, destination = _transfer()
    media = _media(MediaKind.VIDEO, file_length=60 * 1024 * 1024)

    outcome = asyncio.run(transfer.transfer(media, HEADER, PLACEMENT))

    assert outcome.status == TOO_LARGE
    assert outcome.message_id == 101
    assert source.downloads == []
    name, sent = destination.calls[0]
    assert name == "send_text"
    assert sent["text"] == HEADER + "\nCouldn't send the video as it exceeds Telegram size restrictions."
    assert sent["thread_id"] == 7


def test_self_hosted_api_lifts_size_limit() -> None:
    config = BridgeConfig(target_chat_id=-100, self_hosted_api=True)
    transfer, source, destination = _transfer(config)

    outcome = asyncio.run(transfer.transfer(_media(MediaKind.VIDEO, file_length=60 * 1024 * 1024), HEADER, PLACEMENT))

    assert outcome.status == SENT
    assert len(source.downloads) == 1


def test_skip_flag_sends_notice_with_message_id() -> None:
    config = BridgeConfig(target_chat_id=-100, media=MediaSkipConfig(skip_documents=True))
    transfer, source, destination = _transfer(config)

    outcome = asyncio.run(transfer.transfer(_media(MediaKind.DOCUMENT), HEADER, PLACEMENT))

    assert outcome.status == SKIPPED
    assert outcome.message_id is not None
    assert source.downloads == []
    assert destination.calls[0][1]["text"].endswith("Skipping document because 'skip_documents' set in config file")


def test_media_without_url_is_dropped() -> None:
    transfer, source, destination = _transfer()

    outcome = asyncio.run(transfer.transfer(_media(MediaKind.IMAGE, url=""), HEADER, PLACEMENT))

    assert outcome.status == DROPPED
    assert outcome.message_id is None
    assert destination.calls == []


def test_download_failure_degrades_to_text() -> None:
    transfer, _, destination = _transfer(source=FakeSource(fail=True))

    outcome = asyncio.run(transfer.transfer(_media(MediaKind.IMAGE), HEADER, PLACEMENT))

    assert outcome.status == DOWNLOAD_FAILED
    assert destination.names() == ["send_text"]
    assert "Couldn't download the photo" in destination.calls[0][1]["text"]


def test_upload_failure_degrades_to_text() -> None:
    transfer, _, destination = _transfer(destination=FakeDestination(fail_uploads=True))

    outcome = asyncio.run(transfer.transfer(_media(MediaKind.VIDEO), HEADER, PLACEMENT))

    assert outcome.status == UPLOAD_FAILED
    assert outcome.message_id == 101
    assert "Couldn't upload the video" in destination.calls[0][1]["text"]


def test_image_caption_follows_header() -> None:
    transfer, _, destination = _transfer()

    asyncio.run(transfer.transfer(_media(MediaKind.IMAGE, caption="sunset <3"), HEADER, PLACEMENT))

    name, sent = destination.calls[0]
    assert name == "send_photo"
    assert sent["caption"] == HEADER + "sunset &lt;3"
    assert sent["data"] == b"payload"


def test_audio_file_names_and_duration() -> None:
    transfer, _, destination = _transfer()

    asyncio.run(transfer.transfer(_media(MediaKind.VOICE_NOTE, seconds=12, caption="ignored"), HEADER, PLACEMENT))
    asyncio.run(transfer.transfer(_media(MediaKind.AUDIO, seconds=200), HEADER, PLACEMENT))

    assert [sent["file_name"] for _, sent in destination.calls] == ["audio.ogg", "audio.m4a"]
    assert destination.calls[0][1]["duration"] == 12
    assert destination.calls[0][1]["caption"] == HEADER


def test_video_and_document_names() -> None:
    transfer, _, destination = _transfer()

    asyncio.run(transfer.transfer(_media(MediaKind.VIDEO, mimetype="video/webm"), HEADER, PLACEMENT))
    asyncio.run(transfer.transfer(_media(MediaKind.DOCUMENT, file_name="report.pdf"), HEADER, PLACEMENT))
    asyncio.run(transfer.transfer(_media(MediaKind.DOCUMENT), HEADER, PLACEMENT))

    assert [sent["file_name"] for _, sent in destination.calls] == ["video.webm", "report.pdf", "document"]
    assert video_file_name("") == "video.mp4"


def test_failed_sticker_transcode_uploads_raw_sticker_once() -> None:
    transfer, _, destination = _transfer(transcoder=lambda data: None)

    outcome = asyncio.run(transfer.transfer(_media(MediaKind.STICKER, is_animated=True), HEADER, PLACEMENT, BUTTON))

    assert outcome.status == SENT
    assert destination.names() == ["send_sticker"]
    assert destination.calls[0][1]["button"] == BUTTON


def test_animated_sticker_is_sent_as_animation() -> None:
    transfer, _, destination = _transfer(transcoder=lambda data: b"GIF89a")

    asyncio.run(transfer.transfer(_media(MediaKind.STICKER, is_animated=True), HEADER, PLACEMENT, BUTTON))

    assert destination.names() == ["send_animation"]
    assert destination.calls[0][1]["data"] == b"GIF89a"
    assert destination.calls[0][1]["caption"] == HEADER


def test_static_sticker_skips_transcoder() -> None:
    calls = []
    transfer, _, destination = _transfer(transcoder=lambda data: calls.append(data))

    asyncio.run(transfer.transfer(_media(MediaKind.STICKER), HEADER, PLACEMENT))

    assert calls == []
    assert destination.names() == ["send_sticker"]


def test_transcoder_rejects_garbage() -> None:
    assert animated_webp_to_gif(b"not an image") is None


def test_transcoder_produces_gif_frames() -> None:
    frames = [Image.new("RGBA", (8, 8), color) for color in ((255, 0, 0, 255), (0, 0, 255, 255))]
    source = io.BytesIO()
    frames[0].save(source, format="GIF", save_all=True, append_images=frames[1:], duration=[50, 80])

    result = animated_webp_to_gif(source.getvalue())

    assert result is not None
    assert result.startswith(b"GIF89a")
    with Image.open(io.BytesIO(result)) as decoded:
        assert decoded.n_frames == 2


def _animated_gif(size: int) -> bytes:
    frames = [Image.new("RGBA", (size, size), color) for color in ((255, 0, 0, 255), (0, 255, 0, 255))]
    source = io.BytesIO()
    frames[0].save(source, format="GIF", save_all=True, append_images=frames[1:], duration=[40, 40])
    return source.getvalue()


def test_transcoder_rejects_oversized_frames(monkeypatch) -> None:
    data = _animated_gif(100)
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)

    assert animated_webp_to_gif(data) is None


def test_oversized_sticker_falls_back_to_raw_upload(monkeypatch) -> None:
    source = FakeSource()
    source.payload = _animated_gif(100)
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 1000)
    transfer, _, destination = _transfer(source=source, transcoder=animated_webp_to_gif)

    outcome = asyncio.run(transfer.transfer(_media(MediaKind.STICKER, is_animated=True), HEADER, PLACEMENT, BUTTON))

    assert outcome.status == SENT
    assert destination.names() == ["send_sticker"]
