"""WhatsApp source adapter backed by a whatsmeow sidecar binary.

The sidecar owns the WhatsApp session. We talk to it in two ways:
- ``events``: a long-running process that prints one JSON envelope per line
- one-shot commands (``me``, ``send``, ``download``, ``picture``, ``contact``,
  ``group``) that read an optional JSON request on stdin and print a JSON
  result (or raw bytes for ``download``) on stdout

Profile pictures are served by WhatsApp's CDN and fetched directly with httpx.
"""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from typing import Any, AsyncIterator, Callable, Optional, Sequence

import httpx

from adapters.whatsapp_mapper import map_event
from core.errors import DownloadError, TransientNetworkError
from core.models import Event, GroupInfo, MediaContent

LOGGER = logging.getLogger(__name__)

# Event lines can carry large protobuf payloads (thumbnails, vCards).
STREAM_LIMIT = 16 * 1024 * 1024


class WhatsAppSidecar:
    """SourcePort implementation that shells out to the sidecar binary."""

    def __init__(
        self,
        binary: str,
        data_dir: Optional[str] = None,
        timeout: float = 120.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._binary = binary
        self._data_dir = data_dir
        self._timeout = timeout
        self._http = http_client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)
        self._events_proc: Optional[asyncio.subprocess.Process] = None
        self._own_user_id = ""

    @property
    def own_user_id(self) -> str:
        return self._own_user_id

    def _command(self, *args: str) -> list[str]:
        command = [self._binary]
        if self._data_dir:
            command += ["--store", self._data_dir]
        command += list(args)
        return command

    async def _run(self, *args: str, request: Optional[dict] = None) -> bytes:
        """Run one sidecar command and return its stdout."""

        stdin = json.dumps(request).encode("utf-8") if request is not None else None
        proc = await asyncio.create_subprocess_exec(
            *self._command(*args),
            stdin=asyncio.subprocess.PIPE if stdin is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(stdin), timeout=self._timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            raise TransientNetworkError(f"sidecar {args[0]} timed out after {self._timeout}s") from exc

        if proc.returncode != 0:
            error = stderr.decode("utf-8", errors="replace").strip()
            raise TransientNetworkError(f"sidecar {args[0]} failed (exit {proc.returncode}): {error}")
        return stdout

    async def _run_json(self, *args: str, request: Optional[dict] = None) -> Any:
        output = await self._run(*args, request=request)
        if not output.strip():
            return {}
        try:
            return json.loads(output)
        except json.JSONDecodeError as exc:
            raise TransientNetworkError(f"sidecar {args[0]} returned invalid JSON") from exc

    async def connect(self) -> None:
        """Read the logged-in account's JID; fails if the session is not paired."""

        result = await self._run_json("me")
        own_id = result.get("jid") if isinstance(result, dict) else None
        if not own_id:
            raise RuntimeError("WhatsApp sidecar is not logged in; pair it before starting the bridge")
        self._own_user_id = str(own_id)
        LOGGER.info("WhatsApp sidecar connected as %s", self._own_user_id)

    # -- SourcePort ----------------------------------------------------------

    async def send_message(
        self,
        chat_id: str,
        text: str,
        quoted_id: Optional[str] = None,
        quoted_sender: Optional[str] = None,
        mentions: Sequence[str] = (),
    ) -> str:
        request = {
            "chat": chat_id,
            "text": text,
            "quoted_id": quoted_id,
            "quoted_sender": quoted_sender,
            "mentions": list(mentions),
        }
        result = await self._run_json("send", request=request)
        return str(result.get("id", ""))

    async def download_media(self, media: MediaContent) -> bytes:
        try:
            return await self._run("download", request={"kind": media.kind.value, "message": media.raw or {}})
        except TransientNetworkError as exc:
            raise DownloadError(f"Failed to download {media.kind.value}: {exc}") from exc

    async def get_profile_picture_url(self, subject_id: str) -> Optional[str]:
        result = await self._run_json("picture", subject_id)
        return result.get("url") or None

    async def download_url(self, url: str) -> bytes:
        try:
            response = await self._http.get(url)
            response.raise_for_status()
        except httpx.HTTPError as exc:
            raise DownloadError(f"Failed to fetch {url}: {exc}") from exc
        return response.content

    async def fetch_contact_name(self, user_id: str) -> Optional[str]:
        result = await self._run_json("contact", user_id)
        for key in ("full_name", "business_name", "push_name", "first_name"):
            if result.get(key):
                return str(result[key])
        return None

    async def fetch_group_info(self, group_id: str) -> Optional[GroupInfo]:
        result = await self._run_json("group", group_id)
        if not result:
            return None
        return GroupInfo(
            name=str(result.get("name", "")),
            participants=tuple(str(jid) for jid in result.get("participants") or []),
        )

    # -- event stream ----------------------------------------------------------

    async def events(self) -> AsyncIterator[dict]:
        """Yield raw event envelopes until the sidecar exits."""

        proc = await asyncio.create_subprocess_exec(
            *self._command("events"),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            limit=STREAM_LIMIT,
        )
        self._events_proc = proc
        assert proc.stdout is not None
        try:
            async for line in proc.stdout:
                line = line.strip()
                if not line:
                    continue
                try:
                    envelope = json.loads(line)
                except ValueError:
                    LOGGER.warning("Skipping malformed sidecar line: %r", line[:200])
                    continue
                if isinstance(envelope, dict):
                    yield envelope
        finally:
            if proc.returncode is None:
                with contextlib.suppress(ProcessLookupError):
                    proc.terminate()
            await proc.wait()
            self._events_proc = None

        if proc.returncode not in (0, -15):
            raise TransientNetworkError(f"sidecar event stream exited with {proc.returncode}")

    async def listen(self, handler: Callable[[Event], Any]) -> None:
        """Map every envelope and pass the resulting event to ``handler``."""

        async for envelope in self.events():
            try:
                event = map_event(envelope)
            except (KeyError, TypeError, ValueError):
                LOGGER.warning("Failed to map %s event", envelope.get("type"), exc_info=True)
                continue
            if event is None:
                LOGGER.debug("Ignoring sidecar event %s", envelope.get("type"))
                continue
            handler(event)

    async def close(self) -> None:
        if self._events_proc is not None and self._events_proc.returncode is None:
            with contextlib.suppress(ProcessLookupError):
                self._events_proc.terminate()
        await self._http.aclose()
