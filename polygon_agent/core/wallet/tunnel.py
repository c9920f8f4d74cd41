"""
Cloudflare quick tunnel for exposing the loopback callback listener.

The cloudflared binary is taken from an explicit path, PATH, or a cached copy
under the storage directory, and downloaded once from the GitHub releases
when none is found.
"""

import asyncio
import logging
import os
import platform
import re
import shutil
import stat
import tarfile
import tempfile
from pathlib import Path
from typing import List, Optional

import httpx

from ..recovery.errors import TunnelUnavailable
from ..vault.keys import ensure_private_dir

logger = logging.getLogger(__name__)

RELEASE_BASE_URL = "https://github.com/cloudflare/cloudflared/releases/latest/download"

_URL_RE = re.compile(r"https://[a-zA-Z0-9][-a-zA-Z0-9]*\.trycloudflare\.com")


def release_asset_name(system: Optional[str] = None, machine: Optional[str] = None) -> str:
    """Name of the release asset for this platform."""
    system = (system or platform.system()).lower()
    machine = (machine or platform.machine()).lower()
    arch = "arm64" if machine in ("arm64", "aarch64") else "amd64"

    if system == "darwin":
        return f"cloudflared-darwin-{arch}.tgz"
    if system == "linux":
        return f"cloudflared-linux-{arch}"
    if system == "windows":
        return f"cloudflared-windows-{arch}.exe"
    raise TunnelUnavailable(f"No cloudflared build for platform {system}/{machine}")


def find_public_url(line: str) -> Optional[str]:
    match = _URL_RE.search(line)
    return match.group(0) if match else None


class CloudflaredTunnel:
    """A running `cloudflared tunnel --url` child process."""

    def __init__(
        self,
        bin_dir: Path,
        binary: Optional[str] = None,
        start_timeout: float = 20.0,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.bin_dir = Path(bin_dir)
        self.binary = binary
        self.start_timeout = start_timeout
        self.public_url: Optional[str] = None
        self._http_client = http_client
        self._process: Optional[asyncio.subprocess.Process] = None
        self._readers: List[asyncio.Task] = []

    @property
    def cached_binary(self) -> Path:
        name = "cloudflared.exe" if platform.system().lower() == "windows" else "cloudflared"
        return self.bin_dir / name

    async def resolve_binary(self) -> str:
        if self.binary:
            return self.binary

        found = shutil.which("cloudflared")
        if found:
            return found

        if self.cached_binary.exists():
            return str(self.cached_binary)

        return str(await self._download())

    async def _download(self) -> Path:
        asset = release_asset_name()
        url = f"{RELEASE_BASE_URL}/{asset}"
        logger.info(f"Downloading cloudflared from {url}")

        client = self._http_client or httpx.AsyncClient(timeout=120.0, follow_redirects=True)
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TunnelUnavailable(f"Failed to download cloudflared: {e}") from e
        finally:
            if self._http_client is None:
                await client.aclose()

        target = self.cached_binary
        try:
            ensure_private_dir(self.bin_dir)
            if asset.endswith(".tgz"):
                with tempfile.TemporaryDirectory() as tmp:
                    archive = Path(tmp) / asset
                    archive.write_bytes(response.content)
                    with tarfile.open(archive, "r:gz") as tar:
                        extracted = tar.extractfile(tar.getmember("cloudflared"))
                        if extracted is None:
                            raise TunnelUnavailable("cloudflared archive has no binary")
                        target.write_bytes(extracted.read())
            else:
                target.write_bytes(response.content)
            os.chmod(target, stat.S_IRWXU | stat.S_IRGRP | stat.S_IXGRP | stat.S_IROTH | stat.S_IXOTH)
        except (tarfile.TarError, KeyError, OSError) as e:
            if target.is_file():
                target.unlink()
            raise TunnelUnavailable(f"Failed to install cloudflared from {asset}: {e}") from e

        return target

    async def start(self, local_port: int) -> str:
        """
        Start the tunnel and wait for its public URL.

        Raises:
            TunnelUnavailable: binary missing, process died, or no URL in time
        """
        binary = await self.resolve_binary()
        try:
            self._process = await asyncio.create_subprocess_exec(
                binary,
                "tunnel",
                "--url",
                f"http://localhost:{local_port}",
                "--no-autoupdate",
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            raise TunnelUnavailable(f"Failed to start cloudflared: {e}") from e

        found: asyncio.Future = asyncio.get_running_loop().create_future()
        for stream in (self._process.stdout, self._process.stderr):
            self._readers.append(asyncio.create_task(self._scan(stream, found)))

        try:
            self.public_url = await asyncio.wait_for(found, timeout=self.start_timeout)
        except asyncio.TimeoutError as e:
            await self.stop()
            raise TunnelUnavailable(
                f"cloudflared did not report a public URL within {self.start_timeout}s"
            ) from e
        except TunnelUnavailable:
            await self.stop()
            raise

        logger.info(f"Tunnel up at {self.public_url}")
        return self.public_url

    async def _scan(self, stream: Optional[asyncio.StreamReader], found: asyncio.Future) -> None:
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            url = find_public_url(line.decode("utf-8", errors="replace"))
            if url and not found.done():
                found.set_result(url)
        # Both pipes closing before a URL means the process exited
        if not found.done() and all(r.done() or r is asyncio.current_task() for r in self._readers):
            found.set_exception(TunnelUnavailable("cloudflared exited before reporting a URL"))

    async def stop(self) -> None:
        process = self._process
        self._process = None
        if process is not None and process.returncode is None:
            process.terminate()
            try:
                await asyncio.wait_for(process.wait(), timeout=5)
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
        for reader in self._readers:
            reader.cancel()
        if self._readers:
            await asyncio.gather(*self._readers, return_exceptions=True)
        self._readers = []
