"""
Resolution of the external signing engine and its companion bundler.
"""
import hashlib
import logging
import os
import platform
import shutil
import stat
import sys
import tempfile
from pathlib import Path
from typing import Dict, Optional

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from ..models.config import Config
from ..models.errors import DownloadError, ToolingUnavailableError
from ..models.tooling import DownloadedBinary, ToolingStatus


class ToolingResolverInterface:
    """Interface for making the signing tools available."""

    def resolve(self) -> ToolingStatus:
        """Resolve the tools, returning whether they are available."""
        raise NotImplementedError

    def ensure_signing_tool_available(self) -> ToolingStatus:
        """
        Resolve the tools or fail.

        Raises:
            ToolingUnavailableError: If the tools cannot be made available
        """
        status = self.resolve()
        if not status.available:
            raise ToolingUnavailableError(status.error_message or "Signing tools unavailable")
        return status


class InProcessToolingService(ToolingResolverInterface):
    """Resolver for the in-process backend, which needs no external tools."""

    def resolve(self) -> ToolingStatus:
        return ToolingStatus.available_result({})


class CfsslToolingService(ToolingResolverInterface):
    """Locates cfssl/cfssljson, downloading the pinned release when missing."""

    DOWNLOAD_URL = "https://pkg.cfssl.org/R{release}/{name}_{platform}"
    TOOLS = ("cfssl", "cfssljson")
    CHUNK_SIZE = 64 * 1024

    def __init__(self, config: Config, backoff_factor: float = 1.0,
                 session: Optional[requests.Session] = None):
        """
        Initialize the tooling service.

        Args:
            config: Application configuration
            backoff_factor: Factor for exponential backoff between retries
            session: Preconfigured HTTP session (optional)
        """
        self.config = config
        self.bin_dir = Path(config.bin_dir)
        self.timeout = config.request_timeout_seconds
        self.max_retries = config.max_retry_attempts
        self.backoff_factor = backoff_factor
        self.logger = logging.getLogger(__name__)
        self.session = session or self._create_session()

    def _create_session(self) -> requests.Session:
        """Create a requests session with retry configuration."""
        session = requests.Session()

        retry_strategy = Retry(
            total=self.max_retries,
            backoff_factor=self.backoff_factor,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["HEAD", "GET"]
        )

        adapter = HTTPAdapter(max_retries=retry_strategy)
        session.mount("http://", adapter)
        session.mount("https://", adapter)

        return session

    def resolve(self) -> ToolingStatus:
        """
        Find cfssl and cfssljson, fetching them into the binary directory if needed.

        Returns:
            ToolingStatus; unavailable when the platform has no published binaries

        Raises:
            DownloadError: If fetching a binary fails
        """
        executables = self._find_executables()
        openssl = shutil.which("openssl")
        if openssl:
            executables["openssl"] = openssl

        missing = [name for name in self.TOOLS if name not in executables]
        if not missing:
            self.logger.info("cfssl found.")
            return ToolingStatus.available_result(executables)

        self.logger.warning(f"{' and '.join(missing)} not found in path.")

        platform_suffix = self._platform_suffix()
        if platform_suffix is None:
            message = (
                f"Unsupported platform {sys.platform}/{platform.machine()} for dependency "
                "resolution. Please install cfssl manually."
            )
            self.logger.error(message)
            return ToolingStatus.unavailable_result(message)

        for name in missing:
            binary = self.download_binary(name, platform_suffix)
            executables[name] = str(binary.path)

        return ToolingStatus.available_result(executables, downloaded=True)

    def _find_executables(self) -> Dict[str, str]:
        """Look each tool up in the binary directory, then on ``PATH``."""
        found = {}
        for name in self.TOOLS:
            local = self.bin_dir / name
            if local.is_file() and os.access(local, os.X_OK):
                found[name] = str(local)
                continue
            on_path = shutil.which(name)
            if on_path:
                found[name] = on_path
        return found

    def _platform_suffix(self) -> Optional[str]:
        """Release suffix for this host, or None if no binary is published."""
        machine = platform.machine().lower()
        if sys.platform.startswith("linux") and machine in ("x86_64", "amd64"):
            return "linux-amd64"
        return None

    def _expected_checksum(self, name: str) -> Optional[str]:
        return {
            "cfssl": self.config.cfssl_sha256,
            "cfssljson": self.config.cfssljson_sha256,
        }.get(name)

    def download_binary(self, name: str, platform_suffix: str) -> DownloadedBinary:
        """
        Download one tool into the binary directory and mark it executable.

        Args:
            name: Tool name (``cfssl`` or ``cfssljson``)
            platform_suffix: Release platform suffix, e.g. ``linux-amd64``

        Returns:
            DownloadedBinary describing the installed file

        Raises:
            DownloadError: On HTTP errors, timeouts, empty bodies or checksum mismatches
        """
        url = self.DOWNLOAD_URL.format(
            release=self.config.cfssl_release, name=name, platform=platform_suffix
        )
        target = self.bin_dir / name
        self.logger.debug(f"Downloading {name} version R{self.config.cfssl_release} from {url}")

        self.bin_dir.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(prefix=f".{name}.", dir=str(self.bin_dir))
        digest = hashlib.sha256()
        size = 0

        try:
            try:
                with os.fdopen(fd, 'wb') as out:
                    with self.session.get(url, timeout=self.timeout, stream=True) as response:
                        response.raise_for_status()
                        for chunk in response.iter_content(chunk_size=self.CHUNK_SIZE):
                            if chunk:
                                out.write(chunk)
                                digest.update(chunk)
                                size += len(chunk)
            except requests.exceptions.Timeout as e:
                raise DownloadError(f"Timed out downloading {name} from {url}: {e}") from e
            except requests.exceptions.HTTPError as e:
                status = e.response.status_code if e.response is not None else "unknown"
                raise DownloadError(f"HTTP error {status} downloading {name} from {url}") from e
            except requests.exceptions.RequestException as e:
                raise DownloadError(f"Failed to download {name} from {url}: {e}") from e

            if size == 0:
                raise DownloadError(f"Downloaded {name} from {url} is empty")

            checksum = digest.hexdigest()
            expected = self._expected_checksum(name)
            if expected and checksum.lower() != expected.lower():
                raise DownloadError(
                    f"Checksum mismatch for {name}: expected {expected}, got {checksum}"
                )

            os.chmod(tmp_name, os.stat(tmp_name).st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
            os.replace(tmp_name, target)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise

        self.logger.info(f"Installed {name} ({size} bytes, sha256 {checksum}) at {target}")
        return DownloadedBinary(name=name, url=url, path=target, size=size, sha256=checksum)
