"""Cloud SQL Proxy 바이너리 경로 결정 및 다운로드."""

import asyncio
import logging
import os
import platform
import sys
from pathlib import Path
from typing import Optional

import httpx

from mysql_mcp.errors import BinaryDownloadError, ProxyStartupFailure, UnsupportedPlatformError

logger = logging.getLogger("BINARY_MANAGER")

PROXY_VERSION = "v2.14.3"
BASE_URL = "https://storage.googleapis.com/cloud-sql-connectors/cloud-sql-proxy"

DOWNLOAD_TIMEOUT = 30.0
MAX_REDIRECTS = 5
REDIRECT_STATUSES = {301, 302, 303, 307, 308}
PROGRESS_STEP = 5 * 1024 * 1024
CHUNK_SIZE = 64 * 1024

# {OS: {arch: 다운로드 파일 접미어}}
PLATFORM_SUFFIXES = {
    "darwin": {"arm64": "darwin.arm64", "x64": "darwin.amd64"},
    "linux": {"arm64": "linux.arm64", "x64": "linux.amd64"},
    "win32": {"x64": "windows.amd64.exe"},
}

_ARCH_ALIASES = {
    "x86_64": "x64",
    "amd64": "x64",
    "x64": "x64",
    "arm64": "arm64",
    "aarch64": "arm64",
}


def _host_platform() -> tuple[str, str]:
    """(OS, 아키텍처) 반환. 아키텍처는 x64/arm64 로 정규화."""
    system = "win32" if sys.platform.startswith("win") else sys.platform
    machine = platform.machine().lower()
    return system, _ARCH_ALIASES.get(machine, machine)


def _is_windows() -> bool:
    return _host_platform()[0] == "win32"


def get_platform_suffix() -> str:
    """현재 플랫폼의 다운로드 접미어. 지원하지 않으면 UnsupportedPlatformError."""
    system, arch = _host_platform()
    suffix = PLATFORM_SUFFIXES.get(system, {}).get(arch)
    if not suffix:
        raise UnsupportedPlatformError(
            f"Unsupported platform: {system}/{arch}. Cloud SQL Proxy supports "
            "darwin (arm64, x64), linux (arm64, x64), and win32 (x64)."
        )
    return suffix


def get_default_install_dir() -> Path:
    if _is_windows():
        app_data = os.environ.get("APPDATA") or str(Path.home() / "AppData" / "Roaming")
        return Path(app_data) / "cloudsql-proxy"
    return Path.home() / ".cloudsql-proxy"


def get_binary_path(custom_path: Optional[str] = None) -> Path:
    if custom_path:
        return Path(custom_path).expanduser()
    binary_name = "cloud-sql-proxy.exe" if _is_windows() else "cloud-sql-proxy"
    return get_default_install_dir() / binary_name


def get_download_url(version: str = PROXY_VERSION) -> str:
    suffix = get_platform_suffix()
    return f"{BASE_URL}/{version}/cloud-sql-proxy.{suffix}"


def binary_exists(binary_path: Path) -> bool:
    """실행 가능한 파일이 있는지 확인 (Windows는 존재 여부만)."""
    if not binary_path.is_file():
        return False
    if _is_windows():
        return True
    return os.access(binary_path, os.X_OK)


def _cleanup(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("Failed to remove partial download %s: %s", path, e)


async def _write_stream(response: httpx.Response, temp_path: Path) -> None:
    """응답 본문을 임시 파일로 저장 (진행률 로그 포함)."""
    total = int(response.headers.get("content-length") or 0)
    downloaded = 0
    next_report = PROGRESS_STEP
    try:
        with open(temp_path, "wb") as f:
            async for chunk in response.aiter_bytes(CHUNK_SIZE):
                await asyncio.to_thread(f.write, chunk)
                downloaded += len(chunk)
                if total > 0 and downloaded >= next_report:
                    logger.info(
                        "Download progress: %s%% (%sMB)",
                        round(downloaded / total * 100),
                        round(downloaded / 1024 / 1024),
                    )
                    next_report += PROGRESS_STEP
    except OSError as e:
        raise BinaryDownloadError(f"Failed to write Cloud SQL Proxy binary: {e}") from e
    except httpx.TimeoutException:
        raise
    except httpx.TransportError as e:
        raise BinaryDownloadError(f"Download interrupted: {e}") from e


async def download_file(
    url: str,
    dest_path: Path,
    *,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = DOWNLOAD_TIMEOUT,
) -> None:
    """
    리다이렉트를 따라가며 파일 다운로드.

    임시 경로(<dest>.downloading)에 받은 뒤 rename 하므로
    실패해도 최종 경로에는 파일이 남지 않는다.
    """
    temp_path = dest_path.with_name(dest_path.name + ".downloading")
    owns_client = client is None
    if client is None:
        client = httpx.AsyncClient(timeout=timeout, follow_redirects=False)

    try:
        request_url = url
        for _ in range(MAX_REDIRECTS + 1):
            async with client.stream("GET", request_url) as response:
                if response.status_code in REDIRECT_STATUSES:
                    location = response.headers.get("location")
                    if not location:
                        raise BinaryDownloadError("Redirect without location header")
                    request_url = str(response.url.join(location))
                    continue

                if response.status_code != 200:
                    raise BinaryDownloadError(
                        f"Failed to download Cloud SQL Proxy: HTTP {response.status_code}. "
                        f"URL: {request_url}"
                    )

                await _write_stream(response, temp_path)
                break
        else:
            raise BinaryDownloadError("Too many redirects while downloading Cloud SQL Proxy")

        try:
            os.replace(temp_path, dest_path)
        except OSError as e:
            raise BinaryDownloadError(f"Failed to save Cloud SQL Proxy binary: {e}") from e

    except BinaryDownloadError:
        _cleanup(temp_path)
        raise
    except httpx.TimeoutException as e:
        _cleanup(temp_path)
        raise BinaryDownloadError(
            f"Download timed out after {int(timeout)} seconds. "
            "Check your network connection or try again later."
        ) from e
    except httpx.HTTPError as e:
        _cleanup(temp_path)
        raise BinaryDownloadError(
            f"Failed to download Cloud SQL Proxy: {e}. Check your network connection."
        ) from e
    except BaseException:
        _cleanup(temp_path)
        raise
    finally:
        if owns_client:
            await client.aclose()


async def download_binary(
    dest_path: Path,
    version: str = PROXY_VERSION,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> None:
    # 플랫폼 검사가 네트워크 호출보다 먼저
    url = get_download_url(version)
    try:
        dest_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise BinaryDownloadError(f"Failed to create install directory {dest_path.parent}: {e}") from e

    logger.info("Downloading binary from %s...", url)
    await download_file(url, dest_path, client=client)

    if not _is_windows():
        try:
            dest_path.chmod(0o755)
        except OSError as e:
            raise BinaryDownloadError(f"Failed to make Cloud SQL Proxy binary executable: {e}") from e

    logger.info("Binary downloaded to %s", dest_path)


async def ensure_binary(
    binary_path: Optional[str] = None,
    auto_download: bool = True,
    version: str = PROXY_VERSION,
    *,
    client: Optional[httpx.AsyncClient] = None,
) -> Path:
    """바이너리가 있으면 그 경로를, 없으면 (허용 시) 다운로드 후 경로를 반환."""
    final_path = get_binary_path(binary_path)

    if binary_exists(final_path):
        logger.info("Using existing binary at %s", final_path)
        return final_path

    if not auto_download:
        raise ProxyStartupFailure(
            f"Cloud SQL Proxy binary not found at {final_path}. "
            "Either set CLOUD_SQL_PROXY_AUTO_DOWNLOAD=true to enable automatic download, "
            "set CLOUD_SQL_PROXY_BINARY to point to an existing binary, "
            f"or manually download from {get_download_url(version)}"
        )

    logger.info("Binary not found at %s, downloading...", final_path)
    await download_binary(final_path, version, client=client)
    return final_path
