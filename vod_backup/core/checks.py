"""External component checks.

Used by the health endpoint to report whether the downloader binary is
installed and runnable.
"""

import asyncio
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple


@dataclass
class CheckResult:
    """Result of a component availability check.

    Attributes:
        name: Component name (e.g., "ytdlp")
        available: Whether the component is available and functional
        version: Version string if available
        error: Error message if check failed
        details: Additional details about the check result
    """

    name: str
    available: bool
    version: Optional[str] = None
    error: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


async def _run_binary_check(
    name: str,
    command: List[str],
    timeout: float,
    parse_output: Callable[[bytes], Tuple[bool, Optional[str], Optional[str]]],
) -> CheckResult:
    """Run a binary and turn its outcome into a CheckResult.

    Args:
        name: Component name for the result.
        command: Command and arguments to execute.
        timeout: Maximum time to wait in seconds.
        parse_output: Parses stdout into (success, version, error_message).

    Returns:
        CheckResult with availability status.
    """
    proc = None
    try:
        proc = await asyncio.create_subprocess_exec(
            *command,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=timeout)

        if proc.returncode == 0:
            success, version, error = parse_output(stdout)
            if success:
                return CheckResult(name=name, available=True, version=version)
            return CheckResult(name=name, available=False, version=version, error=error)

        return CheckResult(
            name=name,
            available=False,
            error=f"{command[0]} returned non-zero exit code",
        )
    except asyncio.TimeoutError:
        if proc:
            proc.kill()
            await proc.wait()
        return CheckResult(name=name, available=False, error=f"{command[0]} check timed out")
    except FileNotFoundError:
        return CheckResult(name=name, available=False, error=f"{command[0]} not found")
    except OSError as e:
        return CheckResult(name=name, available=False, error=str(e))


async def check_ytdlp(binary: str = "yt-dlp", timeout: float = 5.0) -> CheckResult:
    """Check that the downloader is installed by running ``--version``.

    Args:
        binary: Downloader executable name or path.
        timeout: Maximum time to wait for the check in seconds.

    Returns:
        CheckResult with availability status and version if available.
    """

    def parse_version(stdout: bytes) -> Tuple[bool, Optional[str], Optional[str]]:
        version = stdout.decode().strip()
        if not version:
            return False, None, f"{binary} printed no version"
        return True, version, None

    return await _run_binary_check(
        name="ytdlp",
        command=[binary, "--version"],
        timeout=timeout,
        parse_output=parse_version,
    )
