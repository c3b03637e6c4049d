"""
Privilege elevation utilities for Jellyfin2Samsung.

This module wraps the OS-mediated elevation prompt (UAC "runas" on Windows,
pkexec elsewhere). Elevated children cannot have their standard streams
piped back to us, so the command is run through a shell that redirects all
output into a capture file which the caller reads after exit.
"""

import os
import shlex
import shutil
import subprocess
import logging
from pathlib import Path
from typing import List, Optional

from .platform_utils import is_windows

if is_windows():
    import ctypes
    from ctypes import wintypes
else:
    ctypes = None


logger = logging.getLogger(__name__)

# Win32 ERROR_CANCELLED: the user dismissed the UAC prompt
ERROR_CANCELLED = 1223
# pkexec exit status when the authentication dialog is dismissed
PKEXEC_DISMISSED = 126

_SEE_MASK_NOCLOSEPROCESS = 0x00000040
_SEE_MASK_NO_CONSOLE = 0x00008000
_INFINITE = 0xFFFFFFFF
_SW_HIDE = 0


def is_admin() -> bool:
    """Check if running with administrator/root privileges."""
    if not is_windows():
        return os.geteuid() == 0 if hasattr(os, 'geteuid') else False

    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    except (AttributeError, OSError):
        return False


def elevation_cancelled_code(windows_code: int = ERROR_CANCELLED) -> int:
    """Exit code reported by run_elevated when the user declines the prompt."""
    return windows_code if is_windows() else PKEXEC_DISMISSED


def build_redirected_command(tool: str, args: List[str], capture_file: Path) -> str:
    """
    Build the shell command line that runs tool with args and sends
    stdout and stderr into capture_file.
    """
    if is_windows():
        quoted = subprocess.list2cmdline([tool] + list(args))
        return f'/c "{quoted} > "{capture_file}" 2>&1"'
    quoted = " ".join(shlex.quote(part) for part in [tool] + list(args))
    return f"{quoted} > {shlex.quote(str(capture_file))} 2>&1"


if is_windows():
    class _ShellExecuteInfo(ctypes.Structure):
        _fields_ = [
            ("cbSize", wintypes.DWORD),
            ("fMask", ctypes.c_ulong),
            ("hwnd", wintypes.HWND),
            ("lpVerb", wintypes.LPCWSTR),
            ("lpFile", wintypes.LPCWSTR),
            ("lpParameters", wintypes.LPCWSTR),
            ("lpDirectory", wintypes.LPCWSTR),
            ("nShow", ctypes.c_int),
            ("hInstApp", wintypes.HINSTANCE),
            ("lpIDList", ctypes.c_void_p),
            ("lpClass", wintypes.LPCWSTR),
            ("hKeyClass", wintypes.HKEY),
            ("dwHotKey", wintypes.DWORD),
            ("hIconOrMonitor", wintypes.HANDLE),
            ("hProcess", wintypes.HANDLE),
        ]


def _run_elevated_windows(parameters: str, working_dir: Optional[Path]) -> int:
    info = _ShellExecuteInfo()
    info.cbSize = ctypes.sizeof(info)
    info.fMask = _SEE_MASK_NOCLOSEPROCESS | _SEE_MASK_NO_CONSOLE
    info.lpVerb = "runas"
    info.lpFile = os.environ.get("COMSPEC", "cmd.exe")
    info.lpParameters = parameters
    info.lpDirectory = str(working_dir) if working_dir else None
    info.nShow = _SW_HIDE

    if not ctypes.windll.shell32.ShellExecuteExW(ctypes.byref(info)):
        error = ctypes.windll.kernel32.GetLastError()
        logger.debug(f"ShellExecuteExW failed with error {error}")
        return int(error)

    kernel32 = ctypes.windll.kernel32
    try:
        kernel32.WaitForSingleObject(info.hProcess, _INFINITE)
        exit_code = wintypes.DWORD()
        kernel32.GetExitCodeProcess(info.hProcess, ctypes.byref(exit_code))
        return int(exit_code.value)
    finally:
        kernel32.CloseHandle(info.hProcess)


def run_elevated(tool: str, args: List[str], capture_file: Path,
                 working_dir: Optional[Path] = None,
                 timeout: Optional[int] = None) -> int:
    """
    Run tool with args behind the OS elevation prompt.

    The call blocks until the elevated process exits; there is no way to
    interrupt it from this side once the prompt has been accepted.

    Args:
        tool: Executable to run
        args: Arguments for the executable
        capture_file: File that receives combined stdout/stderr
        working_dir: Optional working directory
        timeout: Optional timeout in seconds (non-Windows only)

    Returns:
        The child's exit code, or the platform's declined-elevation code
    """
    command = build_redirected_command(tool, args, capture_file)
    logger.info(f"Requesting elevation for {Path(tool).name}")

    if is_windows():
        return _run_elevated_windows(command, working_dir)

    if is_admin():
        launcher = ["sh", "-c", command]
    else:
        pkexec = shutil.which("pkexec")
        if pkexec is None:
            raise FileNotFoundError("pkexec is required for elevation but was not found")
        launcher = [pkexec, "sh", "-c", command]

    completed = subprocess.run(launcher, cwd=working_dir, timeout=timeout)
    return completed.returncode
