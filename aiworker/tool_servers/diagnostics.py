"""aiworker/tool_servers/diagnostics.py

Maps raw connection failures onto remediation text a user can act on.

``classify`` is pure: the same descriptor, error and platform always produce
the same message.
"""

from __future__ import annotations

# Standard Library
import errno
import os
import sys

# Local Modules
from aiworker.models import ToolServerDescriptor, TransportKind

_NOT_FOUND_MARKERS: tuple[str, ...] = (
    "enoent",
    "no such file or directory",
    "command not found",
    "executable not found",
    "not found in path",
    "cannot find the file",
    "is not recognized as an internal or external command",
)

_GIT_SERVER_MARKERS: tuple[str, ...] = ("mcp-server-git", "mcp_server_git")

EMBEDDED_RUNTIME_TIP: str = (
    "\n\n💡 **Note:** This app bundles a Python runtime, so tool servers written "
    "as Python scripts (command `python`) need no separate install. Servers "
    "launched with `npx` or `npm` are Node.js packages and still need Node.js "
    "installed as described above."
)


def is_executable_missing(raw_error: BaseException | str) -> bool:
    """Whether ``raw_error`` means the launch command could not be found."""
    if isinstance(raw_error, BaseException):
        current: BaseException | None = raw_error
        while current is not None:
            if isinstance(current, FileNotFoundError):
                return True
            if isinstance(current, OSError) and current.errno == errno.ENOENT:
                return True
            current = current.__cause__ or current.__context__
        text = str(raw_error)
    else:
        text = raw_error
    lowered = text.lower()
    return any(marker in lowered for marker in _NOT_FOUND_MARKERS)


def _header(cmd: str) -> str:
    return (
        "### 🛠️ Environment Setup Needed\n\n"
        f"It looks like the command `{cmd}` isn't available on your system yet. "
        "You can fix this in a few steps:"
    )


def _platform_family(platform: str) -> str:
    if platform == "darwin":
        return "mac"
    if platform.startswith("win"):
        return "windows"
    return "linux"


def _node_steps(family: str) -> str:
    if family == "mac":
        return (
            "1. Open your **Terminal** app.\n"
            "2. Type `brew install node` and press Enter.\n"
            "3. *If you don't have Homebrew, download Node.js from [nodejs.org](https://nodejs.org).*"
        )
    if family == "windows":
        return (
            "1. Download and run the installer from [nodejs.org](https://nodejs.org).\n"
            "2. Follow the setup wizard and make sure 'Add to PATH' is checked.\n"
            "3. Restart the app once finished."
        )
    return "1. Install Node.js using your system's package manager (e.g., `sudo apt install nodejs npm`)."


def _python_steps(family: str) -> str:
    if family == "mac":
        return (
            "1. Open your **Terminal** app.\n"
            "2. Type `brew install python` and press Enter.\n"
            "3. **Note:** Try `python3` as the command if `python` fails."
        )
    if family == "windows":
        return (
            "1. Download Python from [python.org](https://www.python.org/downloads/).\n"
            "2. **Important:** Check 'Add Python to PATH' during installation."
        )
    return "1. Install Python 3 using your system's package manager (e.g., `sudo apt install python3`)."


def _mentions_git_server(args: list[str]) -> bool:
    return any(marker in arg for arg in args for marker in _GIT_SERVER_MARKERS)


def classify(
    descriptor: ToolServerDescriptor,
    raw_error: BaseException | str,
    platform: str = sys.platform,
) -> str:
    """Turn a connection failure into a human-actionable message.

    Args:
        descriptor: The tool server that failed to connect.
        raw_error: The exception or message from the transport.
        platform: ``sys.platform``-style identifier selecting install steps.

    Returns:
        Markdown remediation text.
    """
    raw = str(raw_error) or type(raw_error).__name__
    if descriptor.transport_kind is not TransportKind.PROCESS:
        return raw

    cmd = descriptor.command or ""
    if not is_executable_missing(raw_error):
        return f"{raw}\n\nEnsure that `{cmd}` is installed and available on your PATH."

    family = _platform_family(platform)
    name = os.path.basename(cmd.replace("\\", "/")).lower()
    header = _header(cmd)

    if any(runtime in name for runtime in ("node", "npx", "npm")):
        return f"{header}\n\n{_node_steps(family)}{EMBEDDED_RUNTIME_TIP}"

    if "python" in name or "pip" in name:
        steps = _python_steps(family)
        if _mentions_git_server(descriptor.args):
            steps += "\n\n4. Finally, install the Git tool by running: `pip install mcp-server-git`"
        return f"{header}\n\n{steps}"

    if "uv" in name:
        install = (
            'powershell -c "irm https://astral.sh/uv/install.ps1 | iex"'
            if family == "windows"
            else "curl -LsSf https://astral.sh/uv/install.sh | sh"
        )
        steps = f"1. Run this command in your terminal:\n`{install}`\n2. Restart the app."
        if _mentions_git_server(descriptor.args):
            steps += "\n3. **Quick Fix:** Use `uvx mcp-server-git /path/to/your/repo` to run without installing."
        return f"{header}\n\n{steps}"

    return f"{header}\n\nEnsure that `{cmd}` is installed and added to your system's PATH."
