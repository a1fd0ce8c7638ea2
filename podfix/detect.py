"""File kind detection for CocoaPods inputs."""

import re


def identify(content: str, filename: str | None = None) -> str:
    """Detect whether content is a Podfile or a Podfile.lock.

    Args:
        content: The file content
        filename: Optional filename for additional context

    Returns:
        Detected kind: 'podfile', 'lockfile', or 'unknown'
    """
    # Filename-based detection (takes precedence)
    if filename:
        if filename.endswith("Podfile.lock"):
            return "lockfile"
        if filename.endswith("Podfile"):
            return "podfile"

    lockfile_patterns = [
        r"^PODS:\s*$",
        r"^PODFILE CHECKSUM:",
    ]

    for pattern in lockfile_patterns:
        if re.search(pattern, content, re.MULTILINE):
            return "lockfile"

    podfile_patterns = [
        r"""^\s*pod\s*\(?\s*['"]""",  # pod 'Alamofire'
        r"""^\s*target\s*\(?\s*['"].*\bdo\b""",  # target 'App' do
        r"""^\s*platform\s+:\w+""",  # platform :ios, '10.0'
    ]

    for pattern in podfile_patterns:
        if re.search(pattern, content, re.MULTILINE):
            return "podfile"

    return "unknown"
