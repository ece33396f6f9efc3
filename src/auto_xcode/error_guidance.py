"""Recovery guidance for failures the user can fix themselves."""

from typing import Optional, Sequence


def create_error_with_guidance(message: str, guidance: str) -> str:
    return f"{message}\n\n💡 To fix this:\n{guidance}"


def ide_not_running_guidance() -> str:
    return "\n".join(
        [
            "• Launch Xcode application",
            "• Make sure Xcode is not stuck on a license agreement",
            "• Try restarting Xcode if it's already open",
            "• Check Activity Monitor for any hanging Xcode processes",
        ]
    )


def no_workspace_guidance() -> str:
    return "\n".join(
        [
            "• Open a project in Xcode first",
            "• Make sure the project has finished loading",
            "• Try closing and reopening the project if it's already open",
        ]
    )


def automation_permission_guidance() -> str:
    return "\n".join(
        [
            "• Go to System Settings → Privacy & Security → Automation",
            "• Allow your terminal app to control Xcode",
            "• You may need to restart your terminal after granting permission",
        ]
    )


def project_not_found_guidance(project_path: str) -> str:
    return "\n".join(
        [
            f"• Check that the path is correct: {project_path}",
            "• Use an absolute path (starting with /)",
            "• Make sure the file extension is .xcodeproj or .xcworkspace",
        ]
    )


def scheme_not_found_guidance(scheme_name: str, available: Sequence[str] = ()) -> str:
    lines = [f"• Check the scheme name spelling: '{scheme_name}'", "• Scheme names are case-sensitive"]
    if available:
        lines.append("• Available schemes:")
        lines.extend(f"  - {scheme}" for scheme in available)
    else:
        lines.append("• Run 'schemes' to see available schemes")
    return "\n".join(lines)


def destination_not_found_guidance(destination: str, available: Sequence[str] = ()) -> str:
    lines = [f"• Check the destination name spelling: '{destination}'", "• Destination names are case-sensitive"]
    if available:
        lines.append("• Available destinations:")
        lines.extend(f"  - {dest}" for dest in available)
    else:
        lines.append("• Run 'destinations' to see available destinations")
    return "\n".join(lines)


def build_log_not_found_guidance() -> str:
    return "\n".join(
        [
            "• Try building the project again",
            "• Check that Xcode has permission to write to DerivedData",
            "• Clear DerivedData (Product → Clean Build Folder) and rebuild",
            "• Ensure XCLogParser is installed: brew install xclogparser",
        ]
    )


# (signature, headline, guidance factory); matched case-insensitively, first hit wins
_COMMON_ERRORS = (
    ("Application isn't running", "Xcode is not running", ide_not_running_guidance),
    ("not running", "Xcode is not running", ide_not_running_guidance),
    ("No active workspace", "No active workspace found in Xcode", no_workspace_guidance),
    ("not allowed assistive access", "Permission denied - automation access required", automation_permission_guidance),
    ("Not authorized to send Apple events", "Permission denied - automation access required", automation_permission_guidance),
    ("permission denied", "Permission denied - automation access required", automation_permission_guidance),
)


def parse_common_errors(error_message: str) -> Optional[str]:
    """Return an enriched message for recognized bridge failures, else None."""
    if "osascript: command not found" in error_message or "No such file or directory: 'osascript'" in error_message:
        return create_error_with_guidance(
            "macOS scripting tools not available",
            "• This tool requires macOS\n• Make sure you're running on a Mac with osascript available",
        )
    lowered = error_message.lower()
    for signature, headline, guidance in _COMMON_ERRORS:
        if signature.lower() in lowered:
            return create_error_with_guidance(headline, guidance())
    return None
