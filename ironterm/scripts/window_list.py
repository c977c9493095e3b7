#!/usr/bin/env python3
"""
Window list helper.

Run as a separate process by the window directory:

    python -m ironterm.scripts.window_list            # print apps/windows/displays JSON
    python -m ironterm.scripts.window_list activate <bundle-id>

Geometry comes from Quartz and is top-left-origin global coordinates for
both windows and displays.
"""

import argparse
import json
import sys
from typing import Any, Dict, List

# Conditional import for macOS-specific frameworks
try:
    if sys.platform == "darwin":
        import Quartz
        from AppKit import (
            NSApplicationActivateAllWindows,
            NSApplicationActivateIgnoringOtherApps,
            NSApplicationActivationPolicyRegular,
            NSRunningApplication,
            NSWorkspace,
        )
    else:
        Quartz = None
except ImportError:
    Quartz = None


def list_displays() -> List[Dict[str, int]]:
    """Active displays in CGGetActiveDisplayList order (main display first)."""
    err, ids, cnt = Quartz.CGGetActiveDisplayList(16, None, None)
    if err != Quartz.kCGErrorSuccess:
        raise OSError(f"CGGetActiveDisplayList failed: {err}")

    displays = []
    for idx, did in enumerate(ids[:cnt], 1):
        r = Quartz.CGDisplayBounds(did)
        displays.append({
            "index": idx,
            "x": int(r.origin.x),
            "y": int(r.origin.y),
            "w": int(r.size.width),
            "h": int(r.size.height),
        })
    return displays


def list_apps() -> List[Dict[str, str]]:
    """Running, visible apps with a regular activation policy."""
    apps = []
    for app in NSWorkspace.sharedWorkspace().runningApplications():
        if app.isHidden() or app.isTerminated():
            continue
        if app.activationPolicy() != NSApplicationActivationPolicyRegular:
            continue
        name = app.localizedName() or ""
        if not name:
            continue
        apps.append({"name": str(name), "bundleId": str(app.bundleIdentifier() or "")})
    return apps


def list_windows() -> List[Dict[str, Any]]:
    """On-screen windows, unfiltered apart from desktop elements."""
    opts = (
        Quartz.kCGWindowListOptionOnScreenOnly
        | Quartz.kCGWindowListExcludeDesktopElements
    )
    wins = Quartz.CGWindowListCopyWindowInfo(opts, Quartz.kCGNullWindowID) or []

    result = []
    for info in wins:
        bounds = info.get("kCGWindowBounds", {})
        result.append({
            "appName": str(info.get("kCGWindowOwnerName", "") or ""),
            "title": str(info.get("kCGWindowName", "") or ""),
            "id": str(int(info.get("kCGWindowNumber", 0) or 0)),
            "layer": int(info.get("kCGWindowLayer", 0) or 0),
            "x": int(bounds.get("X", 0)),
            "y": int(bounds.get("Y", 0)),
            "w": int(bounds.get("Width", 0)),
            "h": int(bounds.get("Height", 0)),
        })
    return result


def activate(bundle_id: str) -> bool:
    apps = NSRunningApplication.runningApplicationsWithBundleIdentifier_(bundle_id)
    if not apps:
        return False
    return bool(apps[0].activateWithOptions_(
        NSApplicationActivateAllWindows | NSApplicationActivateIgnoringOtherApps
    ))


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Iron-Term window list helper")
    sub = parser.add_subparsers(dest="command")
    activate_parser = sub.add_parser("activate", help="Bring an app's windows to front")
    activate_parser.add_argument("bundle_id")
    args = parser.parse_args(argv)

    if Quartz is None:
        sys.stderr.write("window_list requires macOS with pyobjc Quartz/AppKit\n")
        return 1

    if args.command == "activate":
        return 0 if activate(args.bundle_id) else 1

    payload = {
        "apps": list_apps(),
        "windows": list_windows(),
        "displays": list_displays(),
    }
    sys.stdout.write(json.dumps(payload))
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    sys.exit(main())
