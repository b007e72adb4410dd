#!/usr/bin/env python3
# MIT License
#
# Copyright (c) 2026 sookyboo
#
# Permission is hereby granted, free of charge, to any person obtaining a copy
# of this software and associated documentation files (the "Software"), to deal
# in the Software without restriction, including without limitation the rights
# to use, copy, modify, merge, publish, distribute, sublicense, and/or sell
# copies of the Software, and to permit persons to whom the Software is
# furnished to do so, subject to the following conditions:
#
# The above copyright notice and this permission notice shall be included in all
# copies or substantial portions of the Software.
#
# THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
# IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
# FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
# AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
# LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
# OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
# SOFTWARE.
import argparse
import configparser
import json
import os
import re
import shlex
import shutil
import subprocess
import sys
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple

__version__ = "1.0.0"

DESKTOP_SUFFIX = ".desktop"
MAIN_GROUP = "Desktop Entry"
FALLBACK_EDITOR = "/usr/bin/editor"
REFRESH_COMMAND = "update-desktop-database"


# ----------------------------
# Search path resolution
# ----------------------------
BASE_DIRS = ("/usr/local/share/applications/", "/usr/share/applications/")


def search_paths(environ: Optional[Mapping[str, str]] = None) -> Tuple[str, ...]:
    """
    Ordered, de-duplicated list of directories that may hold .desktop files:
      $HOME/.local/share/applications/, /usr/local/..., /usr/share/...,
      then <XDG_DATA_DIRS entry>/applications/, then <XDG_DATA_HOME entry>/applications/
    The first element is the primary (user writable) directory.
    """
    env = os.environ if environ is None else environ
    home = env.get("HOME") or os.path.expanduser("~")

    candidates: List[str] = [home + "/.local/share/applications/"]
    candidates.extend(BASE_DIRS)
    for var in ("XDG_DATA_DIRS", "XDG_DATA_HOME"):
        for d in (env.get(var) or "").split(":"):
            if d:
                candidates.append(d + "/applications/")

    out: List[str] = []
    for c in candidates:
        if c not in out:
            out.append(c)
    return tuple(out)


def primary_dir(paths: Sequence[str]) -> str:
    return paths[0]


# ----------------------------
# Name cleanup
# ----------------------------
_APPIMAGE_RE = re.compile(r"\.appimage", re.IGNORECASE)
_SEPARATORS = "-_."


def _find_separator(name: str, start: int) -> int:
    found = [i for i in (name.find(s, start) for s in _SEPARATORS) if i >= 0]
    return min(found) if found else -1


def clean_name(name: str) -> str:
    """
    Strip version noise from an executable name:
      "myapp-v2.1" -> "myapp", "tool_3" -> "tool", "Foo.AppImage" -> "Foo"
    A separator (-, _ or .) only cuts the name when it is followed by a digit,
    optionally with a single v/V in between.
    """
    s = _APPIMAGE_RE.sub("", name)

    start = 0
    while True:
        sep = _find_separator(s, start)
        if sep < 0:
            return s
        i = sep + 1
        if i < len(s) and s[i] in "vV":
            i += 1
        if i < len(s) and s[i] in "0123456789":
            return s[:sep]
        start = sep + 1


def proper_case(text: str) -> str:
    out: List[str] = []
    upper_next = True
    for ch in text:
        if ch.isspace():
            upper_next = True
            out.append(ch)
            continue
        out.append(ch.upper() if upper_next else ch)
        upper_next = False
    return "".join(out)


def _strip_desktop_suffix(name: str) -> str:
    return name[: -len(DESKTOP_SUFFIX)] if name.endswith(DESKTOP_SUFFIX) else name


def display_name(raw: str) -> str:
    return proper_case(clean_name(_strip_desktop_suffix(os.path.basename(raw))))


def entry_filename(raw: str) -> str:
    return clean_name(os.path.basename(raw)) + DESKTOP_SUFFIX


def normalize_path(p: str) -> str:
    return os.path.abspath(p)


# ----------------------------
# Desktop entry model + INI format
# ----------------------------
@dataclass
class DesktopEntry:
    type: str = "Application"
    name: str = ""
    exec: str = ""
    icon: str = ""
    terminal: bool = False
    no_display: bool = False
    keywords: str = ""
    mime_type: str = ""
    categories: str = ""

    # Unmodelled [Desktop Entry] keys, merged in when writing.
    extra: Dict[str, Any] = field(default_factory=dict)
    # Other groups ([Desktop Action ...]) carried through unchanged.
    groups: Dict[str, Dict[str, str]] = field(default_factory=dict)


@dataclass
class EntryLocation:
    target_path: str
    is_newly_created: bool = False
    source_path: Optional[str] = None

    @property
    def containing_directory(self) -> str:
        return os.path.dirname(self.target_path)

    @property
    def relocated(self) -> bool:
        return self.source_path is not None and self.source_path != self.target_path


KEY_FIELDS: Tuple[Tuple[str, str], ...] = (
    ("Type", "type"),
    ("Name", "name"),
    ("Exec", "exec"),
    ("Icon", "icon"),
    ("Terminal", "terminal"),
    ("NoDisplay", "no_display"),
    ("Keywords", "keywords"),
    ("MimeType", "mime_type"),
    ("Categories", "categories"),
)
FIELD_BY_KEY = dict(KEY_FIELDS)
BOOL_FIELDS = {"terminal", "no_display"}

# Written only when they carry something.
_OMIT_WHEN_EMPTY = {"icon", "no_display", "keywords", "mime_type", "categories"}


def _parse_bool(val: Any) -> bool:
    if isinstance(val, bool):
        return val
    return str(val).strip().lower() == "true"


def format_value(val: Any) -> str:
    if val is None:
        return ""
    if isinstance(val, bool):
        return "true" if val else "false"
    if isinstance(val, (list, tuple)):
        # Desktop entry string lists are ";" terminated.
        return "".join(format_value(v) + ";" for v in val)
    return str(val)


def _text(val: Optional[str]) -> Optional[str]:
    # Surrounding whitespace does not survive a read back.
    return val.strip() if val else None


def _new_parser() -> configparser.ConfigParser:
    cp = configparser.ConfigParser(interpolation=None, strict=False, delimiters=("=",))
    cp.optionxform = str  # keys are case sensitive
    return cp


def parse_entry(text: str) -> DesktopEntry:
    cp = _new_parser()
    try:
        cp.read_string(text)
    except configparser.Error as e:
        raise ValueError(f"Not a valid desktop entry: {e}") from e

    entry = DesktopEntry()
    for section in cp.sections():
        values = dict(cp.items(section, raw=True))
        if section != MAIN_GROUP:
            entry.groups[section] = values
            continue
        for k, v in values.items():
            attr = FIELD_BY_KEY.get(k)
            if attr is None:
                entry.extra[k] = v
            elif attr in BOOL_FIELDS:
                setattr(entry, attr, _parse_bool(v))
            else:
                setattr(entry, attr, v)
    return entry


def format_entry(entry: DesktopEntry) -> str:
    lines: List[str] = [f"[{MAIN_GROUP}]"]
    for key, attr in KEY_FIELDS:
        val = getattr(entry, attr)
        if attr in _OMIT_WHEN_EMPTY and not val:
            continue
        lines.append(f"{key}={format_value(val)}")
    for k, v in entry.extra.items():
        lines.append(f"{k}={format_value(v)}")

    for section, values in entry.groups.items():
        lines.append("")
        lines.append(f"[{section}]")
        for k, v in values.items():
            lines.append(f"{k}={format_value(v)}")
    lines.append("")
    return "\n".join(lines)


def read_entry_file(path: str) -> DesktopEntry:
    return parse_entry(Path(path).read_text("utf-8", errors="replace"))


# ----------------------------
# Loading
# ----------------------------
def is_privileged() -> bool:
    return os.geteuid() == 0 or os.getegid() == 0


def find_entry_file(paths: Sequence[str], filename: str) -> Optional[str]:
    for d in paths:
        p = os.path.join(d, filename)
        if os.path.isfile(p):
            return p
    return None


def load_entry(paths: Sequence[str], filename: str, allow_overwrite: bool = False) -> Tuple[DesktopEntry, EntryLocation]:
    """
    Find <filename> in the search paths (first hit wins) or start a fresh one
    in the primary directory.

    An entry found outside the primary directory is saved as a copy into the
    primary directory unless allow_overwrite is set (privileged + --overwrite).
    """
    primary_target = os.path.join(primary_dir(paths), filename)

    found = find_entry_file(paths, filename)
    if found is None:
        print("Creating:", primary_target)
        return DesktopEntry(), EntryLocation(target_path=primary_target, is_newly_created=True)

    print("Loading:", found)
    entry = read_entry_file(found)

    target = found
    if os.path.dirname(found) != os.path.dirname(primary_target) and not allow_overwrite:
        target = primary_target
        print("Saving copy to:", target)

    return entry, EntryLocation(target_path=target, source_path=found)


# ----------------------------
# Options + editing
# ----------------------------
@dataclass(frozen=True)
class Options:
    executable: Optional[str] = None
    view: bool = False
    edit: bool = False
    list: bool = False
    list_filter: str = ""
    desktop_file: Optional[str] = None
    keywords: Optional[str] = None
    mime: Optional[str] = None
    name: Optional[str] = None
    exec: Optional[str] = None
    icon: Optional[str] = None
    hide: bool = False
    terminal: bool = False
    json: Optional[Dict[str, Any]] = None
    overwrite: bool = False

    @property
    def executable_is_entry(self) -> bool:
        return bool(self.executable) and self.executable.endswith(DESKTOP_SUFFIX)


def resolve_desktop_filename(opts: Options) -> str:
    if opts.executable_is_entry:
        return os.path.basename(opts.executable)
    if opts.desktop_file:
        # Only a name: the search directories decide where it lives.
        f = os.path.basename(opts.desktop_file)
        if not f:
            raise ValueError(f"Not a desktop file name: {opts.desktop_file}")
        return f if f.endswith(DESKTOP_SUFFIX) else f + DESKTOP_SUFFIX
    if opts.executable:
        return entry_filename(opts.executable)
    raise ValueError("No executable or desktop file given")


def _fallback_exec(opts: Options) -> Optional[str]:
    if opts.executable and not opts.executable_is_entry:
        return normalize_path(opts.executable)
    return None


def _fallback_name(opts: Options) -> Optional[str]:
    if opts.executable:
        return display_name(opts.executable)
    if opts.desktop_file:
        return _strip_desktop_suffix(os.path.basename(opts.desktop_file))
    return None


def _apply_override(entry: DesktopEntry, key: str, value: Any) -> bool:
    if isinstance(value, str):
        value = value.strip()
    attr = FIELD_BY_KEY.get(key)
    if attr is None:
        if key in entry.extra and format_value(entry.extra[key]) == format_value(value):
            return False
        entry.extra[key] = value
        return True

    new = _parse_bool(value) if attr in BOOL_FIELDS else format_value(value)
    if getattr(entry, attr) == new:
        return False
    setattr(entry, attr, new)
    return True


def apply_options(entry: DesktopEntry, opts: Options) -> Tuple[DesktopEntry, bool]:
    """
    Return a copy of `entry` with the command line options applied, plus
    whether anything changed. Raises FileNotFoundError when Exec would be set
    to a path that does not exist.
    """
    de = replace(entry, extra=dict(entry.extra), groups={k: dict(v) for k, v in entry.groups.items()})
    changed = 0

    explicit_exec = normalize_path(opts.exec) if opts.exec else None
    if explicit_exec and explicit_exec != de.exec:
        de.exec = explicit_exec
        changed += 1
    elif not de.exec and _fallback_exec(opts):
        de.exec = _fallback_exec(opts)
        changed += 1
    if changed and not os.path.exists(de.exec):
        raise FileNotFoundError(f"Executable {de.exec} does not exist")

    icon, name, keywords, mime = (_text(v) for v in (opts.icon, opts.name, opts.keywords, opts.mime))

    if icon and icon != de.icon:
        de.icon = icon
        changed += 1

    if opts.hide and not de.no_display:
        de.no_display = True
        changed += 1

    if name and name != de.name:
        de.name = name
        changed += 1
    elif not de.name and _fallback_name(opts):
        de.name = _fallback_name(opts)
        changed += 1

    if opts.terminal and not de.terminal:
        de.terminal = True
        changed += 1

    if keywords and keywords != de.keywords:
        de.keywords = keywords
        changed += 1

    if mime and mime != de.mime_type:
        de.mime_type = mime
        changed += 1

    for k, v in (opts.json or {}).items():
        if _apply_override(de, str(k), v):
            changed += 1

    return de, changed > 0


# ----------------------------
# Saving + external programs
# ----------------------------
def save_entry(entry: DesktopEntry, location: EntryLocation) -> str:
    # No mkdir: the target directory has to exist already.
    Path(location.target_path).write_text(format_entry(entry), "utf-8")
    return location.target_path


def refresh_menu_database(directory: str) -> bool:
    """Best-effort `update-desktop-database <dir>`; any failure is ignored."""
    tool = shutil.which(REFRESH_COMMAND)
    if not tool:
        return False
    try:
        rc = subprocess.run([tool, directory], check=False).returncode
    except OSError:
        return False
    return rc == 0


def resolve_editor(environ: Optional[Mapping[str, str]] = None) -> Optional[List[str]]:
    """
    First usable editor command out of $VISUAL, $EDITOR and /usr/bin/editor,
    as an argv list with the executable resolved to a full path.
    """
    env = os.environ if environ is None else environ
    for candidate in (env.get("VISUAL"), env.get("EDITOR"), FALLBACK_EDITOR):
        if not candidate or not candidate.strip():
            continue
        try:
            argv = shlex.split(candidate)
        except ValueError:
            continue
        if not argv:
            continue
        exe = shutil.which(argv[0])
        if exe:
            return [exe] + argv[1:]
    return None


def spawn_editor(path: str, environ: Optional[Mapping[str, str]] = None) -> int:
    cmd = resolve_editor(environ)
    if cmd is None:
        raise FileNotFoundError("Unable to determine editor to use (set $VISUAL or $EDITOR)")
    return subprocess.run(cmd + [path], check=False).returncode


def list_directory(directory: str, pattern: str = "") -> List[str]:
    if not os.path.isdir(directory):
        return []
    needle = pattern.lower()
    names: List[str] = []
    for f in sorted(os.listdir(directory)):
        if f.endswith(DESKTOP_SUFFIX) and needle in f.lower():
            names.append(_strip_desktop_suffix(f))
    return names


# ----------------------------
# Main
# ----------------------------
def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="desktopmenuitem",
        description="Create or edit .desktop menu entries. No dependencies.",
    )
    ap.add_argument("executable", nargs="?", default=None, help="Executable to add, or an existing NAME.desktop")
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--view", action="store_true", help="Print the .desktop file and exit")
    ap.add_argument("--edit", action="store_true", help="Open the .desktop file in $VISUAL / $EDITOR")
    ap.add_argument(
        "--list",
        dest="list_filter",
        nargs="?",
        const="",
        default=None,
        metavar="FILTER",
        help="List .desktop files in every search directory (optionally only names containing FILTER)",
    )
    ap.add_argument("-d", "--desktop", dest="desktop_file", default=None, metavar="FILE", help="Desktop file to use")
    ap.add_argument("-k", "--keywords", default=None, help="Set Keywords")
    ap.add_argument("-m", "--mime", default=None, metavar="TYPE", help="Set MimeType")
    ap.add_argument("-n", "--name", default=None, help="Set Name (default: derived from the executable)")
    ap.add_argument("-e", "--exec", dest="exec", default=None, metavar="PATH", help="Set Exec path")
    ap.add_argument("-i", "--icon", default=None, help="Set Icon name or path")
    ap.add_argument("--hide", action="store_true", help="Hide application from menus (NoDisplay=true)")
    ap.add_argument("-t", "--terminal", action="store_true", help="Application needs a terminal (Terminal=true)")
    ap.add_argument("--json", default=None, help='Set arbitrary keys from a JSON object, e.g. "{\\"Categories\\":\\"Utility;\\"}"')
    ap.add_argument("--overwrite", action="store_true", help="Modify system entries in place (needs root)")
    return ap


def parse_json_overrides(raw: Optional[str]) -> Optional[Dict[str, Any]]:
    if raw is None:
        return None
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        raise ValueError(f"JSON is invalid: {e}") from e
    if not isinstance(data, dict):
        raise ValueError("JSON is invalid: expected an object of key/value pairs")
    for k, v in data.items():
        if isinstance(v, dict) or (isinstance(v, list) and any(isinstance(x, (dict, list)) for x in v)):
            raise ValueError(f"JSON is invalid: value of {k!r} must be a string, number, boolean or list of those")
    return data


def options_from_args(args: argparse.Namespace) -> Options:
    return Options(
        executable=args.executable,
        view=bool(args.view),
        edit=bool(args.edit),
        list=args.list_filter is not None,
        list_filter=args.list_filter or "",
        desktop_file=args.desktop_file or None,
        keywords=args.keywords,
        mime=args.mime,
        name=args.name,
        exec=args.exec,
        icon=args.icon,
        hide=bool(args.hide),
        terminal=bool(args.terminal),
        json=parse_json_overrides(args.json),
        overwrite=bool(args.overwrite),
    )


def _print_listing(paths: Sequence[str], pattern: str) -> None:
    for d in paths:
        names = list_directory(d, pattern)
        if not names:
            continue
        print(d)
        for n in names:
            print("  ", n)
        print("")


def main(argv: Optional[Sequence[str]] = None) -> int:
    ap = build_parser()
    args = ap.parse_args(argv)

    try:
        opts = options_from_args(args)
    except ValueError as e:
        print(e, file=sys.stderr)
        print('Please escape the JSON and pass it as one string, e.g. "{\\"key\\":true}"', file=sys.stderr)
        return 1

    paths = search_paths()

    if opts.list:
        _print_listing(paths, opts.list_filter)
        return 0

    if not opts.executable and not opts.desktop_file:
        ap.print_help()
        return 0

    try:
        entry, location = load_entry(
            paths,
            resolve_desktop_filename(opts),
            allow_overwrite=opts.overwrite and is_privileged(),
        )

        if opts.edit and not location.is_newly_created and not location.relocated:
            spawn_editor(location.target_path)
            return 0

        if opts.view:
            print(format_entry(entry))
            return 0

        entry, changed = apply_options(entry, opts)
        if not changed and not opts.edit:
            print("No Changes")
            return 0

        saved = save_entry(entry, location)
        refresh_menu_database(location.containing_directory)
        if opts.edit:
            spawn_editor(saved)
        else:
            print("Saved:", saved)
    except (ValueError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
