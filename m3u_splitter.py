import os
import re
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import requests

logger = logging.getLogger(__name__)

HEADER = "#EXTM3U"
EXTINF_MARKER = "#EXTINF"
GROUP_KEY = "group-title="
UNKNOWN_GROUP = "Unknown"
PLAYLIST_EXT = ".m3u"

# Keeps "<stem>.m3u" well under common filesystem limits
MAX_FILE_BASENAME_CHARS = 120

HTTP_TIMEOUT = 30

RESERVED_CHARS = set('/\\:*?"<>|')
QUOTES = ('"', "'")


class SplitterError(Exception):
    """Fatal failure while reading, parsing or writing a playlist."""

    kind = "error"

    def __init__(self, path: str, detail: str = ""):
        self.path = path
        self.detail = detail
        msg = f"{self.describe()}: {path}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)

    def describe(self) -> str:
        return "Playlist error"


class InputNotFound(SplitterError):
    kind = "input-not-found"

    def describe(self) -> str:
        return "Input file does not exist"


class InputUnreadable(SplitterError):
    kind = "input-unreadable"

    def describe(self) -> str:
        return "Cannot read input"


class EmptyInput(SplitterError):
    kind = "empty-input"

    def describe(self) -> str:
        return "Input playlist is empty"


class OutputDirectoryUnwritable(SplitterError):
    kind = "output-directory-unwritable"

    def describe(self) -> str:
        return "Cannot create output directory"


class OutputWriteFailed(SplitterError):
    kind = "output-write-failed"

    def describe(self) -> str:
        return "Failed to write"


@dataclass(frozen=True)
class ChannelEntry:
    metadata_line: str
    url: str
    group_name: str = UNKNOWN_GROUP


@dataclass
class GroupReport:
    group_name: str
    channel_count: int
    output_path: Optional[str] = None


@dataclass
class SplitResult:
    """Per-group statistics in first-seen group order."""

    groups: List[GroupReport] = field(default_factory=list)
    dry_run: bool = False

    @property
    def total_channels(self) -> int:
        return sum(g.channel_count for g in self.groups)

    @property
    def total_groups(self) -> int:
        return len(self.groups)

    def collisions(self) -> List[str]:
        """Output paths that more than one group was written to."""
        seen: Dict[str, List[str]] = {}
        for g in self.groups:
            if g.output_path:
                # case-insensitive filesystems treat Sports and sports as one file
                key = os.path.normcase(g.output_path.lower())
                seen.setdefault(key, []).append(g.output_path)
        return [paths[-1] for paths in seen.values() if len(paths) > 1]


def extract_group_title(line: str) -> Optional[str]:
    """
    Return the quoted value of the first group-title= attribute in an
    #EXTINF line, or None when the key is missing or the quoting is broken.
    Both "..." and '...' are accepted; the first matching quote closes it.
    """
    # the key must stand alone, so tvg-group-title= does not count
    start = line.find(GROUP_KEY)
    while start > 0 and not line[start - 1].isspace():
        start = line.find(GROUP_KEY, start + 1)
    if start < 0:
        return None
    pos = start + len(GROUP_KEY)
    if pos >= len(line) or line[pos] not in QUOTES:
        return None
    quote = line[pos]
    end = line.find(quote, pos + 1)
    if end < 0:
        return None
    return line[pos + 1:end]


def truncate_with_ellipsis(stem: str, limit: int) -> str:
    """Truncate to 'limit' chars, adding '...' if needed."""
    if len(stem) > limit:
        return stem[: max(1, limit - 3)].rstrip() + "..."
    return stem


def sanitize_filename(name: str) -> str:
    """Reduce a group name to a printable-ASCII, filesystem-safe stem."""
    kept = "".join(
        c for c in name if " " <= c <= "~" and c not in RESERVED_CHARS
    )
    kept = re.sub(r" +", " ", kept).strip()
    if not kept:
        return UNKNOWN_GROUP
    return truncate_with_ellipsis(kept, MAX_FILE_BASENAME_CHARS)


def is_remote(source: str) -> bool:
    return source.lower().startswith(("http://", "https://"))


def _fetch_remote(url: str) -> str:
    try:
        resp = requests.get(url, timeout=HTTP_TIMEOUT)
        resp.raise_for_status()
    except requests.HTTPError as e:
        if e.response is not None and e.response.status_code == 404:
            raise InputNotFound(url, str(e)) from e
        raise InputUnreadable(url, str(e)) from e
    except requests.RequestException as e:
        raise InputUnreadable(url, str(e)) from e
    try:
        # decode like a local file; requests guesses latin-1 for bare text/plain
        return resp.content.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise InputUnreadable(url, str(e)) from e


def _read_local(path: str) -> str:
    try:
        # utf-8-sig drops a leading BOM in front of #EXTM3U
        with open(path, "r", encoding="utf-8-sig") as f:
            return f.read()
    except FileNotFoundError as e:
        raise InputNotFound(path, e.strerror or "") from e
    except UnicodeDecodeError as e:
        raise InputUnreadable(path, str(e)) from e
    except OSError as e:
        raise InputUnreadable(path, e.strerror or str(e)) from e


def read_playlist(source: str) -> str:
    """Load the raw playlist text from a local path or an http(s) URL."""
    text = _fetch_remote(source) if is_remote(source) else _read_local(source)
    logger.debug("Read %d characters from %s", len(text), source)
    return text


def parse_playlist(text: str, source: str = "<input>") -> List[ChannelEntry]:
    """
    Pair each #EXTINF line with the next URL line.

    Blank lines, directives and stray URLs are skipped, and an #EXTINF with
    no URL after it is dropped. Raises EmptyInput when nothing but the
    header is present.
    """
    lines = [ln.strip() for ln in text.splitlines()]
    lines = [ln for ln in lines if ln]
    if lines and lines[0].startswith(HEADER):
        lines = lines[1:]
    if not lines:
        raise EmptyInput(source)

    channels = []
    pending = None
    for line in lines:
        if line.startswith(EXTINF_MARKER):
            pending = line
        elif line.startswith("#"):
            continue
        elif pending is not None:
            group = extract_group_title(pending) or UNKNOWN_GROUP
            channels.append(ChannelEntry(pending, line, group))
            pending = None
        else:
            logger.debug("Skipping stray line: %s", line)

    if pending is not None:
        logger.debug("Dropping trailing entry without URL: %s", pending)
    return channels


def group_channels(channels: List[ChannelEntry]) -> Dict[str, List[ChannelEntry]]:
    """Bucket channels by group name; dicts keep first-seen group order."""
    groups: Dict[str, List[ChannelEntry]] = {}
    for ch in channels:
        groups.setdefault(ch.group_name, []).append(ch)
    return groups


def build_output_path(output_dir: str, group_name: str) -> str:
    return os.path.join(output_dir, sanitize_filename(group_name) + PLAYLIST_EXT)


def write_group_file(path: str, channels: List[ChannelEntry]) -> None:
    try:
        with open(path, "w", encoding="utf-8") as f:
            f.write(HEADER + "\n")
            for ch in channels:
                f.write(ch.metadata_line + "\n")
                f.write(ch.url + "\n")
    except OSError as e:
        raise OutputWriteFailed(path, e.strerror or str(e)) from e


def write_groups(
    output_dir: str,
    groups: Dict[str, List[ChannelEntry]],
    dry_run: bool = False,
) -> SplitResult:
    """
    Write one playlist per group into output_dir, or only count in dry-run.

    Groups whose names sanitize to the same stem share a file; the later
    group overwrites the earlier one. Files written before a failure stay.
    """
    result = SplitResult(dry_run=dry_run)
    if dry_run:
        for name, channels in groups.items():
            result.groups.append(GroupReport(name, len(channels)))
        return result

    if groups:
        try:
            os.makedirs(output_dir, exist_ok=True)
        except OSError as e:
            raise OutputDirectoryUnwritable(output_dir, e.strerror or str(e)) from e

    for name, channels in groups.items():
        path = build_output_path(output_dir, name)
        write_group_file(path, channels)
        logger.debug("Wrote %d channels to %s", len(channels), path)
        result.groups.append(GroupReport(name, len(channels), path))
    return result


def split_playlist(source: str, output_dir: str, dry_run: bool = False) -> SplitResult:
    """Read, parse, group and write (or count) a playlist in one go."""
    text = read_playlist(source)
    channels = parse_playlist(text, source)
    groups = group_channels(channels)
    logger.debug("Parsed %d channels in %d groups", len(channels), len(groups))
    return write_groups(output_dir, groups, dry_run=dry_run)
