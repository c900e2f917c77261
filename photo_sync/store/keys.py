"""
Helpers for turning flat store keys into folder paths and file names.
"""
import re
from typing import List

from .. import config
from ..exceptions import InvalidFolderPathError

_SAFE_PATH = re.compile(r'^[a-zA-Z0-9_. /-]*$')


def _ext(key: str) -> str:
    name = get_filename_from_key(key)
    dot = name.rfind('.')
    return name[dot:].lower() if dot > 0 else ''


def is_video_file(key: str) -> bool:
    return _ext(key) in config.VIDEO_FORMATS


def is_media_file(key: str) -> bool:
    return _ext(key) in config.MEDIA_FORMATS


def get_mime_type(key: str) -> str:
    return config.MEDIA_FORMATS.get(_ext(key), config.DEFAULT_MIME_TYPE)


def get_extension(key: str) -> str:
    return _ext(key)


def normalize_folder_path(path: str) -> str:
    """Drops empty segments so 'a//b/' and '/a/b' both become 'a/b'."""
    return "/".join(seg for seg in path.split("/") if seg)


def get_folder_from_key(key: str) -> str:
    slash = key.rfind("/")
    if slash == -1:
        return ""
    return normalize_folder_path(key[:slash])


def get_filename_from_key(key: str) -> str:
    return key[key.rfind("/") + 1:]


def folder_name(path: str) -> str:
    return path.rsplit("/", 1)[-1] if path else config.ROOT_FOLDER_NAME


def ancestor_chain(path: str) -> List[str]:
    """'a/b/c' -> ['a', 'a/b', 'a/b/c'] (top-down)."""
    parts = normalize_folder_path(path).split("/")
    if parts == [""]:
        return []
    return ["/".join(parts[:i + 1]) for i in range(len(parts))]


def folder_prefix(path: str) -> str:
    """Listing prefix for a folder path; the root lists everything."""
    return f"{path}/" if path else ""


def validate_folder_path(path: str) -> str:
    """
    Rejects paths an on-demand caller should never send. Returns the
    path unchanged so it can be used inline.
    """
    if not isinstance(path, str):
        raise InvalidFolderPathError("Folder path must be a string")
    if len(path) > 1024:
        raise InvalidFolderPathError("Folder path is too long")
    if ".." in path or "//" in path or path.startswith("/"):
        raise InvalidFolderPathError(f"Folder path contains invalid path characters: {path!r}")
    if path and not _SAFE_PATH.match(path):
        raise InvalidFolderPathError(f"Folder path contains invalid characters: {path!r}")
    return path
