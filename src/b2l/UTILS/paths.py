"""
Mapping between paths inside an image and paths on the host.
"""
import os
import posixpath

def container_to_host(rootfs: str, path: str, working_dir: str = "/") -> str:
    """
    Maps an image path to its location under ``rootfs``.

    Relative paths are taken relative to ``working_dir``. ``..`` components
    cannot climb out of the rootfs.

    :param rootfs: Host directory holding the image filesystem.
    :param path: Path as seen from inside the image.
    :param working_dir: Image working directory.
    :return: Absolute host path.
    """
    absolute = posixpath.normpath(posixpath.join("/", working_dir, path))
    # normpath keeps a leading // on POSIX
    relative = absolute.lstrip("/")
    return os.path.join(os.path.abspath(rootfs), *[p for p in relative.split("/") if p])
