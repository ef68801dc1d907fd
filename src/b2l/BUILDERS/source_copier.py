"""
Copies the build context into an image rootfs.
"""
import os
import shutil
from typing import Iterable, List, Optional

from ..MODELS.manifest import CopyInstruction
from ..UTILS.paths import container_to_host
from ..errors import SourceCopyError

class SourceCopier:
    """
    Implements COPY: directory sources contribute their contents, file
    sources land inside a directory destination (trailing ``/``, several
    sources, or an existing directory) or become the destination file.
    """
    def __init__(self, context_dir: str, exclude: Optional[Iterable[str]] = None):
        """
        :param context_dir: The build context.
        :param exclude: Absolute paths never copied (the orchestrator home
            when it lives inside the context).
        """
        self.context_dir = os.path.abspath(context_dir)
        self.exclude = [os.path.abspath(e) for e in (exclude or [])]

    def copy(self, copies: List[CopyInstruction], rootfs: str, working_dir: str = "/") -> List[str]:
        """
        Performs every copy instruction in order.

        :param copies: COPY instructions of the manifest.
        :param rootfs: Host directory of the image filesystem.
        :param working_dir: Image working directory for relative destinations.
        :return: Host paths written.
        :raises SourceCopyError: If a source is missing, escapes the context,
            or cannot be read.
        """
        written = []
        for instruction in copies:
            destination = container_to_host(rootfs, instruction.destination, working_dir)
            into_dir = (instruction.destination.endswith("/")
                        or len(instruction.sources) > 1
                        or os.path.isdir(destination))
            for source in instruction.sources:
                written.append(self._copy_one(self._resolve_source(source), destination, into_dir))
        return written

    def _resolve_source(self, source: str) -> str:
        path = os.path.abspath(os.path.join(self.context_dir, source))
        if path != self.context_dir and not path.startswith(self.context_dir + os.sep):
            raise SourceCopyError(f"COPY source {source} is outside the build context")
        if not os.path.lexists(path):
            raise SourceCopyError(f"COPY source {source} not found in {self.context_dir}")
        return path

    def _ignore(self, directory: str, names: List[str]) -> List[str]:
        return [n for n in names if os.path.join(os.path.abspath(directory), n) in self.exclude]

    def _copy_one(self, source: str, destination: str, into_dir: bool) -> str:
        try:
            if os.path.isdir(source) and not os.path.islink(source):
                shutil.copytree(source, destination, symlinks=True,
                                ignore=self._ignore, dirs_exist_ok=True)
                return destination
            if into_dir:
                os.makedirs(destination, exist_ok=True)
                target = os.path.join(destination, os.path.basename(source))
            else:
                os.makedirs(os.path.dirname(destination), exist_ok=True)
                target = destination
            shutil.copy2(source, target, follow_symlinks=False)
            return target
        except shutil.Error as e:
            details = e.args[0] if e.args else ""
            if isinstance(details, list):
                details = "; ".join(f"{src}: {why}" for src, _, why in details)
            raise SourceCopyError(f"Cannot copy source tree: {details}")
        except OSError as e:
            raise SourceCopyError(f"Cannot copy {source}: {e}")
