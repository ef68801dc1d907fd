"""
Parser for Dockerfile-style build manifests, extracting instructions and arguments.
"""
import json
import re
import shlex
from typing import List, Tuple
from ..MODELS.dockerfile_ast import Instruction
from ..errors import ManifestError

INSTRUCTION_PATTERN = re.compile(r'^([A-Za-z]+)(?:\s+(.*))?$')

class DockerfileParser:
    """
    Parser for manifest instructions.
    """
    def parse(self, dockerfile_path: str) -> List[Instruction]:
        """
        Parses a manifest from a file path.

        Args:
            dockerfile_path (str): Path to the manifest.

        Returns:
            List[Instruction]: List of parsed instructions.
        """
        try:
            with open(dockerfile_path, 'r') as f:
                content = f.read()
        except OSError as e:
            raise ManifestError(f"Cannot read manifest {dockerfile_path}: {e}")
        return self.parse_from_string(content)

    def parse_from_string(self, content: str) -> List[Instruction]:
        """
        Parses a manifest from a string content.

        Args:
            content (str): Content of the manifest.

        Returns:
            List[Instruction]: List of parsed instructions.
        """
        instructions = []
        for line_no, logical in self._logical_lines(content):
            match = INSTRUCTION_PATTERN.match(logical)
            if not match:
                raise ManifestError(f"Cannot parse '{logical}'", line=line_no)

            inst = match.group(1).upper()
            args_str = (match.group(2) or '').strip()
            instructions.append(Instruction(
                instruction=inst,
                arguments=self._split_arguments(inst, args_str, line_no),
                raw=logical,
                line=line_no,
            ))
        return instructions

    def _logical_lines(self, content: str) -> List[Tuple[int, str]]:
        """
        Joins ``\\`` continuations and drops comments and blank lines.
        Returns (first physical line number, joined text) pairs.
        """
        result = []
        buffer = []
        start = 0
        for number, line in enumerate(content.splitlines(), start=1):
            stripped = line.strip()
            # comment lines may sit inside a continuation
            if stripped.startswith('#'):
                continue
            if not stripped and not buffer:
                continue
            if not buffer:
                start = number
            if stripped.endswith('\\'):
                buffer.append(stripped[:-1].strip())
                continue
            buffer.append(stripped)
            result.append((start, ' '.join(p for p in buffer if p)))
            buffer = []
        if buffer:
            result.append((start, ' '.join(p for p in buffer if p)))
        return result

    def _split_arguments(self, inst: str, args_str: str, line_no: int) -> List[str]:
        # Exec (JSON) form
        if args_str.startswith('[') and args_str.endswith(']'):
            try:
                args = json.loads(args_str)
                if isinstance(args, list) and all(isinstance(a, str) for a in args):
                    return args
            except json.JSONDecodeError:
                pass
            # Not a JSON string array, treat as shell form

        if inst in ("ENV", "LABEL"):
            # KEY=VALUE pairs (possibly several, possibly quoted) or KEY VALUE
            first = args_str.split(None, 1)[0] if args_str else ''
            if '=' in first:
                try:
                    return shlex.split(args_str)
                except ValueError as e:
                    raise ManifestError(f"{inst}: {e}", line=line_no)
            return args_str.split(None, 1)
        if inst in ("VOLUME", "COPY"):
            return args_str.split()
        return [args_str] if args_str else []
