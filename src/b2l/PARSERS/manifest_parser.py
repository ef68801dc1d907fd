"""
Translates parsed manifest instructions into a BuildManifest.
"""
import os
import posixpath
import shlex
from typing import List
from .dockerfile_parser import DockerfileParser
from ..MODELS.dockerfile_ast import DockerfileAST, Instruction
from ..MODELS.manifest import BuildManifest, CopyInstruction, DEFAULT_ARTIFACT_PATH
from ..errors import ManifestError

SYSTEM_PACKAGE_MANAGERS = ("apt-get", "apt")
ARTIFACT_LABEL = "b2l.artifact"

class ManifestParser:
    """
    Reads a Dockerfile-style manifest and builds the corresponding
    BuildManifest. Only the instructions the build pipeline can honour are
    accepted; anything else is rejected with its line number.
    """
    def __init__(self):
        self.parser = DockerfileParser()

    def parse(self, manifest_path: str) -> BuildManifest:
        """
        Parses a manifest file.

        :param manifest_path: Path to the manifest.
        :return: The translated manifest.
        """
        return self._translate(DockerfileAST(instructions=self.parser.parse(manifest_path)))

    def parse_from_string(self, content: str) -> BuildManifest:
        return self._translate(DockerfileAST(instructions=self.parser.parse_from_string(content)))

    def load(self, context_dir: str, manifest_name: str = "Dockerfile") -> BuildManifest:
        """
        Loads the manifest of a build context, falling back to the default
        manifest when the context has none.
        """
        path = os.path.join(context_dir, manifest_name)
        if not os.path.exists(path):
            print(f"No {manifest_name} in {context_dir}, using the default manifest")
            return BuildManifest.default()
        return self.parse(path)

    def _translate(self, ast: DockerfileAST) -> BuildManifest:
        if not ast.instructions:
            raise ManifestError("Manifest is empty")
        froms = ast.find("FROM")
        if len(froms) != 1:
            raise ManifestError(f"Expected exactly one FROM instruction, found {len(froms)}",
                                line=froms[1].line if len(froms) > 1 else None)
        if ast.instructions[0].instruction != "FROM":
            raise ManifestError("Manifest must start with FROM", line=ast.instructions[0].line)

        base_image = ""
        volumes: List[str] = []
        copies: List[CopyInstruction] = []
        working_dir = "/"
        env = {}
        labels = {}
        packages: List[str] = []
        build_steps: List[List[str]] = []
        entrypoint: List[str] = []
        cmd: List[str] = []

        for inst in ast.instructions:
            name = inst.instruction
            args = inst.arguments

            if name == "FROM":
                if len(args) != 1 or len(args[0].split()) != 1:
                    raise ManifestError("FROM takes a single image reference", line=inst.line)
                base_image = args[0]
            elif name == "VOLUME":
                for volume in args:
                    if not volume.startswith("/"):
                        raise ManifestError(f"VOLUME {volume} must be an absolute path", line=inst.line)
                    if volume not in volumes:
                        volumes.append(volume)
            elif name == "COPY":
                if any(a.startswith("--") for a in args):
                    raise ManifestError("COPY flags are not supported", line=inst.line)
                if len(args) < 2:
                    raise ManifestError("COPY needs at least one source and a destination", line=inst.line)
                copies.append(CopyInstruction(sources=args[:-1],
                                              destination=self._resolve(working_dir, args[-1])))
            elif name == "WORKDIR":
                if len(args) != 1:
                    raise ManifestError("WORKDIR takes one path", line=inst.line)
                working_dir = self._resolve(working_dir, args[0]).rstrip("/") or "/"
            elif name in ("ENV", "LABEL"):
                target = env if name == "ENV" else labels
                target.update(self._pairs(inst))
            elif name == "RUN":
                for segment in self._run_segments(inst):
                    self._classify_run(inst, segment, packages, build_steps)
            elif name == "CMD":
                cmd = self._command(inst)
            elif name == "ENTRYPOINT":
                entrypoint = self._command(inst)
            else:
                raise ManifestError(f"Unsupported instruction {name}", line=inst.line)

        if not build_steps:
            raise ManifestError("Manifest has no build step (RUN ...)")
        if not cmd and not entrypoint:
            raise ManifestError("Manifest has no CMD or ENTRYPOINT")

        command = entrypoint + cmd
        artifact = labels.get(ARTIFACT_LABEL) or artifact_from_command(command)

        return BuildManifest(
            base_image=base_image,
            volumes=volumes,
            copies=copies,
            working_dir=working_dir,
            env=env,
            system_packages=packages,
            build_command=build_command_from_steps(build_steps),
            artifact_path=artifact,
            entrypoint=entrypoint,
            cmd=cmd,
            labels=labels,
        )

    def _resolve(self, working_dir: str, path: str) -> str:
        """
        Resolves an image path against the current WORKDIR, keeping a
        trailing slash (it marks a directory destination).
        """
        trailing = path.endswith("/") or path in (".", "..")
        resolved = posixpath.normpath(posixpath.join(working_dir, path))
        if trailing and not resolved.endswith("/"):
            resolved += "/"
        return resolved

    def _pairs(self, inst: Instruction) -> dict:
        args = inst.arguments
        if args and all('=' in a for a in args):
            return dict(a.split('=', 1) for a in args)
        if len(args) == 2:
            return {args[0]: args[1]}
        raise ManifestError(f"{inst.instruction} expects KEY=VALUE or KEY VALUE", line=inst.line)

    def _is_exec_form(self, inst: Instruction) -> bool:
        parts = inst.raw.split(None, 1)
        body = parts[1].strip() if len(parts) > 1 else ""
        # invalid JSON falls back to shell form in the parser
        return body.startswith("[") and inst.arguments != [body]

    def _run_segments(self, inst: Instruction) -> List[List[str]]:
        if self._is_exec_form(inst):
            return [inst.arguments] if inst.arguments else []
        segments = []
        for part in inst.arguments[0].split("&&") if inst.arguments else []:
            try:
                tokens = shlex.split(part)
            except ValueError as e:
                raise ManifestError(f"RUN: {e}", line=inst.line)
            if tokens:
                segments.append(tokens)
        return segments

    def _classify_run(self,
                      inst: Instruction,
                      tokens: List[str],
                      packages: List[str],
                      build_steps: List[List[str]]):
        """
        Sorts one RUN command into the pipeline: package index refresh and
        package installation feed the dependency stage, everything else is
        part of the release build.
        """
        program = tokens[0]
        if program in SYSTEM_PACKAGE_MANAGERS:
            words = [t for t in tokens[1:] if not t.startswith("-")]
            action = words[0] if words else ""
            if action == "update":
                return
            if action == "install":
                for pkg in words[1:]:
                    if pkg not in packages:
                        packages.append(pkg)
                return
            raise ManifestError(f"Unsupported {program} action '{action}'", line=inst.line)
        build_steps.append(tokens)

    def _command(self, inst: Instruction) -> List[str]:
        if self._is_exec_form(inst):
            return list(inst.arguments)
        if not inst.arguments:
            raise ManifestError(f"{inst.instruction} is empty", line=inst.line)
        return ["/bin/sh", "-c", inst.arguments[0]]


def build_command_from_steps(steps: List[List[str]]) -> List[str]:
    """
    A single build step runs as is; several are chained through the shell.
    """
    if len(steps) == 1:
        return steps[0]
    return ["/bin/sh", "-c", " && ".join(shlex.join(step) for step in steps)]


def artifact_from_command(command: List[str]) -> str:
    """
    The artifact a default command launches: its executable, relative to
    the working directory unless absolute.
    """
    if not command or command[:2] == ["/bin/sh", "-c"]:
        return DEFAULT_ARTIFACT_PATH
    executable = command[0]
    if executable.startswith("./"):
        return executable[2:]
    return executable
