# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Base image reference parsing.
Normalises references like 'rust', 'rust:1.75' or 'docker.io/library/rust:1.75'
so that every spelling of the same toolchain selects the same base environment.
"""

from typing import Optional
from dataclasses import dataclass


@dataclass
class ImageReference:
    """
    Parsed image reference.

    Examples:
        - rust -> docker.io/library/rust:latest
        - rust:1.75 -> docker.io/library/rust:1.75
        - ghcr.io/org/toolchain@sha256:abc -> ghcr.io/org/toolchain@sha256:abc
    """

    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    DEFAULT_REGISTRY = "docker.io"
    DEFAULT_TAG = "latest"

    @classmethod
    def parse(cls, reference: str) -> "ImageReference":
        """
        Parse an image reference string.

        Args:
            reference: Reference such as 'rust:1.75' or 'localhost:5000/rust'.

        Returns:
            Parsed ImageReference object.

        Raises:
            ValueError: If the reference is empty or contains whitespace.
        """
        reference = (reference or "").strip()
        if not reference:
            raise ValueError("Empty image reference")
        if any(c.isspace() for c in reference):
            raise ValueError(f"Invalid image reference '{reference}'")

        digest = None
        if "@" in reference:
            reference, digest = reference.rsplit("@", 1)

        tag = None
        last_colon = reference.rfind(":")
        if last_colon != -1:
            candidate = reference[last_colon + 1:]
            # 'host:5000/name' has a port, not a tag
            if "/" not in candidate:
                tag = candidate
                reference = reference[:last_colon]

        parts = reference.split("/")
        first = parts[0]
        if len(parts) > 1 and ("." in first or ":" in first or first == "localhost"):
            registry = first
            repository = "/".join(parts[1:])
        else:
            registry = cls.DEFAULT_REGISTRY
            repository = reference if len(parts) > 1 else f"library/{reference}"

        if not tag and not digest:
            tag = cls.DEFAULT_TAG

        return cls(registry=registry, repository=repository, tag=tag, digest=digest)

    @property
    def full_name(self) -> str:
        """Full reference including registry."""
        name = f"{self.registry}/{self.repository}"
        if self.digest:
            return f"{name}@{self.digest}"
        return f"{name}:{self.tag}"

    @property
    def short_name(self) -> str:
        """Reference without the default registry and 'library/' prefix."""
        if self.registry != self.DEFAULT_REGISTRY:
            return self.full_name
        repo = self.repository
        if repo.startswith("library/"):
            repo = repo[len("library/"):]
        if self.digest:
            return f"{repo}@{self.digest}"
        return f"{repo}:{self.tag}"

    @property
    def is_pinned(self) -> bool:
        """Whether the reference names one fixed version (digest or explicit tag)."""
        return bool(self.digest) or self.tag != self.DEFAULT_TAG

    def __str__(self) -> str:
        return self.short_name
