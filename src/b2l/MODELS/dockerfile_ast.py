"""
Models for the build manifest syntax tree.
"""
from typing import List
from pydantic import BaseModel

class Instruction(BaseModel):
    """
    A single manifest instruction, e.g. ``RUN cargo build --release``.
    """
    instruction: str
    arguments: List[str]
    raw: str
    line: int = 0

class DockerfileAST(BaseModel):
    """
    All instructions of a manifest, in file order.
    """
    instructions: List[Instruction] = []

    def find(self, name: str) -> List[Instruction]:
        return [i for i in self.instructions if i.instruction == name]
