"""
Models for volume bindings between host storage and container mount points.
"""
from pydantic import BaseModel

class VolumeMount(BaseModel):
    """
    Binds ``source`` (a named volume or a host path) to ``target``, a mount
    point inside the container.
    """
    source: str
    target: str

    @classmethod
    def parse(cls, spec: str) -> "VolumeMount":
        """
        Parses ``SOURCE:TARGET``.

        :raises ValueError: If either side is missing.
        """
        source, sep, target = spec.partition(":")
        if not sep or not source or not target:
            raise ValueError(f"Invalid volume spec '{spec}', expected SOURCE:TARGET")
        return cls(source=source, target=target)
