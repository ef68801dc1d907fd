"""
Resolution of the command a container starts.
"""
from typing import List, Optional

class EntrypointExecutor:
    """
    Merges ENTRYPOINT, CMD and a launch-time override.
    """
    def get_full_command(self,
                         entrypoint: List[str],
                         cmd: List[str],
                         override: Optional[List[str]] = None) -> List[str]:
        """
        Builds the argv of the container process.

        An override replaces ``cmd`` as a whole; none of the default
        arguments survive. ENTRYPOINT, when present, stays the executable.

        :param entrypoint: The ENTRYPOINT list.
        :param cmd: The default CMD list.
        :param override: Command given at launch time, if any.
        :return: The full command list.
        """
        args = list(override) if override else list(cmd)
        return list(entrypoint) + args
