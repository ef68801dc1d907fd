"""
Log tailing for detached containers.
"""
import time
import os
from typing import List

class LogAggregator:
    """
    Prints container log files, optionally following them.
    """
    def __init__(self, log_dir: str):
        """
        Initializes the log aggregator.

        :param log_dir: The directory where container log files are stored.
        """
        self.log_dir = log_dir

    def log_path(self, name: str) -> str:
        return os.path.join(self.log_dir, f"{name}.log")

    def tail_logs(self, names: List[str], follow: bool = False, poll_interval: float = 0.1):
        """
        Prints existing log lines, prefixed with the container name, then
        keeps printing new lines when ``follow`` is set.

        :param names: Names of the containers.
        :param follow: Keep reading until interrupted.
        :param poll_interval: Seconds between polls while following.
        """
        files = {}
        try:
            for name in names:
                path = self.log_path(name)
                if os.path.exists(path):
                    files[name] = open(path, 'r', errors='replace')
                    for line in files[name]:
                        print(f"{name:15} | {line.rstrip()}")
            while follow:
                for name, handle in files.items():
                    line = handle.readline()
                    if line:
                        print(f"{name:15} | {line.rstrip()}")
                time.sleep(poll_interval)
        except KeyboardInterrupt:
            print("\nStopping log tailing...")
        finally:
            for f in files.values():
                f.close()
