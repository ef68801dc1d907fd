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
Execution of system processes with log redirection and lifecycle management.
"""
import subprocess
import os
import sys
from typing import List, Dict, Optional


class ProcessRunner:
    """
    Manages the execution of a single system process, either blocking
    (build stage commands) or in the background (launched images).
    """
    def __init__(self, name: str, log_file: Optional[str] = None):
        """
        Initializes the process runner.

        Args:
            name (str): Identifier for the process, used as output prefix.
            log_file (Optional[str]): File that receives the process output.
        """
        self.name = name
        self.log_file = log_file
        self.process: Optional[subprocess.Popen] = None
        self.log_handle = None

    def _open_log(self):
        log_dir = os.path.dirname(self.log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        return open(self.log_file, 'a')

    def run(self,
            command: List[str],
            env: Dict[str, str],
            working_dir: Optional[str] = None) -> int:
        """
        Runs a command to completion, streaming its output to stdout and,
        when configured, to the log file.

        Args:
            command (List[str]): Command and arguments to execute.
            env (Dict[str, str]): Environment variables for the process.
            working_dir (Optional[str]): Directory to run the command in.

        Returns:
            int: The exit code.

        Raises:
            OSError: If the command cannot be executed.
        """
        print(f"[{self.name}] Running: {' '.join(command)}")
        log = self._open_log() if self.log_file else None
        try:
            process = subprocess.Popen(
                command,
                env=env,
                cwd=working_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors='replace',
                # Avoid shell=True for security reasons (CWE-78)
                shell=False
            )
            for line in process.stdout:
                sys.stdout.write(line)
                if log:
                    log.write(line)
            process.stdout.close()
            return process.wait()
        finally:
            if log:
                log.close()

    def start(self,
              command: List[str],
              env: Dict[str, str],
              working_dir: Optional[str] = None):
        """
        Starts the process without waiting for it.

        Args:
            command (List[str]): Command and arguments to execute.
            env (Dict[str, str]): Environment variables for the process.
            working_dir (Optional[str]): Directory to start the process in.

        Raises:
            OSError: If the command cannot be executed.
        """
        stdout = None
        stderr = None
        if self.log_file:
            self.log_handle = self._open_log()
            stdout = self.log_handle
            stderr = subprocess.STDOUT

        print(f"[{self.name}] Starting command: {' '.join(command)}")

        try:
            self.process = subprocess.Popen(
                command,
                env=env,
                cwd=working_dir,
                stdout=stdout,
                stderr=stderr,
                shell=False,
                # detached processes must outlive the CLI invocation
                start_new_session=self.log_file is not None
            )
        except OSError as e:
            print(f"[{self.name}] Failed to start: {e}")
            self._close_log()
            raise

    def wait(self) -> int:
        """
        Blocks until the process exits.

        Returns:
            int: Exit code; negative when killed by a signal.
        """
        try:
            return self.process.wait()
        finally:
            self._close_log()

    def stop(self, timeout: int = 10):
        """
        Stops the process by sending SIGTERM, followed by SIGKILL if it doesn't stop.

        Args:
            timeout (int): Seconds to wait for termination before killing.
        """
        if self.process:
            print(f"[{self.name}] Stopping process...")
            self.process.terminate()
            try:
                self.process.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                print(f"[{self.name}] Process did not terminate, killing...")
                self.process.kill()
                self.process.wait()
            self._close_log()

    def _close_log(self):
        if self.log_handle:
            self.log_handle.close()
            self.log_handle = None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process else None

    def get_exit_code(self) -> Optional[int]:
        """
        Gets the exit code of the process.

        Returns:
            Optional[int]: Exit code if process finished, None otherwise.
        """
        if self.process:
            return self.process.poll()
        return None
